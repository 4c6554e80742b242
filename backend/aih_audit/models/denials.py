from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class DenialColumns:
    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    line = db.Column(db.String(255), nullable=False)
    denial_type = db.Column(db.String(255), nullable=False)
    professional = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "record_id": self.record_id,
            "line": self.line,
            "denial_type": self.denial_type,
            "professional": self.professional,
            "quantity": self.quantity,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Denial(DenialColumns, db.Model):
    """
    A disputed line item (glosa) on a record.

    Denials are audit annotations. They never feed the movement state machine
    and never change a record's status or value. Removal is a soft delete so the
    dispute history survives (and is archived with the record).

    The same line may be denied more than once for different professionals, so
    there is deliberately no uniqueness constraint.
    """
    __tablename__ = "record_denials"
    __table_args__ = (
        db.Index("ix_record_denials_record_active", "record_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    record_id = db.Column(db.Integer, db.ForeignKey("audit_records.id"), nullable=False, index=True)

    record = db.relationship("AuditRecord", backref=db.backref("denials", lazy=True))


class DenialType(db.Model):
    """Catalog of denial type descriptions offered when registering a denial."""
    __tablename__ = "denial_types"
    __table_args__ = (
        db.UniqueConstraint("description", name="uq_denial_types_description"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    description = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }
