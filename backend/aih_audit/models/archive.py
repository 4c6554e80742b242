from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .denials import DenialColumns
from .records import EncounterColumns, MovementColumns, RecordColumns


class ArchivedRecord(RecordColumns, db.Model):
    """
    Cold-storage copy of an AuditRecord.

    Primary keys are copied verbatim from the live tables so archived
    cross-references (movement.record_id, denial.record_id) stay valid.
    There are no foreign keys back into live tables.
    """
    __tablename__ = "audit_records_archive"
    __table_args__ = (
        db.Index("ix_audit_records_archive_external_number", "external_number"),
        db.Index("ix_audit_records_archive_competence", "competence"),
    )

    archived_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["archived_at"] = to_utc_z(self.archived_at)
        return data


class ArchivedMovement(MovementColumns, db.Model):
    __tablename__ = "record_movements_archive"

    record_id = db.Column(db.Integer, nullable=False, index=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)


class ArchivedDenial(DenialColumns, db.Model):
    __tablename__ = "record_denials_archive"

    record_id = db.Column(db.Integer, nullable=False, index=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)


class ArchivedServiceEncounter(EncounterColumns, db.Model):
    __tablename__ = "service_encounters_archive"

    record_id = db.Column(db.Integer, nullable=False, index=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)


# Live table -> archive mirror, in the order rows are copied (parent first).
ARCHIVE_MIRRORS = (
    ("audit_records", "audit_records_archive"),
    ("record_movements", "record_movements_archive"),
    ("record_denials", "record_denials_archive"),
    ("service_encounters", "service_encounters_archive"),
)
