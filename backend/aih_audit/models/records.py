from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from ..validation import cents_to_decimal


# Record status codes (stored as integers, values are part of the data contract)
STATUS_FINALIZED_DIRECT = 1
STATUS_ACTIVE_INDIRECT = 2
STATUS_ACTIVE_DISCUSSION = 3
STATUS_FINALIZED_AFTER_DISCUSSION = 4

STATUS_LABELS = {
    STATUS_FINALIZED_DIRECT: "Finalized (direct approval)",
    STATUS_ACTIVE_INDIRECT: "Active (indirect approval)",
    STATUS_ACTIVE_DISCUSSION: "Active (under discussion)",
    STATUS_FINALIZED_AFTER_DISCUSSION: "Finalized (after discussion)",
}
VALID_STATUSES = frozenset(STATUS_LABELS)

# Movement types
MOVEMENT_INTAKE = "INTAKE"
MOVEMENT_DISCHARGE = "DISCHARGE"


class RecordColumns:
    """
    Columns shared by the live record table and its archive mirror.

    The archive copies rows column-for-column, so any column added here lands
    in both tables.
    """
    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    external_number = db.Column(db.String(50), nullable=False)
    initial_value_cents = db.Column(db.Integer, nullable=False)
    current_value_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.Integer, nullable=False, default=STATUS_ACTIVE_DISCUSSION)
    competence = db.Column(db.String(7), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "external_number": self.external_number,
            "initial_value_cents": self.initial_value_cents,
            "current_value_cents": self.current_value_cents,
            "initial_value": str(cents_to_decimal(self.initial_value_cents)),
            "current_value": str(cents_to_decimal(self.current_value_cents)),
            "status": self.status,
            "status_label": STATUS_LABELS.get(self.status),
            "competence": self.competence,
            "created_at": to_utc_z(self.created_at),
            "created_by_user_id": self.created_by_user_id,
            "version_id": self.version_id,
        }


class MovementColumns:
    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    movement_type = db.Column(db.String(16), nullable=False)  # INTAKE, DISCHARGE
    moved_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    actor_user_id = db.Column(db.Integer, nullable=True)
    value_cents = db.Column(db.Integer, nullable=False)
    competence = db.Column(db.String(7), nullable=False)

    # Professional signoff (nursing + medicine or maxillofacial surgery required on proposals)
    medicine_professional = db.Column(db.String(255), nullable=True)
    nursing_professional = db.Column(db.String(255), nullable=True)
    physiotherapy_professional = db.Column(db.String(255), nullable=True)
    maxillofacial_professional = db.Column(db.String(255), nullable=True)

    # Status the record moves to when this movement is applied
    record_status = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "record_id": self.record_id,
            "movement_type": self.movement_type,
            "moved_at": to_utc_z(self.moved_at),
            "actor_user_id": self.actor_user_id,
            "value_cents": self.value_cents,
            "value": str(cents_to_decimal(self.value_cents)),
            "competence": self.competence,
            "medicine_professional": self.medicine_professional,
            "nursing_professional": self.nursing_professional,
            "physiotherapy_professional": self.physiotherapy_professional,
            "maxillofacial_professional": self.maxillofacial_professional,
            "record_status": self.record_status,
            "notes": self.notes,
        }


class EncounterColumns:
    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    encounter_number = db.Column(db.String(50), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "record_id": self.record_id,
            "encounter_number": self.encounter_number,
        }


class AuditRecord(RecordColumns, db.Model):
    """
    A hospital billing authorization (AIH) under audit.

    LIFECYCLE:
    - Registered with status=3 (under discussion) and an automatic INTAKE movement
    - Every later movement rewrites status and current value
    - Finalized records (status 1 or 4) older than the retention window move to
      the *_archive tables and disappear from this one

    version_id is bumped by every applied movement; movement writes are guarded
    on it so two concurrent proposals cannot both win.
    """
    __tablename__ = "audit_records"
    __table_args__ = (
        db.UniqueConstraint("external_number", name="uq_audit_records_external_number"),
        db.Index("ix_audit_records_status_created", "status", "created_at"),
        db.Index("ix_audit_records_competence", "competence"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    movements = db.relationship("Movement", backref="record", lazy=True)
    encounters = db.relationship("ServiceEncounter", backref="record", lazy=True)

    def __repr__(self) -> str:
        return f"<AuditRecord id={self.id} number={self.external_number!r} status={self.status}>"


class Movement(MovementColumns, db.Model):
    """Stage transition of a record between first-line (INTAKE) and hospital-side (DISCHARGE) audit."""
    __tablename__ = "record_movements"
    __table_args__ = (
        db.Index("ix_record_movements_record_moved", "record_id", "moved_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    record_id = db.Column(db.Integer, db.ForeignKey("audit_records.id"), nullable=False, index=True)


class ServiceEncounter(EncounterColumns, db.Model):
    __tablename__ = "service_encounters"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    record_id = db.Column(db.Integer, db.ForeignKey("audit_records.id"), nullable=False, index=True)
