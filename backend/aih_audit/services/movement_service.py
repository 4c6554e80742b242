# Overview: Service-layer operations for record movements; the audit-stage state machine.

"""
AIH Audit Movement Service

================================================================================
PURPOSE: Enforce the INTAKE / DISCHARGE alternation of the two-party audit
================================================================================

STATE MACHINE:
    (none) -> INTAKE -> DISCHARGE -> INTAKE -> DISCHARGE -> ...

    INTAKE:    the record enters first-line (SUS) audit
    DISCHARGE: the record is handed to second-line (hospital-side) audit

RULES:
1. The only legal next type is the one returned by next_movement_type() for
   the most recent movement (ordered by moved_at, then id).
2. Every proposed movement is signed by a nursing professional AND by a
   medicine or maxillofacial surgery professional. Physiotherapy is optional.
3. A movement asserts the record's new status and current value. The movement
   insert and the record update commit together or not at all.
4. Movement writes are guarded on AuditRecord.version_id. A proposal built on a
   stale view of the record fails with StaleWriteError and changes nothing;
   callers re-read and retry.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from flask import current_app
from sqlalchemy import insert, or_, select, update

from ..extensions import db
from ..models import AuditRecord, Movement
from ..models.records import (
    MOVEMENT_DISCHARGE,
    MOVEMENT_INTAKE,
    VALID_STATUSES,
)
from ..store import GuardedStatement, RecordStore, record_store
from ..time_utils import competence_of, to_utc_z, utcnow
from ..validation import (
    NotFoundError,
    ValidationError,
    check_competence,
    clean_text,
    parse_money_cents,
)


_NEXT_TYPE = {
    None: MOVEMENT_INTAKE,
    MOVEMENT_INTAKE: MOVEMENT_DISCHARGE,
    MOVEMENT_DISCHARGE: MOVEMENT_INTAKE,
}

MOVEMENT_LABELS = {
    MOVEMENT_INTAKE: "Intake into first-line audit",
    MOVEMENT_DISCHARGE: "Discharge to hospital-side audit",
}

_NEXT_EXPLANATIONS = {
    None: "This is the record's first movement. It must be registered as an intake into first-line audit.",
    MOVEMENT_INTAKE: "The last movement was an intake into first-line audit. The next one must be a discharge to hospital-side audit.",
    MOVEMENT_DISCHARGE: "The last movement was a discharge to hospital-side audit. The next one must be an intake into first-line audit.",
}

_records = AuditRecord.__table__
_movements = Movement.__table__


class SequenceViolation(ValueError):
    """
    Raised when a movement type does not follow the alternation rule.

    Recoverable: the caller re-derives the next type (describe_next_movement)
    and submits again.
    """

    def __init__(self, expected: str, got: str | None):
        self.expected = expected
        self.got = got
        super().__init__(f"Invalid movement type. Expected: {expected}, got: {got}")


@dataclass(frozen=True)
class MovementCandidate:
    """A proposed movement, as received from the caller (not yet validated)."""
    movement_type: str
    status: Any
    value: Any
    nursing: str | None = None
    medicine: str | None = None
    physiotherapy: str | None = None
    maxillofacial: str | None = None
    competence: str | None = None
    notes: str | None = None
    actor_user_id: int | None = None

    @classmethod
    def from_payload(cls, payload: dict, *, actor_user_id: int | None = None) -> "MovementCandidate":
        payload = payload or {}
        return cls(
            movement_type=payload.get("movement_type"),
            status=payload.get("status"),
            value=payload.get("value"),
            nursing=payload.get("nursing"),
            medicine=payload.get("medicine"),
            physiotherapy=payload.get("physiotherapy"),
            maxillofacial=payload.get("maxillofacial"),
            competence=payload.get("competence"),
            notes=payload.get("notes"),
            actor_user_id=actor_user_id,
        )


@dataclass(frozen=True)
class AppliedMovement:
    movement: Movement
    record: AuditRecord

    def to_dict(self) -> dict:
        return {"movement": self.movement.to_dict(), "record": self.record.to_dict()}


def next_movement_type(last_type: str | None) -> str:
    """
    The single transition function of the audit workflow.

    Args:
        last_type: Type of the most recent movement, or None for a record without movements

    Returns:
        The only movement type that may be applied next

    Raises:
        ValueError: If last_type is not a known movement type
    """
    try:
        return _NEXT_TYPE[last_type]
    except KeyError:
        raise ValueError(f"Unknown movement type '{last_type}'") from None


def validate_professionals(candidate: MovementCandidate) -> list[str]:
    reasons = []
    if clean_text(candidate.nursing) is None:
        reasons.append("nursing professional is required")
    if clean_text(candidate.medicine) is None and clean_text(candidate.maxillofacial) is None:
        reasons.append("a medicine or maxillofacial surgery professional is required")
    return reasons


def _parse_status(value: Any, reasons: list[str]) -> int | None:
    if isinstance(value, bool):
        value = None
    try:
        status = int(str(value).strip()) if value is not None else None
    except ValueError:
        status = None
    if status not in VALID_STATUSES:
        allowed = ", ".join(str(s) for s in sorted(VALID_STATUSES))
        reasons.append(f"status must be one of: {allowed}")
        return None
    return status


def _normalize_candidate(candidate: MovementCandidate, reasons: list[str]) -> dict:
    """Column values for the movement row; problems are appended to `reasons`."""
    config = current_app.config
    reasons.extend(validate_professionals(candidate))

    status = _parse_status(candidate.status, reasons)
    value_cents = parse_money_cents(
        candidate.value,
        "value",
        reasons,
        minimum=config["RECORD_VALUE_MIN"],
        maximum=config["RECORD_VALUE_MAX"],
    )

    competence = candidate.competence
    if clean_text(competence) is None:
        competence = competence_of(utcnow())
    competence = check_competence(competence, reasons, min_year=config["COMPETENCE_MIN_YEAR"])

    return {
        "movement_type": candidate.movement_type,
        "actor_user_id": candidate.actor_user_id,
        "value_cents": value_cents,
        "competence": competence,
        "medicine_professional": clean_text(candidate.medicine),
        "nursing_professional": clean_text(candidate.nursing),
        "physiotherapy_professional": clean_text(candidate.physiotherapy),
        "maxillofacial_professional": clean_text(candidate.maxillofacial),
        "record_status": status,
        "notes": clean_text(candidate.notes),
    }


def validate_candidate(candidate: MovementCandidate) -> list[str]:
    """Every problem with a candidate's content (not its sequencing), in one list."""
    reasons: list[str] = []
    _normalize_candidate(candidate, reasons)
    return reasons


def build_movement_statements(record: dict, values: dict, *, moved_at) -> list:
    """
    Statements applying one movement: insert it, then move the record to the
    asserted status/value. The update only matches the version that was read.
    """
    return [
        insert(_movements).values(record_id=record["id"], moved_at=moved_at, **values),
        GuardedStatement(
            update(_records)
            .where(_records.c.id == record["id"], _records.c.version_id == record["version_id"])
            .values(
                status=values["record_status"],
                current_value_cents=values["value_cents"],
                version_id=record["version_id"] + 1,
            )
        ),
    ]


def _get_record_row(record_id: int, store: RecordStore) -> dict:
    record = store.fetch_one(select(_records).where(_records.c.id == record_id))
    if record is None:
        raise NotFoundError(f"Record {record_id} not found")
    return record


def latest_movement(record_id: int, *, store: RecordStore | None = None) -> dict | None:
    store = store or record_store
    return store.fetch_one(
        select(_movements)
        .where(_movements.c.record_id == record_id)
        .order_by(_movements.c.moved_at.desc(), _movements.c.id.desc())
        .limit(1)
    )


def propose_movement(
    record_id: int,
    candidate: MovementCandidate,
    *,
    store: RecordStore | None = None,
) -> AppliedMovement:
    """
    Validate and apply a movement on a record.

    Args:
        record_id: Live record to move
        candidate: Proposed movement

    Returns:
        AppliedMovement with the inserted movement and the refreshed record

    Raises:
        NotFoundError: Record does not exist in live storage
        SequenceViolation: candidate.movement_type is not the legal next type
        ValidationError: Professional signoff, status, value or competence problems (all listed)
        StaleWriteError: The record changed between read and write; nothing applied
        TransactionFailure / StoreUnavailable: Store-level failure; nothing applied
    """
    store = store or record_store
    record = _get_record_row(record_id, store)

    latest = latest_movement(record_id, store=store)
    expected = next_movement_type(latest["movement_type"] if latest else None)
    if candidate.movement_type != expected:
        raise SequenceViolation(expected, candidate.movement_type)

    reasons: list[str] = []
    values = _normalize_candidate(candidate, reasons)
    if reasons:
        raise ValidationError(reasons)

    results = store.execute_transaction(
        build_movement_statements(record, values, moved_at=utcnow())
    )
    movement_id = results[0].inserted_primary_key[0]
    store.invalidate_cache("records")

    return AppliedMovement(
        movement=db.session.get(Movement, movement_id),
        record=db.session.get(AuditRecord, record_id),
    )


def describe_next_movement(record_id: int, *, store: RecordStore | None = None) -> dict:
    """Next legal movement type for a record, with a label and an explanation for operators."""
    store = store or record_store
    _get_record_row(record_id, store)

    latest = latest_movement(record_id, store=store)
    last_type = latest["movement_type"] if latest else None
    next_type = next_movement_type(last_type)
    return {
        "next_type": next_type,
        "label": MOVEMENT_LABELS[next_type],
        "explanation": _NEXT_EXPLANATIONS[last_type],
        "last_type": last_type,
    }


def last_professionals(record_id: int, *, store: RecordStore | None = None) -> dict | None:
    """
    Professionals of the most recent movement that named any, for form prefill.

    The automatic first intake names nobody and is skipped.
    """
    store = store or record_store
    row = store.fetch_one(
        select(_movements)
        .where(
            _movements.c.record_id == record_id,
            or_(
                _movements.c.medicine_professional.isnot(None),
                _movements.c.nursing_professional.isnot(None),
                _movements.c.physiotherapy_professional.isnot(None),
                _movements.c.maxillofacial_professional.isnot(None),
            ),
        )
        .order_by(_movements.c.moved_at.desc(), _movements.c.id.desc())
        .limit(1)
    )
    if row is None:
        return None
    return {
        "medicine": row["medicine_professional"],
        "nursing": row["nursing_professional"],
        "physiotherapy": row["physiotherapy_professional"],
        "maxillofacial": row["maxillofacial_professional"],
        "movement_type": row["movement_type"],
        "moved_at": to_utc_z(row["moved_at"]),
    }
