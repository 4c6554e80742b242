# Overview: Service-layer operations for records; registration and aggregate lookups.

from __future__ import annotations

import re
from typing import Any, Iterable

from flask import current_app
from sqlalchemy import select

from ..extensions import db
from ..models import AuditRecord, Denial, Movement, ServiceEncounter
from ..models.records import MOVEMENT_INTAKE, STATUS_ACTIVE_DISCUSSION
from ..store import RecordStore, TransactionFailure, record_store
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    check_competence,
    clean_text,
    parse_money_cents,
)


INITIAL_INTAKE_NOTE = "Initial intake of the record into first-line audit"

_ENCOUNTER_SEPARATORS = re.compile(r"[,\n\r]")

_records = AuditRecord.__table__


def normalize_encounter_numbers(raw: Any, *, max_length: int) -> list[str]:
    """
    Accept a list, a dict of values, or a comma/newline separated string.

    Entries are trimmed; blanks and entries longer than max_length are dropped.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        items: Iterable[Any] = _ENCOUNTER_SEPARATORS.split(raw)
    elif isinstance(raw, dict):
        items = raw.values()
    else:
        items = raw
    numbers = []
    for item in items:
        text = str(item).strip()
        if text and len(text) <= max_length:
            numbers.append(text)
    return numbers


def create_record(
    external_number: Any,
    initial_value: Any,
    competence: Any,
    encounter_numbers: Any,
    *,
    created_by_user_id: int | None = None,
    store: RecordStore | None = None,
) -> AuditRecord:
    """
    Register a record with its service encounters and its automatic first INTAKE.

    The record starts under discussion (status 3) at its initial value. Record,
    encounters and movement are written in one transaction.

    Raises:
        ValidationError: Every problem with the input, listed together
        ConflictError: external_number already registered
    """
    store = store or record_store
    config = current_app.config

    reasons: list[str] = []
    number = clean_text(external_number)
    if number is None:
        reasons.append("record number is required")
    elif not config["RECORD_NUMBER_MIN_LENGTH"] <= len(number) <= config["RECORD_NUMBER_MAX_LENGTH"]:
        reasons.append(
            f"record number must have between {config['RECORD_NUMBER_MIN_LENGTH']} "
            f"and {config['RECORD_NUMBER_MAX_LENGTH']} characters"
        )

    value_cents = parse_money_cents(
        initial_value,
        "initial value",
        reasons,
        minimum=config["RECORD_VALUE_MIN"],
        maximum=config["RECORD_VALUE_MAX"],
    )
    competence = check_competence(competence, reasons, min_year=config["COMPETENCE_MIN_YEAR"])

    encounters = normalize_encounter_numbers(
        encounter_numbers, max_length=config["ENCOUNTER_NUMBER_MAX_LENGTH"]
    )
    if not encounters:
        reasons.append("at least one valid encounter number is required")
    elif len(encounters) > config["RECORD_MAX_ENCOUNTERS"]:
        reasons.append(f"too many encounter numbers (maximum {config['RECORD_MAX_ENCOUNTERS']})")

    if reasons:
        raise ValidationError(reasons)

    if _number_exists(number, store):
        raise ConflictError(f"Record {number} is already registered")

    now = utcnow()
    try:
        record = _insert_record(store, number, value_cents, competence, encounters, now, created_by_user_id)
    except TransactionFailure:
        # Unique constraint lost to a concurrent registration of the same number
        if _number_exists(number, store):
            raise ConflictError(f"Record {number} is already registered") from None
        raise

    store.invalidate_cache("records")
    current_app.logger.info("Registered record %s (id=%s, %d encounters)", number, record.id, len(encounters))
    return record


def _number_exists(number: str, store: RecordStore) -> bool:
    return store.fetch_one(
        select(_records.c.id).where(_records.c.external_number == number)
    ) is not None


def _insert_record(store, number, value_cents, competence, encounters, now, created_by_user_id) -> AuditRecord:
    with store.transaction() as session:
        record = AuditRecord(
            external_number=number,
            initial_value_cents=value_cents,
            current_value_cents=value_cents,
            status=STATUS_ACTIVE_DISCUSSION,
            competence=competence,
            created_at=now,
            created_by_user_id=created_by_user_id,
        )
        session.add(record)
        session.flush()  # Get ID

        session.add_all(
            ServiceEncounter(record_id=record.id, encounter_number=encounter)
            for encounter in encounters
        )
        session.add(
            Movement(
                record_id=record.id,
                movement_type=MOVEMENT_INTAKE,
                moved_at=now,
                actor_user_id=created_by_user_id,
                value_cents=value_cents,
                competence=competence,
                record_status=STATUS_ACTIVE_DISCUSSION,
                notes=INITIAL_INTAKE_NOTE,
            )
        )
    return record


def build_aggregate(
    record,
    movements: list,
    denials: list,
    encounters: list,
    *,
    is_archived: bool,
) -> dict:
    """
    The lookup shape shared by live and archived records.

    movements: newest first. denials: active only, in creation order.
    denial_history: every denial, active or not, in creation order.
    """
    ordered_denials = sorted(denials, key=lambda d: (d.created_at, d.id))
    data = record.to_dict()
    data.update({
        "encounter_numbers": [e.encounter_number for e in sorted(encounters, key=lambda e: e.id)],
        "movements": [
            m.to_dict() for m in sorted(movements, key=lambda m: (m.moved_at, m.id), reverse=True)
        ],
        "denials": [d.to_dict() for d in ordered_denials if d.is_active],
        "denial_history": [d.to_dict() for d in ordered_denials],
        "is_archived": is_archived,
    })
    return data


def _load_live_aggregate(external_number: str) -> dict | None:
    record = db.session.query(AuditRecord).filter_by(external_number=external_number).first()
    if record is None:
        return None
    return build_aggregate(
        record,
        db.session.query(Movement).filter_by(record_id=record.id).all(),
        db.session.query(Denial).filter_by(record_id=record.id).all(),
        db.session.query(ServiceEncounter).filter_by(record_id=record.id).all(),
        is_archived=False,
    )


def get_record_aggregate(external_number: str, *, store: RecordStore | None = None) -> dict:
    """
    Live lookup by record number: record, encounters, movements and denials.

    Raises:
        NotFoundError: No live record with that number
    """
    store = store or record_store
    aggregate = store.cached("records", external_number, lambda: _load_live_aggregate(external_number))
    if aggregate is None:
        raise NotFoundError(f"Record {external_number} not found")
    return aggregate


def find_record(external_number: str, *, store: RecordStore | None = None) -> dict:
    """Live record if present, otherwise the archived one."""
    from . import archival_service

    try:
        return get_record_aggregate(external_number, store=store)
    except NotFoundError:
        return archival_service.lookup_archived(external_number)
