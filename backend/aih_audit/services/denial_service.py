# Overview: Service-layer operations for denials (glosas) and the denial type catalog.

"""
Denial ledger.

Append / soft-delete log of disputed line items on a record. Nothing here reads
or writes record status or value: a finalized record may still carry active
denials, and finalizing a record does not clear them.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import insert, select, update

from ..extensions import db
from ..models import AuditRecord, Denial, DenialType
from ..store import RecordStore, TransactionFailure, record_store
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    check_positive_int,
    clean_text,
)


_records = AuditRecord.__table__
_denials = Denial.__table__
_denial_types = DenialType.__table__


def add_denial(
    record_id: int,
    line: Any,
    denial_type: Any,
    professional: Any,
    quantity: Any = 1,
    *,
    store: RecordStore | None = None,
) -> Denial:
    """
    Register an active denial on a live record.

    Raises:
        ValidationError: line, type or professional missing, or quantity not an integer >= 1
        NotFoundError: Record does not exist in live storage
    """
    store = store or record_store

    reasons: list[str] = []
    line = clean_text(line)
    denial_type = clean_text(denial_type)
    professional = clean_text(professional)
    if line is None:
        reasons.append("line is required")
    if denial_type is None:
        reasons.append("denial type is required")
    if professional is None:
        reasons.append("professional is required")
    quantity = check_positive_int(1 if quantity is None else quantity, "quantity", reasons)
    if reasons:
        raise ValidationError(reasons)

    if not _record_exists(record_id, store):
        raise NotFoundError(f"Record {record_id} not found")

    try:
        results = store.execute_transaction([
            insert(_denials).values(
                record_id=record_id,
                line=line,
                denial_type=denial_type,
                professional=professional,
                quantity=quantity,
                is_active=True,
            )
        ])
    except TransactionFailure:
        # Foreign key rejected the insert: the record was archived meanwhile
        if not _record_exists(record_id, store):
            raise NotFoundError(f"Record {record_id} not found") from None
        raise
    store.invalidate_cache("records")
    return db.session.get(Denial, results[0].inserted_primary_key[0])


def _record_exists(record_id: int, store: RecordStore) -> bool:
    return store.fetch_one(select(_records.c.id).where(_records.c.id == record_id)) is not None


def remove_denial(denial_id: int, *, store: RecordStore | None = None) -> Denial:
    """
    Soft-delete a denial (is_active=False). Removing an inactive denial is a no-op.

    Raises:
        NotFoundError: Denial does not exist in live storage
    """
    store = store or record_store
    row = store.fetch_one(select(_denials).where(_denials.c.id == denial_id))
    if row is None:
        raise NotFoundError(f"Denial {denial_id} not found")

    if row["is_active"]:
        store.execute_transaction([
            update(_denials).where(_denials.c.id == denial_id).values(is_active=False)
        ])
        store.invalidate_cache("records")
    return db.session.get(Denial, denial_id)


def list_active(record_id: int, *, store: RecordStore | None = None) -> list[dict]:
    """Active denials of a record in creation order."""
    store = store or record_store
    rows = store.fetch_all(
        select(Denial)
        .where(Denial.record_id == record_id, Denial.is_active.is_(True))
        .order_by(Denial.created_at.asc(), Denial.id.asc())
    )
    return [row["Denial"].to_dict() for row in rows]


# ================================================================================
# DENIAL TYPE CATALOG
# ================================================================================

def list_denial_types() -> list[DenialType]:
    return db.session.query(DenialType).order_by(DenialType.description.asc()).all()


def add_denial_type(description: Any, *, store: RecordStore | None = None) -> DenialType:
    store = store or record_store
    description = clean_text(description)
    if description is None:
        raise ValidationError("description is required")

    existing = store.fetch_one(
        select(_denial_types.c.id).where(_denial_types.c.description == description)
    )
    if existing is not None:
        raise ConflictError(f"Denial type '{description}' already exists")

    try:
        results = store.execute_transaction([insert(_denial_types).values(description=description)])
    except TransactionFailure as exc:
        # Lost a race against a concurrent insert of the same description
        raise ConflictError(f"Denial type '{description}' already exists") from exc
    return db.session.get(DenialType, results[0].inserted_primary_key[0])


def remove_denial_type(type_id: int, *, store: RecordStore | None = None) -> None:
    store = store or record_store
    results = store.execute_transaction([
        _denial_types.delete().where(_denial_types.c.id == type_id)
    ])
    if results[0].rowcount == 0:
        raise NotFoundError(f"Denial type {type_id} not found")
