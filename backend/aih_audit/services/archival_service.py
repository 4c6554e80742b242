# Overview: Service-layer operations for archival; migrates aged finalized records to cold storage.

"""
AIH Audit Archival Engine

================================================================================
PURPOSE: Move aged, finalized records and every dependent row out of live tables
================================================================================

ELIGIBILITY:
    created_at before the cutoff date (today minus ARCHIVE_RETENTION_YEARS)
    AND status in ARCHIVE_ELIGIBLE_STATUSES (1 = finalized direct,
    4 = finalized after discussion). Active denials do not block archival.

PASS:
    1. Query eligible records (none -> return immediately, nothing touched)
    2. Split into batches of ARCHIVE_BATCH_SIZE; batches run one after another
    3. Each record migrates in its own transaction:
           archive inserts (record, movements, denials, encounters)
           live deletes    (denials, movements, encounters, record)
    4. Checkpoint + space reclamation once, after the last batch
    5. Summary: archived / failed / batches / cutoff_date

FAILURES:
    TransactionFailure: that record rolls back, is counted in `failed`, the
                        pass moves on to the next record
    StoreUnavailable:   remaining batches are abandoned, partial count returned
    StaleWriteError:    a TransactionFailure; a write landed on the record
                        between the fetch and the migration (the next pass
                        re-evaluates it)
    Re-running a pass is always safe: archived records are no longer in the
    live tables, so the eligibility query cannot select them again.

SCHEDULING:
    No timers here. An external scheduler calls run_archival_pass() (or the
    `flask archive run` command).
================================================================================
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime, time
from typing import Callable, Iterator, Sequence

from flask import current_app
from sqlalchemy import delete, insert, select

from ..extensions import db
from ..models import (
    ArchivedDenial,
    ArchivedMovement,
    ArchivedRecord,
    ArchivedServiceEncounter,
    AuditRecord,
    Denial,
    Movement,
    ServiceEncounter,
)
from ..models.archive import ARCHIVE_MIRRORS
from ..store import (
    GuardedStatement,
    RecordStore,
    StoreUnavailable,
    TransactionFailure,
    record_store,
)
from ..time_utils import utcnow, years_before
from ..validation import NotFoundError
from .record_service import build_aggregate


_records = AuditRecord.__table__
_movements = Movement.__table__
_denials = Denial.__table__
_encounters = ServiceEncounter.__table__


@dataclass
class ArchivalSummary:
    archived: int
    cutoff_date: str
    failed: int = 0
    batches: int = 0
    reclaimed: bool = False
    aborted: bool = False
    cancelled: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def archival_cutoff(now: datetime | None = None, *, retention_years: int | None = None) -> date:
    """First day that is still kept live; records created before it are old enough to archive."""
    if retention_years is None:
        retention_years = current_app.config["ARCHIVE_RETENTION_YEARS"]
    now = now or utcnow()
    return years_before(now.date(), retention_years)


def ensure_archive_tables() -> None:
    """Create the *_archive mirror tables if a deployment predates them."""
    tables = [db.metadata.tables[archive] for _, archive in ARCHIVE_MIRRORS]
    db.metadata.create_all(bind=db.engine, tables=tables, checkfirst=True)


def find_eligible_records(cutoff: date, *, store: RecordStore | None = None) -> list[dict]:
    store = store or record_store
    statuses = tuple(current_app.config["ARCHIVE_ELIGIBLE_STATUSES"])
    return store.fetch_all(
        select(_records)
        .where(
            _records.c.created_at < datetime.combine(cutoff, time.min),
            _records.c.status.in_(statuses),
        )
        .order_by(_records.c.id.asc())
    )


def iter_batches(items: Sequence, size: int) -> Iterator[Sequence]:
    if size < 1:
        raise ValueError("batch size must be at least 1")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def build_migration_statements(
    record: dict,
    movements: list[dict],
    denials: list[dict],
    encounters: list[dict],
    *,
    archived_at: datetime,
) -> list:
    """
    Ordered statements that move one record and its dependents to the archive.

    Pure: builds statements from already-fetched rows and touches nothing.
    Archive inserts come first (parent, then children); live deletes follow in
    child-before-parent order.

    Every delete is guarded on the number of rows that were fetched, and the
    record delete also on the version that was read. A denial, movement or
    encounter written after the fetch, a movement that changed the record, or a
    concurrent pass that already migrated it rolls the whole migration back
    instead of deleting rows that have no archive copy.
    """
    statements = [insert(ArchivedRecord.__table__).values(**record, archived_at=archived_at)]
    statements.extend(
        insert(ArchivedMovement.__table__).values(**row, archived_at=archived_at) for row in movements
    )
    statements.extend(
        insert(ArchivedDenial.__table__).values(**row, archived_at=archived_at) for row in denials
    )
    statements.extend(
        insert(ArchivedServiceEncounter.__table__).values(**row, archived_at=archived_at) for row in encounters
    )

    record_id = record["id"]
    statements.extend([
        GuardedStatement(
            delete(_denials).where(_denials.c.record_id == record_id),
            expected_rowcount=len(denials),
        ),
        GuardedStatement(
            delete(_movements).where(_movements.c.record_id == record_id),
            expected_rowcount=len(movements),
        ),
        GuardedStatement(
            delete(_encounters).where(_encounters.c.record_id == record_id),
            expected_rowcount=len(encounters),
        ),
        GuardedStatement(
            delete(_records).where(
                _records.c.id == record_id,
                _records.c.version_id == record["version_id"],
            )
        ),
    ])
    return statements


def migrate_record(record: dict, *, archived_at: datetime, store: RecordStore | None = None) -> None:
    """
    Fetch a record's dependents (every denial, active or not) and migrate all of
    it in one atomic transaction.

    Raises:
        TransactionFailure: Nothing was migrated; the record is untouched
        StoreUnavailable: The store could not be reached
    """
    store = store or record_store
    record_id = record["id"]
    movements = store.fetch_all(
        select(_movements).where(_movements.c.record_id == record_id).order_by(_movements.c.id)
    )
    denials = store.fetch_all(
        select(_denials).where(_denials.c.record_id == record_id).order_by(_denials.c.id)
    )
    encounters = store.fetch_all(
        select(_encounters).where(_encounters.c.record_id == record_id).order_by(_encounters.c.id)
    )
    store.execute_transaction(
        build_migration_statements(record, movements, denials, encounters, archived_at=archived_at)
    )


def run_archival_pass(
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
    should_stop: Callable[[], bool] | None = None,
    store: RecordStore | None = None,
) -> ArchivalSummary:
    """
    Archive every eligible record. The scheduler-facing entry point.

    Args:
        now: Reference time for the cutoff (defaults to utcnow)
        batch_size: Records per batch (defaults to ARCHIVE_BATCH_SIZE)
        should_stop: Checked before each batch after the first; returning True
            ends the pass early with cancelled=True

    Returns:
        ArchivalSummary

    Raises:
        StoreUnavailable: Only if the store is unreachable before any record was
            processed (eligibility query). Later outages end the pass with
            aborted=True instead.
    """
    store = store or record_store
    logger = current_app.logger
    batch_size = batch_size or current_app.config["ARCHIVE_BATCH_SIZE"]
    archived_at = utcnow()
    cutoff = archival_cutoff(now or archived_at)

    ensure_archive_tables()
    eligible = find_eligible_records(cutoff, store=store)
    summary = ArchivalSummary(archived=0, cutoff_date=cutoff.isoformat())
    if not eligible:
        logger.debug("Archival check finished: nothing created before %s", summary.cutoff_date)
        return summary

    logger.info("Archival pass: %d record(s) created before %s", len(eligible), summary.cutoff_date)

    for batch in iter_batches(eligible, batch_size):
        if summary.batches and should_stop is not None and should_stop():
            summary.cancelled = True
            logger.info("Archival pass cancelled after %d batch(es)", summary.batches)
            break

        summary.batches += 1
        try:
            for record in batch:
                try:
                    migrate_record(record, archived_at=archived_at, store=store)
                except TransactionFailure as exc:
                    summary.failed += 1
                    logger.warning(
                        "Archival of record %s (id=%s) rolled back: %s",
                        record["external_number"], record["id"], exc,
                    )
                else:
                    summary.archived += 1
        except StoreUnavailable:
            summary.aborted = True
            logger.exception(
                "Store unavailable during archival; abandoning remaining batches (%d archived so far)",
                summary.archived,
            )
            break

        logger.info("Archived %d/%d record(s)", summary.archived, len(eligible))

    store.invalidate_cache("records")

    if summary.archived and not summary.aborted:
        try:
            summary.reclaimed = store.reclaim_space()
        except StoreUnavailable:
            summary.aborted = True
            logger.exception("Store unavailable during space reclamation")

    logger.info(
        "Archival pass finished: %d archived, %d failed, %d batch(es)",
        summary.archived, summary.failed, summary.batches,
    )
    return summary


def lookup_archived(external_number: str) -> dict:
    """
    Rebuild an archived record in the same shape as a live lookup, tagged is_archived=True.

    Raises:
        NotFoundError: No archived record with that number
    """
    record = db.session.query(ArchivedRecord).filter_by(external_number=external_number).first()
    if record is None:
        raise NotFoundError(f"Archived record {external_number} not found")

    return build_aggregate(
        record,
        db.session.query(ArchivedMovement).filter_by(record_id=record.id).all(),
        db.session.query(ArchivedDenial).filter_by(record_id=record.id).all(),
        db.session.query(ArchivedServiceEncounter).filter_by(record_id=record.id).all(),
        is_archived=True,
    )
