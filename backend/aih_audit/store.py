# Overview: Record store; the single transaction primitive every service writes through.

"""
AIH Audit Record Store

================================================================================
PURPOSE: Own every interaction with the relational database
================================================================================

Services never commit on their own. They build statements and hand them to
`execute_transaction`, which applies them all-or-nothing, or open
`transaction()` for ORM work that needs generated ids mid-way.

ERROR TRANSLATION:
    SQLAlchemy errors never leave this module. Connectivity problems become
    StoreUnavailable, everything else that aborts a write becomes
    TransactionFailure. A GuardedStatement that touches the wrong number of rows
    becomes StaleWriteError (a TransactionFailure), which is how optimistic
    version checks surface to callers.

FOREIGN KEYS:
    SQLite ignores foreign keys unless each connection turns them on. init_app
    registers a connect listener that does, so a child row can never point at
    a record that was archived in the meantime.

CACHE:
    Per-process, with a TTL (RECORD_CACHE_TTL_SECONDS). invalidate_cache only
    reaches the current process; other workers of a multi-process deployment
    see a change once their entry expires.

SPACE RECLAMATION:
    `reclaim_space` runs VACUUM, which needs exclusive access on SQLite. The
    caller (the archival pass) invokes it once per pass; the store does not take
    a lock to enforce exclusivity.
================================================================================
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator

from flask import current_app
from sqlalchemy import event
from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)

from .extensions import db


_UNAVAILABLE_MARKERS = (
    "unable to open database",
    "could not connect",
    "connection refused",
    "server closed the connection",
    "disk i/o error",
)


_clock = time.monotonic


class StoreError(Exception):
    """Base class for record store failures."""


class TransactionFailure(StoreError):
    """The store aborted a transaction; nothing from it was applied."""


class StaleWriteError(TransactionFailure):
    """A guarded statement matched an unexpected number of rows."""


class StoreUnavailable(StoreError):
    """The store cannot be reached; fatal for the current call."""


@dataclass(frozen=True)
class GuardedStatement:
    """A statement that must affect exactly `expected_rowcount` rows."""
    statement: Any
    expected_rowcount: int = 1


def _is_unavailable(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, (InterfaceError, DisconnectionError)):
        return True
    if getattr(exc, "connection_invalidated", False):
        return True
    if isinstance(exc, OperationalError):
        message = str(exc.orig if exc.orig is not None else exc).lower()
        return any(marker in message for marker in _UNAVAILABLE_MARKERS)
    return False


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def translate_error(exc: SQLAlchemyError) -> StoreError:
    if _is_unavailable(exc):
        return StoreUnavailable(str(exc))
    return TransactionFailure(str(exc))


class RecordStore:
    """
    Thin facade over the Flask-SQLAlchemy session.

    The query cache lives in `app.extensions`, so every app (and every test app)
    gets its own.
    """

    extension_key = "record_store"

    def init_app(self, app) -> None:
        app.extensions[self.extension_key] = {"cache": {}}
        with app.app_context():
            engine = db.engine
            if engine.dialect.name == "sqlite":
                event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    @property
    def session(self):
        return db.session

    # ------------------------------------------------------------------ reads

    def fetch_all(self, statement) -> list[dict]:
        try:
            return [dict(row) for row in self.session.execute(statement).mappings()]
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise translate_error(exc) from exc

    def fetch_one(self, statement) -> dict | None:
        try:
            row = self.session.execute(statement).mappings().first()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise translate_error(exc) from exc
        return dict(row) if row is not None else None

    # ----------------------------------------------------------------- writes

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """
        All-or-nothing unit of work. Commits on clean exit, rolls back on any error.

        Domain exceptions raised inside the block propagate unchanged after the
        rollback; SQLAlchemy errors are translated.
        """
        session = self.session
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise translate_error(exc) from exc
        except Exception:
            session.rollback()
            raise

    def execute_transaction(self, statements: Iterable[Any]) -> list[Any]:
        """
        Execute statements in order inside one transaction.

        Returns one result per statement. Either all statements are committed or
        none are.
        """
        results = []
        with self.transaction() as session:
            for item in statements:
                if isinstance(item, GuardedStatement):
                    result = session.execute(item.statement)
                    if result.rowcount != item.expected_rowcount:
                        raise StaleWriteError(
                            f"Expected {item.expected_rowcount} row(s) affected, got {result.rowcount}"
                        )
                else:
                    result = session.execute(item)
                results.append(result)
        return results

    # ------------------------------------------------------------------ cache

    def _cache(self) -> dict:
        return current_app.extensions[self.extension_key]["cache"]

    def cached(self, tag: str, key: Any, loader: Callable[[], Any]) -> Any:
        """
        Memoize loader() under (tag, key) for RECORD_CACHE_TTL_SECONDS.

        None results are not cached. A TTL of 0 disables caching.
        """
        ttl = current_app.config.get("RECORD_CACHE_TTL_SECONDS", 0)
        if ttl <= 0:
            return loader()

        bucket = self._cache().setdefault(tag, {})
        now = _clock()
        entry = bucket.get(key)
        if entry is not None and entry[0] > now:
            return entry[1]
        value = loader()
        if value is not None:
            bucket[key] = (now + ttl, value)
        else:
            bucket.pop(key, None)
        return value

    def invalidate_cache(self, tag: str) -> None:
        self._cache().pop(tag, None)

    # ------------------------------------------------------------ maintenance

    def reclaim_space(self) -> bool:
        """
        Checkpoint the write-ahead log and compact the database file.

        Returns False for dialects without a reclamation step.
        """
        dialect = db.engine.dialect.name
        if dialect == "sqlite":
            commands = ("PRAGMA wal_checkpoint(TRUNCATE)", "VACUUM")
        elif dialect == "postgresql":
            commands = ("VACUUM",)
        else:
            return False

        # VACUUM cannot run inside a transaction; release the session's connection first.
        self.session.rollback()
        try:
            with db.engine.connect() as conn:
                conn = conn.execution_options(isolation_level="AUTOCOMMIT")
                for command in commands:
                    conn.exec_driver_sql(command)
        except SQLAlchemyError as exc:
            raise translate_error(exc) from exc
        return True


record_store = RecordStore()
