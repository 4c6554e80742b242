"""
Pytest fixtures for AIH audit backend tests.

Provides a file-backed SQLite app, per-test table wiping, and record factories.
"""

from datetime import datetime

import pytest
from aih_audit import create_app
from aih_audit.extensions import db
from aih_audit.models import AuditRecord, Denial
from aih_audit.services import record_service


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    # File-backed so VACUUM and multiple pooled connections behave like production
    db_path = tmp_path_factory.mktemp("db") / "aih_audit_test.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        # Keep INFO progress lines out of CLI output parsed as JSON
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.extensions["record_store"]["cache"].clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_record(db_session):
    """
    Factory for registered records.

    status / created_at are rewritten after registration so tests can place a
    record anywhere in its lifecycle (e.g. finalized four years ago).
    """
    def _make(
        number="AIH-0001",
        *,
        value="1000.00",
        competence="07/2025",
        encounters=("ENC-1", "ENC-2"),
        status=None,
        created_at=None,
    ) -> AuditRecord:
        record = record_service.create_record(number, value, competence, list(encounters))
        if status is not None:
            record.status = status
        if created_at is not None:
            record.created_at = created_at
        db_session.commit()
        return record

    return _make


@pytest.fixture(scope='function')
def old_finalized_record(make_record):
    """Record finalized directly (status 1), created four years ago, with one denial."""
    record = make_record(
        "AIH-OLD-1",
        status=1,
        created_at=datetime(2021, 3, 15, 10, 30),
    )
    db.session.add(Denial(
        record_id=record.id,
        line="03.01.06.002-9",
        denial_type="Procedure not performed",
        professional="Dr. Lima",
        quantity=2,
        is_active=True,
    ))
    db.session.commit()
    return record


# Reference "now" four years after old_finalized_record was created
ARCHIVE_NOW = datetime(2025, 3, 20, 12, 0)


def discharge_payload(**overrides) -> dict:
    """Helper to build a valid DISCHARGE proposal payload."""
    payload = {
        "movement_type": "DISCHARGE",
        "status": 1,
        "value": "950.00",
        "nursing": "N1",
        "medicine": "M1",
        "competence": "07/2025",
    }
    payload.update(overrides)
    return payload
