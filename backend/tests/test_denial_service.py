# Overview: Pytest coverage for the denial (glosa) ledger and denial type catalog.

"""
Denial Ledger Tests

Denials are annotations: they never change record status or value, removal is
a soft delete, and finalized records keep their active denials.
"""

import pytest

from aih_audit.extensions import db
from aih_audit.models import AuditRecord, Denial
from aih_audit.services.denial_service import (
    add_denial,
    add_denial_type,
    list_active,
    list_denial_types,
    remove_denial,
    remove_denial_type,
)
from aih_audit.services.archival_service import run_archival_pass
from aih_audit.services.movement_service import MovementCandidate, propose_movement
from aih_audit.store import record_store
from aih_audit.validation import ConflictError, NotFoundError, ValidationError

from conftest import ARCHIVE_NOW, discharge_payload


class TestAddDenial:

    def test_add_and_list(self, db_session, make_record):
        record = make_record("AIH-D-0001")
        first = add_denial(record.id, "03.01.06.002-9", "Procedure not performed", "Dr. Lima", 2)
        second = add_denial(record.id, "02.02.01.047-3", "Duplicate charge", "Nurse Costa")

        assert first.is_active is True
        assert first.quantity == 2
        assert second.quantity == 1

        active = list_active(record.id)
        assert [d["id"] for d in active] == [first.id, second.id]
        assert active[0]["denial_type"] == "Procedure not performed"

    def test_same_line_may_be_denied_twice(self, db_session, make_record):
        record = make_record("AIH-D-0002")
        add_denial(record.id, "LINE-1", "Duplicate charge", "Dr. Lima")
        add_denial(record.id, "LINE-1", "Duplicate charge", "Dr. Souza")

        assert len(list_active(record.id)) == 2

    def test_all_reasons_collected(self, db_session, make_record):
        record = make_record("AIH-D-0003")
        with pytest.raises(ValidationError) as exc_info:
            add_denial(record.id, "", None, "  ", "1.5")

        assert exc_info.value.reasons == [
            "line is required",
            "denial type is required",
            "professional is required",
            "quantity must be an integer",
        ]
        assert db.session.query(Denial).count() == 0

    @pytest.mark.parametrize("quantity", [0, -3, "2e1", 1.0, True])
    def test_quantity_must_be_positive_integer(self, db_session, make_record, quantity):
        record = make_record("AIH-D-0004")
        with pytest.raises(ValidationError):
            add_denial(record.id, "LINE-1", "Duplicate charge", "Dr. Lima", quantity)

    def test_quantity_numeric_string_accepted(self, db_session, make_record):
        record = make_record("AIH-D-0005")
        denial = add_denial(record.id, "LINE-1", "Duplicate charge", "Dr. Lima", " 3 ")
        assert denial.quantity == 3

    def test_missing_record(self, db_session):
        with pytest.raises(NotFoundError):
            add_denial(987654, "LINE-1", "Duplicate charge", "Dr. Lima")

    def test_denials_do_not_touch_record(self, db_session, make_record):
        record = make_record("AIH-D-0006", value="500.00")
        add_denial(record.id, "LINE-1", "Duplicate charge", "Dr. Lima", 4)

        refreshed = db.session.get(AuditRecord, record.id)
        assert refreshed.status == 3
        assert refreshed.current_value_cents == 50000
        assert refreshed.version_id == 1

    def test_record_archived_between_check_and_insert(self, db_session, old_finalized_record, monkeypatch):
        """The insert is refused when the record left live storage after the existence check."""
        record_id = old_finalized_record.id
        original = record_store.execute_transaction
        passes = []

        def archive_first(statements):
            statements = list(statements)
            if not passes:
                passes.append(None)
                passes[0] = run_archival_pass(now=ARCHIVE_NOW)
            return original(statements)

        monkeypatch.setattr(record_store, "execute_transaction", archive_first)

        with pytest.raises(NotFoundError):
            add_denial(record_id, "LINE-9", "Duplicate charge", "Dr. Souza")

        assert passes[0].archived == 1
        assert db.session.query(Denial).filter_by(record_id=record_id).count() == 0


class TestRemoveDenial:

    def test_soft_delete(self, db_session, make_record):
        record = make_record("AIH-D-0101")
        denial = add_denial(record.id, "LINE-1", "Duplicate charge", "Dr. Lima")

        removed = remove_denial(denial.id)

        assert removed.is_active is False
        assert list_active(record.id) == []
        assert db.session.get(Denial, denial.id) is not None

    def test_remove_is_idempotent(self, db_session, make_record):
        record = make_record("AIH-D-0102")
        denial = add_denial(record.id, "LINE-1", "Duplicate charge", "Dr. Lima")

        remove_denial(denial.id)
        again = remove_denial(denial.id)

        assert again.is_active is False

    def test_remove_missing(self, db_session):
        with pytest.raises(NotFoundError):
            remove_denial(55555)


class TestFinalizationKeepsDenials:
    """Finalizing a record leaves its outstanding denials active."""

    def test_finalized_record_keeps_active_denials(self, db_session, make_record):
        record = make_record("AIH-D-0201")
        denial = add_denial(record.id, "LINE-1", "Duplicate charge", "Dr. Lima")

        applied = propose_movement(
            record.id,
            MovementCandidate.from_payload(discharge_payload(status=1)),
        )

        assert applied.record.status == 1
        assert [d["id"] for d in list_active(record.id)] == [denial.id]


class TestDenialTypes:

    def test_add_list_remove(self, db_session):
        b = add_denial_type("Procedure not performed")
        a = add_denial_type("  Duplicate charge ")

        assert a.description == "Duplicate charge"
        assert [t.description for t in list_denial_types()] == [
            "Duplicate charge",
            "Procedure not performed",
        ]

        remove_denial_type(b.id)
        assert [t.id for t in list_denial_types()] == [a.id]

    def test_duplicate_description(self, db_session):
        add_denial_type("Duplicate charge")
        with pytest.raises(ConflictError):
            add_denial_type("Duplicate charge")

    def test_blank_description(self, db_session):
        with pytest.raises(ValidationError):
            add_denial_type("   ")

    def test_remove_missing_type(self, db_session):
        with pytest.raises(NotFoundError):
            remove_denial_type(4040)
