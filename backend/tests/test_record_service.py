# Overview: Pytest coverage for record registration and aggregate lookups.

import pytest

from aih_audit.extensions import db
from aih_audit.models import Movement, ServiceEncounter
from aih_audit.services.denial_service import add_denial, remove_denial
from aih_audit.services.record_service import (
    INITIAL_INTAKE_NOTE,
    create_record,
    find_record,
    get_record_aggregate,
    normalize_encounter_numbers,
)
from aih_audit.validation import ConflictError, NotFoundError, ValidationError


class TestNormalizeEncounterNumbers:

    def test_string_split_on_commas_and_newlines(self):
        assert normalize_encounter_numbers(" A1, A2\nA3\r\n,,", max_length=50) == ["A1", "A2", "A3"]

    def test_dict_values(self):
        assert normalize_encounter_numbers({"0": "A1", "1": " "}, max_length=50) == ["A1"]

    def test_overlong_entries_dropped(self):
        assert normalize_encounter_numbers(["A" * 51, "B1"], max_length=50) == ["B1"]

    def test_none(self):
        assert normalize_encounter_numbers(None, max_length=50) == []


class TestCreateRecord:

    def test_registration_writes_record_encounters_and_intake(self, db_session):
        record = create_record("AIH-R-0001", "1234.565", "07/2025", "E1, E2", created_by_user_id=7)

        assert record.status == 3
        assert record.initial_value_cents == 123457
        assert record.current_value_cents == 123457
        assert record.version_id == 1

        encounters = db.session.query(ServiceEncounter).filter_by(record_id=record.id).all()
        assert sorted(e.encounter_number for e in encounters) == ["E1", "E2"]

        movements = db.session.query(Movement).filter_by(record_id=record.id).all()
        assert len(movements) == 1
        intake = movements[0]
        assert intake.movement_type == "INTAKE"
        assert intake.record_status == 3
        assert intake.value_cents == 123457
        assert intake.actor_user_id == 7
        assert intake.notes == INITIAL_INTAKE_NOTE
        assert intake.moved_at == record.created_at
        assert intake.nursing_professional is None

    def test_all_reasons_collected(self, db_session):
        with pytest.raises(ValidationError) as exc_info:
            create_record("AB", "-1", "2025-07", [])

        assert exc_info.value.reasons == [
            "record number must have between 3 and 50 characters",
            "initial value must be at least 0.01",
            "competence must use the MM/YYYY format",
            "at least one valid encounter number is required",
        ]

    def test_competence_before_min_year(self, db_session):
        with pytest.raises(ValidationError) as exc_info:
            create_record("AIH-R-0002", "10.00", "12/2019", ["E1"])
        assert exc_info.value.reasons == ["competence year must be 2020 or later"]

    def test_too_many_encounters(self, app, db_session):
        limit = app.config["RECORD_MAX_ENCOUNTERS"]
        with pytest.raises(ValidationError) as exc_info:
            create_record("AIH-R-0003", "10.00", "07/2025", [f"E{i}" for i in range(limit + 1)])
        assert exc_info.value.reasons == [f"too many encounter numbers (maximum {limit})"]

    def test_duplicate_number(self, db_session, make_record):
        make_record("AIH-R-0004")
        with pytest.raises(ConflictError):
            create_record("  AIH-R-0004 ", "10.00", "07/2025", ["E1"])


class TestAggregate:

    def test_live_aggregate_shape(self, db_session, make_record):
        record = make_record("AIH-R-0101", encounters=("E2", "E1"))
        kept = add_denial(record.id, "LINE-1", "Duplicate charge", "Dr. Lima")
        dropped = add_denial(record.id, "LINE-2", "Duplicate charge", "Dr. Lima")
        remove_denial(dropped.id)

        aggregate = get_record_aggregate("AIH-R-0101")

        assert aggregate["is_archived"] is False
        assert aggregate["external_number"] == "AIH-R-0101"
        assert aggregate["initial_value"] == "1000.00"
        assert aggregate["status_label"] == "Active (under discussion)"
        assert aggregate["encounter_numbers"] == ["E2", "E1"]
        assert [m["movement_type"] for m in aggregate["movements"]] == ["INTAKE"]
        assert [d["id"] for d in aggregate["denials"]] == [kept.id]
        assert [d["id"] for d in aggregate["denial_history"]] == [kept.id, dropped.id]
        assert "archived_at" not in aggregate

    def test_cache_invalidated_by_writes(self, db_session, make_record):
        record = make_record("AIH-R-0102")
        assert get_record_aggregate("AIH-R-0102")["denials"] == []

        add_denial(record.id, "LINE-1", "Duplicate charge", "Dr. Lima")

        assert len(get_record_aggregate("AIH-R-0102")["denials"]) == 1

    def test_missing_record(self, db_session):
        with pytest.raises(NotFoundError):
            get_record_aggregate("NOPE-000")

    def test_find_record_missing_everywhere(self, db_session):
        with pytest.raises(NotFoundError):
            find_record("NOPE-001")
