# Overview: Pytest coverage for the Flask CLI command groups.

import json

from aih_audit.extensions import db
from aih_audit.models import ArchivedRecord

from conftest import ARCHIVE_NOW


OLD_AS_OF = ARCHIVE_NOW.strftime("%Y-%m-%dT%H:%M:%SZ")


class TestArchiveCommands:

    def test_run_prints_summary(self, app, old_finalized_record):
        record_id = old_finalized_record.id
        runner = app.test_cli_runner()
        result = runner.invoke(args=["archive", "run", "--as-of", OLD_AS_OF, "--batch-size", "5"])

        assert result.exit_code == 0, result.output
        summary = json.loads(result.output)
        assert summary["archived"] == 1
        assert summary["batches"] == 1
        assert summary["cutoff_date"] == "2022-03-20"
        assert db.session.get(ArchivedRecord, record_id) is not None

    def test_lookup_archived(self, app, old_finalized_record):
        runner = app.test_cli_runner()
        runner.invoke(args=["archive", "run", "--as-of", OLD_AS_OF])

        result = runner.invoke(args=["archive", "lookup", "AIH-OLD-1"])

        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["is_archived"] is True
        assert len(payload["denials"]) == 1

    def test_lookup_missing_exits_nonzero(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["archive", "lookup", "AIH-NONE"])

        assert result.exit_code == 1
        assert "FAIL" in result.output


class TestRecordCommands:

    def test_create_and_show(self, app, db_session):
        runner = app.test_cli_runner()
        created = runner.invoke(args=[
            "records", "create",
            "--number", "AIH-CLI-01",
            "--value", "1500.00",
            "--competence", "07/2025",
            "--encounters", "A1,A2",
        ])
        assert "PASS" in created.output

        shown = runner.invoke(args=["records", "show", "AIH-CLI-01"])
        payload = json.loads(shown.output)
        assert payload["current_value"] == "1500.00"
        assert payload["encounter_numbers"] == ["A1", "A2"]
        assert payload["is_archived"] is False

    def test_create_reports_every_problem(self, app, db_session):
        result = app.test_cli_runner().invoke(args=[
            "records", "create",
            "--number", "X",
            "--value", "abc",
            "--competence", "07/2025",
            "--encounters", "A1",
        ])

        assert result.output.count("FAIL") == 2

    def test_next_movement(self, app, make_record):
        record = make_record("AIH-CLI-02")
        result = app.test_cli_runner().invoke(args=["records", "next-movement", str(record.id)])

        assert result.output.startswith("DISCHARGE:")


class TestDenialTypeCommands:

    def test_add_list_remove(self, app, db_session):
        runner = app.test_cli_runner()

        added = runner.invoke(args=["denial-types", "add", "Duplicate charge"])
        assert "PASS" in added.output

        listed = runner.invoke(args=["denial-types", "list"])
        assert "Duplicate charge" in listed.output

        duplicate = runner.invoke(args=["denial-types", "add", "Duplicate charge"])
        assert "FAIL" in duplicate.output

        removed = runner.invoke(args=["denial-types", "remove", "999"])
        assert "FAIL" in removed.output


class TestSystemCommands:

    def test_init_db_is_idempotent(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["system", "init-db"])
        assert "PASS" in result.output
