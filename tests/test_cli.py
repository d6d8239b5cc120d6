"""
Tests for CLI entry points, configuration and phase orchestration.

These tests focus on:
- Argument validation and exit codes
- Settings resolution from environment variables
- Full runs against the in-memory store (never the real record store)
"""

import io
import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from eventrecon.cli import main
from eventrecon.config import ConfigError, load_settings
from eventrecon.identity import generate_event_id
from eventrecon.report import DRY_RUN_PREFIX, RunLog, RunStats
from eventrecon.runner import run_phases
from tests.support import MemoryStore, make_settings


JOURNEY = [
    {"id": "j1", "school_name": "Lindenschule", "booking_date": "2026-03-10", "event_type": "Minimusiker", "class": "3a", "registered_child": "Mia"},
    {"id": "j2", "school_name": "Lindenschule", "booking_date": "2026-03-10", "event_type": "Concert", "class": "3b", "registered_child": "Ben"},
]


class TestCLI(unittest.TestCase):
    def test_unknown_command_is_usage_error(self) -> None:
        with self.assertRaises(SystemExit) as ctx:
            main(["frobnicate"])
        self.assertEqual(ctx.exception.code, 2)

    def test_missing_credentials_exit_nonzero(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            cwd = os.getcwd()
            os.chdir(d)
            try:
                with mock.patch.dict(os.environ, {}, clear=True), mock.patch("sys.stdout", new_callable=io.StringIO) as out:
                    with self.assertRaises(SystemExit) as ctx:
                        main(["validate"])
            finally:
                os.chdir(cwd)
        self.assertEqual(ctx.exception.code, 1)
        self.assertIn("AIRTABLE_BASE_ID", out.getvalue())

    def test_dispatches_run_with_dry_run(self) -> None:
        env = {"AIRTABLE_API_KEY": "key", "AIRTABLE_BASE_ID": "appX"}
        with mock.patch.dict(os.environ, env, clear=True), mock.patch("eventrecon.cli.run_phases", return_value=0) as run:
            with self.assertRaises(SystemExit) as ctx:
                main(["run", "--dry-run", "--data-dir", "out"])
        self.assertEqual(ctx.exception.code, 0)
        phases, settings = run.call_args.args
        self.assertEqual(phases, ["backfill", "fix-duplicates", "validate"])
        self.assertEqual(settings.data_dir, Path("out"))
        self.assertTrue(run.call_args.kwargs["dry_run"])

    def test_validate_rejects_negative_sample_size(self) -> None:
        with mock.patch("sys.stderr", new_callable=io.StringIO):
            with self.assertRaises(SystemExit) as ctx:
                main(["validate", "--sample-size", "-1"])
        self.assertEqual(ctx.exception.code, 2)

    def test_rollback_needs_confirmation(self) -> None:
        env = {"AIRTABLE_API_KEY": "key", "AIRTABLE_BASE_ID": "appX"}
        with mock.patch.dict(os.environ, env, clear=True), mock.patch("eventrecon.cli.run_phases", return_value=0) as run:
            with mock.patch("builtins.input", return_value="no"), mock.patch("sys.stdout", new_callable=io.StringIO):
                with self.assertRaises(SystemExit) as ctx:
                    main(["rollback"])
            self.assertEqual(ctx.exception.code, 0)
            run.assert_not_called()

            with mock.patch("builtins.input", return_value="ROLLBACK"), mock.patch("sys.stdout", new_callable=io.StringIO):
                with self.assertRaises(SystemExit):
                    main(["rollback"])
            self.assertEqual(run.call_args.args[0], ["rollback"])

    def test_rollback_yes_skips_prompt(self) -> None:
        env = {"AIRTABLE_API_KEY": "key", "AIRTABLE_BASE_ID": "appX"}
        with mock.patch.dict(os.environ, env, clear=True), mock.patch("eventrecon.cli.run_phases", return_value=0) as run:
            with mock.patch("builtins.input", side_effect=AssertionError("prompted")):
                with self.assertRaises(SystemExit) as ctx:
                    main(["rollback", "--yes"])
        self.assertEqual(ctx.exception.code, 0)
        self.assertFalse(run.call_args.kwargs["dry_run"])


class TestSettings(unittest.TestCase):
    def test_env_values(self) -> None:
        settings = load_settings(
            {
                "AIRTABLE_PAT": "pat",
                "AIRTABLE_BASE_ID": "appX",
                "EVENTS_TABLE_ID": "tblEvents",
                "EVENTRECON_DATA_DIR": "data",
                "EVENTRECON_TIMEOUT": "5",
            }
        )
        self.assertEqual(settings.api_key, "pat")
        self.assertEqual(settings.tables.events, "tblEvents")
        self.assertEqual(settings.tables.classes, "Classes")
        self.assertEqual(settings.snapshot_path, Path("data") / "snapshot.json")
        self.assertEqual(settings.timeout, 5.0)

    def test_missing_credentials(self) -> None:
        with self.assertRaises(ConfigError):
            load_settings({"AIRTABLE_API_KEY": "key"})

    def test_bad_timeout(self) -> None:
        with self.assertRaises(ConfigError):
            load_settings({"AIRTABLE_API_KEY": "key", "AIRTABLE_BASE_ID": "appX", "EVENTRECON_TIMEOUT": "soon"})


class TestRunPhases(unittest.TestCase):
    def test_full_run_converges_and_passes(self) -> None:
        store = MemoryStore(
            {
                "parent_journey_table": JOURNEY,
                "Events": [
                    {"id": "recOLD", "event_id": "evt_lindenschule_concert_20260310_aa11bb", "school_name": "Lindenschule", "event_date": "2026-03-10"},
                    {"id": "recOLD2", "event_id": "evt_lindenschule_minimusiker_20260310_cc22dd", "school_name": "Lindenschule", "event_date": "2026-03-10"},
                ],
            }
        )
        with tempfile.TemporaryDirectory() as d:
            settings = make_settings(Path(d))

            code = run_phases(["backfill", "fix-duplicates", "validate"], settings, store=store, stream=io.StringIO())

            self.assertEqual(code, 0)
            events = list(store.rows("Events").values())
            self.assertEqual([e["event_id"] for e in events], [generate_event_id("Lindenschule", "minimusiker", "2026-03-10")])
            summary = json.loads(settings.summary_path.read_text(encoding="utf-8"))
            self.assertEqual(summary["counters"]["events_deleted"], 1)
            self.assertTrue(summary["validation"]["passed"])
            self.assertTrue(settings.report_path.exists())

            # a second run has nothing left to do
            code = run_phases(["backfill", "fix-duplicates", "validate"], settings, store=store, stream=io.StringIO())
            self.assertEqual(code, 0)
            summary = json.loads(settings.summary_path.read_text(encoding="utf-8"))
            self.assertEqual(summary["mutations"], 0)

    def test_lone_event_with_legacy_id_converges_without_orphans(self) -> None:
        legacy_id = "evt_lindenschule_minimusikertag_20260310_aa11bb"
        store = MemoryStore(
            {
                "parent_journey_table": [
                    {"id": "j1", "school_name": "Lindenschule", "booking_date": "2026-03-10", "event_type": "Minimusiker", "registered_child": "Mia"},
                ],
                "Events": [
                    {"id": "recL", "event_id": legacy_id, "school_name": "Lindenschule", "event_date": "2026-03-10", "event_type": "Minimusikertag"},
                ],
            }
        )
        canonical = generate_event_id("Lindenschule", "Minimusiker", "2026-03-10")
        with tempfile.TemporaryDirectory() as d:
            settings = make_settings(Path(d))

            code = run_phases(["backfill", "fix-duplicates", "validate"], settings, store=store, stream=io.StringIO())

            summary = json.loads(settings.summary_path.read_text(encoding="utf-8"))
            self.assertEqual(code, 0, summary["errors"])
            self.assertEqual(store.fields_of("Events", "recL")["event_id"], canonical)
            self.assertEqual(store.fields_of("parent_journey_table", "j1")["booking_id"], canonical)
            self.assertEqual(summary["counters"]["stale_identifiers"], 1)

            code = run_phases(["backfill", "fix-duplicates", "validate"], settings, store=store, stream=io.StringIO())
            self.assertEqual(code, 0)
            summary = json.loads(settings.summary_path.read_text(encoding="utf-8"))
            self.assertEqual(summary["mutations"], 0)

    def test_journey_category_decides_the_canonical_id(self) -> None:
        store = MemoryStore(
            {
                "parent_journey_table": [
                    {"id": "j1", "school_name": "Bachschule", "booking_date": "2026-04-01", "event_type": "Schulsong", "registered_child": "Lea"},
                ],
                "Events": [
                    {"id": "recC", "event_id": "evt_bachschule_concert_20260401_111111", "school_name": "Bachschule", "event_date": "2026-04-01", "event_type": "Concert"},
                    {"id": "recS", "event_id": "evt_bachschule_schulsong_20260401_222222", "school_name": "Bachschule", "event_date": "2026-04-01", "event_type": "Schulsong"},
                ],
            }
        )
        canonical = generate_event_id("Bachschule", "Schulsong", "2026-04-01")
        with tempfile.TemporaryDirectory() as d:
            settings = make_settings(Path(d))

            code = run_phases(["backfill", "fix-duplicates", "validate"], settings, store=store, stream=io.StringIO())

            summary = json.loads(settings.summary_path.read_text(encoding="utf-8"))
            self.assertEqual(code, 0, summary["errors"])
        self.assertEqual([f["event_id"] for f in store.rows("Events").values()], [canonical])
        self.assertEqual(store.fields_of("parent_journey_table", "j1")["booking_id"], canonical)

    def test_dedupe_registrations_phase(self) -> None:
        store = MemoryStore(
            {
                "Registrations": [
                    {"id": "reg1", "event_id": ["recE"], "parent_id": ["recP"], "registered_child": "Mia", "registration_date": "2026-01-02"},
                    {"id": "reg2", "event_id": ["recE"], "parent_id": ["recP"], "registered_child": "mia ", "registration_date": "2026-01-01"},
                ]
            }
        )
        with tempfile.TemporaryDirectory() as d:
            settings = make_settings(Path(d))
            code = run_phases(["dedupe-registrations"], settings, store=store, stream=io.StringIO())
            summary = json.loads(settings.summary_path.read_text(encoding="utf-8"))
        self.assertEqual(code, 0)
        self.assertEqual(list(store.rows("Registrations")), ["reg2"])
        self.assertEqual(summary["registration_groups"][0]["deleted"], ["reg1"])

    def test_rollback_phase_writes_report(self) -> None:
        store = MemoryStore(
            {
                "parent_journey_table": [{"id": "j1", "booking_id": "evt_x", "class_id": "cls_x"}],
                "Events": [{"id": "recE", "event_id": "evt_x"}],
                "Classes": [{"id": "recK", "class_id": "cls_x"}],
            }
        )
        with tempfile.TemporaryDirectory() as d:
            settings = make_settings(Path(d))
            code = run_phases(["rollback"], settings, store=store, stream=io.StringIO())
            report = json.loads(settings.rollback_path.read_text(encoding="utf-8"))
        # no snapshot: the journey count is only warned about
        self.assertEqual(code, 0)
        self.assertEqual(report["deleted"], {"registrations": 0, "classes": 1, "events": 1})
        self.assertEqual(store.rows("Events"), {})
        self.assertEqual(len(store.rows("parent_journey_table")), 1)

    def test_dry_run_prefixes_every_line(self) -> None:
        store = MemoryStore({"parent_journey_table": JOURNEY})
        out = io.StringIO()
        with tempfile.TemporaryDirectory() as d:
            run_phases(["backfill", "fix-duplicates"], make_settings(Path(d)), dry_run=True, store=store, stream=out)
        lines = [line for line in out.getvalue().splitlines()]
        self.assertTrue(lines)
        self.assertTrue(all(line.startswith(DRY_RUN_PREFIX) for line in lines))
        self.assertNotIn("Events", store.tables)

    def test_fatal_store_error_exits_one(self) -> None:
        store = MemoryStore({"parent_journey_table": JOURNEY})
        store.denied_reads.add("Events")
        with tempfile.TemporaryDirectory() as d:
            settings = make_settings(Path(d))
            code = run_phases(["fix-duplicates"], settings, store=store, stream=io.StringIO())
            summary = json.loads(settings.summary_path.read_text(encoding="utf-8"))
        self.assertEqual(code, 1)
        self.assertIn("permission denied", summary["fatal"])

    def test_validation_failure_exits_one(self) -> None:
        store = MemoryStore({"parent_journey_table": JOURNEY})
        with tempfile.TemporaryDirectory() as d:
            # no snapshot on disk yet
            code = run_phases(["validate"], make_settings(Path(d)), store=store, stream=io.StringIO())
        self.assertEqual(code, 1)

    def test_unknown_phase(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            with self.assertRaises(ValueError):
                run_phases(["teleport"], make_settings(Path(d)), store=MemoryStore())


class TestRunLog(unittest.TestCase):
    def test_item_columns_and_prefix(self) -> None:
        log = RunLog(dry_run=True, stream=io.StringIO())
        log.item("skip", "Event evt_x")
        log.item("delete", "Events rec1")
        self.assertEqual(log.lines, ["[DRY RUN] SKIP   Event evt_x", "[DRY RUN] DELETE Events rec1"])

    def test_unknown_action_is_rejected(self) -> None:
        log = RunLog(stream=io.StringIO())
        with self.assertRaises(ValueError):
            log.item("maybe", "Events rec1")
        self.assertEqual(log.lines, [])

    def test_render_always_shows_errors(self) -> None:
        stats = RunStats()
        stats.bump("events_deleted", 2)
        stats.relinked["classes"] += 3
        self.assertEqual(stats.render(), ["events deleted:   2", "classes relinked: 3", "errors:           0"])


if __name__ == "__main__":
    unittest.main()
