import time

import pandas as pd
import pytest
from datetime import datetime, timezone

from glassline.backfill import BackfillRunner, BackfillTracker
from glassline.intake import ENVELOPE_SCHEMA
from glassline.store import TableStore

from tests.helpers.clock import FakeClock
from tests.helpers.events import envelope, gob_loading_data, iri_data

pytestmark = [pytest.mark.unit, pytest.mark.backfill]


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def backfill_config(make_config):
    return make_config(START_TIME="2024-03-01T12:00:00Z", END_TIME="2024-03-03T06:00:00Z")


@pytest.fixture
def mirror():
    """Mirror envelope store with one extent per day, the last at the exact end instant."""
    mirror_clock = FakeClock()
    store = TableStore(":memory:", clock=mirror_clock)
    store.create_table("Envelopes", ENVELOPE_SCHEMA)

    def land(when, *rows):
        mirror_clock.set(when)
        store.append("Envelopes", pd.DataFrame(list(rows)), store.new_extent_id())

    land(utc(2024, 3, 1, 11), envelope("blank-watch", "gob-loading", gob_loading_data()))
    land(utc(2024, 3, 1, 13), envelope("iri", "measurements", iri_data()))
    land(utc(2024, 3, 2, 5), envelope("blank-watch", "gob-loading", gob_loading_data()))
    land(utc(2024, 3, 3, 6), envelope("blank-watch", "gob-loading", gob_loading_data()))
    land(utc(2024, 3, 3, 7), envelope("blank-watch", "gob-loading", gob_loading_data()))
    yield store
    store.close()


@pytest.fixture
def runner(engine, mirror, backfill_config):
    return BackfillRunner(engine, mirror, backfill_config)


def test_plan_uses_configured_range(runner):
    windows = runner.plan()
    assert [w.day for w in windows] == ["2024-03-01", "2024-03-02", "2024-03-03"]


def test_plan_without_range_raises(engine, mirror, internal_config):
    with pytest.raises(ValueError, match="start and an end"):
        BackfillRunner(engine, mirror, internal_config).plan()


def test_commands_for_dry_run(backfill_config):
    runner = BackfillRunner(engine=None, mirror=None, config=backfill_config)
    commands = runner.commands(runner.plan())

    assert len(commands) == 3
    assert all(c.startswith(".set-or-append async Envelopes") for c in commands)
    assert 'creationTime="2024-03-02T00:00:00Z"' in commands[1]
    assert "<= datetime(2024-03-03T06:00:00Z)" in commands[2]


def test_run_copies_each_window_once(runner, engine):
    results = runner.run()

    assert [r.status for r in results] == ["completed"] * 3
    assert [r.rows for r in results] == [1, 1, 1]
    store = engine.store
    assert store.row_count("Envelopes") == 3
    assert store.row_count("IriMeasurements") == 3
    # the row at the true end instant lands once, the row after it never
    assert store.row_count("BlankWatchGobLoading") == 4


def test_rows_carry_window_creation_time(runner, engine):
    windows = runner.plan()
    runner.run(windows)

    for window in windows:
        for table in ("Envelopes", "BlankWatchGobLoading"):
            extent = engine.store.get_extent(table, window.extent_id)
            assert extent["creation_time"] == f"{window.day}T00:00:00.000000Z"


def test_rerun_skips_completed_windows(runner, engine):
    runner.run()
    results = runner.run()

    assert [r.status for r in results] == ["skipped"] * 3
    assert engine.store.row_count("Envelopes") == 3


def test_resubmitted_window_writes_nothing(runner, engine):
    window = runner.plan()[1]
    assert runner.copy_window(window) == 1
    assert runner.copy_window(window) == 0
    assert engine.store.row_count("Envelopes") == 1


def test_failed_window_is_isolated_and_retried(monkeypatch, engine, mirror, backfill_config, temp_dir):
    tracker = BackfillTracker(temp_dir / "tracker.db")
    runner = BackfillRunner(engine, mirror, backfill_config, tracker)
    windows = runner.plan()
    real_read = mirror.read_ingested_between

    def flaky_read(table, start, end, closed=False):
        if start == windows[1].start:
            raise ConnectionError("mirror unreachable")
        return real_read(table, start, end, closed=closed)

    monkeypatch.setattr(mirror, "read_ingested_between", flaky_read)
    results = runner.run(windows)

    assert [r.status for r in results] == ["completed", "failed", "completed"]
    assert "mirror unreachable" in results[1].error
    assert engine.store.row_count("Envelopes") == 2
    assert [w.extent_id for w in runner.failed_windows()] == [windows[1].extent_id]

    monkeypatch.setattr(mirror, "read_ingested_between", real_read)
    retried = runner.retry_failed()

    assert [(r.window, r.status) for r in retried] == [(windows[1], "completed")]
    assert engine.store.row_count("Envelopes") == 3
    assert tracker.get_statistics("Envelopes")["completed"] == 3
    assert runner.retry_failed() == []
    tracker.close()


def test_source_table_override(engine, backfill_config):
    mirror = TableStore(":memory:", clock=FakeClock(utc(2024, 3, 2, 1)))
    mirror.create_table("MirrorEnvelopes", ENVELOPE_SCHEMA)
    mirror.append("MirrorEnvelopes",
                  pd.DataFrame([envelope("iri", "defects", iri_data("defects"))]), "m1")

    runner = BackfillRunner(engine, mirror, backfill_config, source_table="MirrorEnvelopes")
    runner.run()

    assert engine.store.row_count("IriDefects") == 3
    mirror.close()


class StallingRunner(BackfillRunner):
    """Copies normally, except that one window stalls before its copy."""

    stall_day = None
    stall_sec = 1.5

    def copy_window(self, window):
        if window.day == self.stall_day:
            time.sleep(self.stall_sec)
        return super().copy_window(window)


def test_timeout_is_measured_per_window(engine, mirror, backfill_config, temp_dir):
    tracker = BackfillTracker(temp_dir / "tracker.db")
    runner = StallingRunner(engine, mirror, backfill_config, tracker)
    runner.stall_day = "2024-03-01"
    runner.max_workers = 1
    runner.window_timeout = 0.5

    results = runner.run()

    # the later windows wait behind the stalled one but keep their own deadline
    assert [r.status for r in results] == ["failed", "completed", "completed"]
    assert "timed out" in results[0].error
    statuses = [rec["status"] for rec in tracker.get_windows("Envelopes")]
    assert statuses == ["failed", "completed", "completed"]
    tracker.close()


def test_timed_out_window_stays_failed_and_is_retried(engine, mirror, backfill_config, temp_dir):
    tracker = BackfillTracker(temp_dir / "tracker.db")
    runner = StallingRunner(engine, mirror, backfill_config, tracker)
    runner.stall_day = "2024-03-02"
    runner.window_timeout = 0.5
    windows = runner.plan()

    results = runner.run(windows)

    assert [r.status for r in results] == ["completed", "failed", "completed"]
    # the stalled worker finished after its timeout without overwriting the failure
    assert tracker.get_window_status("Envelopes", windows[1])["status"] == "failed"
    assert [w.extent_id for w in runner.failed_windows()] == [windows[1].extent_id]

    runner.stall_day = None
    retried = runner.retry_failed()

    assert [(r.window, r.status) for r in retried] == [(windows[1], "completed")]
    # the late copy already landed, so the resubmission writes nothing
    assert retried[0].rows == 0
    assert engine.store.row_count("Envelopes") == 3
    assert tracker.get_statistics("Envelopes")["completed"] == 3
    tracker.close()
