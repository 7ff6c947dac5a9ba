import pytest

from glassline.backfill import BackfillTracker, generate_windows

pytestmark = [pytest.mark.unit, pytest.mark.backfill]


@pytest.fixture
def tracker(temp_dir):
    t = BackfillTracker(temp_dir / "backfill" / "tracker.db")
    yield t
    t.close()


@pytest.fixture
def windows():
    return generate_windows("2024-03-01T12:00:00Z", "2024-03-03T06:00:00Z")


def test_register_and_fetch_window(tracker, windows):
    assert tracker.register_window("Envelopes", windows[0]) is True
    assert tracker.register_window("Envelopes", windows[0]) is False

    status = tracker.get_window_status("Envelopes", windows[0])
    assert status["status"] == "pending"
    assert status["attempts"] == 0
    assert status["closed"] == 0
    assert status["creation_time"].startswith("2024-03-01T00:00:00")


def test_status_progression(tracker, windows):
    w = windows[0]
    tracker.register_window("Envelopes", w)
    tracker.mark_running("Envelopes", w)
    assert tracker.get_window_status("Envelopes", w)["status"] == "running"

    tracker.mark_completed("Envelopes", w, rows=12)
    status = tracker.get_window_status("Envelopes", w)
    assert status["status"] == "completed"
    assert status["rows_copied"] == 12
    assert status["attempts"] == 1
    assert tracker.should_process("Envelopes", w) is False


def test_failure_and_reset(tracker, windows):
    for w in windows:
        tracker.register_window("Envelopes", w)
    tracker.mark_running("Envelopes", windows[1])
    tracker.mark_failed("Envelopes", windows[1], "mirror unreachable")

    failed = tracker.get_windows("Envelopes", status="failed")
    assert [r["extent_id"] for r in failed] == [windows[1].extent_id]
    assert failed[0]["error_message"] == "mirror unreachable"
    assert tracker.should_process("Envelopes", windows[1]) is True

    assert tracker.reset_failed("Envelopes") == 1
    status = tracker.get_window_status("Envelopes", windows[1])
    assert status["status"] == "pending"
    assert status["error_message"] is None


def test_windows_are_tracked_per_table(tracker, windows):
    tracker.register_window("Envelopes", windows[0])
    tracker.register_window("Other", windows[0])
    tracker.mark_completed("Envelopes", windows[0], rows=1)

    assert tracker.should_process("Other", windows[0]) is True
    assert len(tracker.get_windows()) == 2


def test_statistics(tracker, windows):
    for w in windows:
        tracker.register_window("Envelopes", w)
    tracker.mark_completed("Envelopes", windows[0], rows=5)
    tracker.mark_completed("Envelopes", windows[1], rows=7)
    tracker.mark_failed("Envelopes", windows[2], "boom")

    stats = tracker.get_statistics("Envelopes")
    assert stats == {"total": 3, "completed": 2, "failed": 1, "running": 0,
                     "pending": 0, "rows_copied": 12}


def test_empty_statistics_are_zero(tracker):
    assert tracker.get_statistics() == {"total": 0, "completed": 0, "failed": 0,
                                        "running": 0, "pending": 0, "rows_copied": 0}


def test_invalid_status_filter(tracker):
    with pytest.raises(ValueError, match="Invalid status"):
        tracker.get_windows(status="done")


def test_state_survives_reopen(temp_dir, windows):
    path = temp_dir / "tracker.db"
    with BackfillTracker(path) as t:
        t.register_window("Envelopes", windows[0])
        t.mark_completed("Envelopes", windows[0], rows=3)

    with BackfillTracker(path) as t:
        assert t.should_process("Envelopes", windows[0]) is False
