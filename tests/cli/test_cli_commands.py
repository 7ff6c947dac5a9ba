import json
import logging
from datetime import datetime, timedelta, timezone

import pytest

from glassline.cli import main
from glassline.cli.run_pipeline import build_parser
from glassline.store import TableStore

from tests.helpers.events import mixed_raw_batch

pytestmark = [pytest.mark.unit]


@pytest.fixture(autouse=True)
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_parser_backfill_options():
    args = build_parser().parse_args([
        "--base-dir", "/tmp/x", "backfill", "--start-time", "2024-03-01T00:00:00Z",
        "--end-time", "2024-03-02T00:00:00Z", "--dry-run",
    ])
    assert args.command == "backfill"
    assert args.dry_run is True
    assert args.retry_failed is False


def test_setup_then_verify(temp_dir, capsys):
    assert main(["--base-dir", str(temp_dir), "setup"]) == 0
    assert (temp_dir / "store" / "glassline.db").exists()

    assert main(["--base-dir", str(temp_dir), "verify"]) == 0
    out = capsys.readouterr().out
    assert "[OK ] policy IriMeasurements" in out


def test_verify_before_setup_fails(temp_dir, capsys):
    assert main(["--base-dir", str(temp_dir), "verify"]) == 1
    assert "[MISSING] table RawEvents" in capsys.readouterr().out


def test_ingest_file(temp_dir, capsys):
    events = temp_dir / "events.jsonl"
    events.write_text("\n".join(json.dumps(e) for e in mixed_raw_batch()) + "\n")

    assert main(["--base-dir", str(temp_dir), "ingest", str(events)]) == 0
    assert '"rows_ingested": 6' in capsys.readouterr().out


def test_backfill_dry_run_prints_commands(temp_dir, capsys):
    code = main(["--base-dir", str(temp_dir), "backfill",
                 "--start-time", "2024-03-01T12:00:00Z", "--end-time", "2024-03-03T06:00:00Z",
                 "--dry-run"])
    out = capsys.readouterr().out

    assert code == 0
    assert out.count(".set-or-append async Envelopes") == 3


def test_backfill_needs_mirror(temp_dir):
    code = main(["--base-dir", str(temp_dir), "backfill",
                 "--start-time", "2024-03-01T12:00:00Z", "--end-time", "2024-03-02T00:00:00Z"])
    assert code == 2


def test_backfill_from_mirror(temp_dir, capsys):
    mirror_dir = temp_dir / "mirror"
    events = temp_dir / "events.jsonl"
    events.write_text("\n".join(json.dumps(e) for e in mixed_raw_batch()) + "\n")
    assert main(["--base-dir", str(mirror_dir), "ingest", str(events)]) == 0

    now = datetime.now(timezone.utc)
    start = (now - timedelta(days=1)).strftime("%Y-%m-%dT%H:%M:%SZ")
    end = (now + timedelta(days=1)).strftime("%Y-%m-%dT%H:%M:%SZ")
    local = temp_dir / "local"
    code = main(["--base-dir", str(local), "backfill", "--start-time", start, "--end-time", end,
                 "--mirror", str(mirror_dir / "store" / "glassline.db")])
    assert code == 0
    assert '"completed": 3' in capsys.readouterr().out
    with TableStore(local / "store" / "glassline.db") as store:
        assert store.row_count("Envelopes") == 6
        assert store.row_count("IriMeasurements") == 3
