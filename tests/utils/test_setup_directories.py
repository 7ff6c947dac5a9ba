import json

import pytest
from argparse import Namespace

from glassline.schemas.initialization import (
    generate_run_id,
    init_runtime_config,
    load_user_config_dict,
)
from glassline.setup_directories import get_log_path, setup_output_directories

pytestmark = [pytest.mark.unit]


def test_setup_output_directories_creates_layout(temp_dir):
    dirs = setup_output_directories(temp_dir / "out")

    assert set(dirs) == {"base", "store", "backfill", "logs"}
    for path in dirs.values():
        assert path.is_dir()
    assert dirs["store"] == (temp_dir / "out").resolve() / "store"


def test_setup_output_directories_is_idempotent(temp_dir):
    first = setup_output_directories(temp_dir)
    second = setup_output_directories(temp_dir)
    assert first == second


def test_get_log_path(temp_dir):
    dirs = setup_output_directories(temp_dir)
    assert get_log_path(dirs, "run1").name == "pipeline_run1.log"
    assert get_log_path(dirs).name == "pipeline_latest.log"


def test_generate_run_id_is_unique():
    assert generate_run_id() != generate_run_id()


def test_load_user_config_dict(temp_dir):
    path = temp_dir / "user_config.py"
    path.write_text('CONFIG = {"MAX_WORKERS": 2, "BASE_DIR": "./elsewhere"}\n')
    assert load_user_config_dict(str(path)) == {"MAX_WORKERS": 2, "BASE_DIR": "./elsewhere"}


def test_load_user_config_errors(temp_dir):
    with pytest.raises(FileNotFoundError):
        load_user_config_dict(str(temp_dir / "missing.py"))

    path = temp_dir / "empty.py"
    path.write_text("SETTINGS = 1\n")
    with pytest.raises(ValueError, match="No CONFIG"):
        load_user_config_dict(str(path))


def test_init_runtime_config_cli_wins_and_persists(temp_dir):
    user_file = temp_dir / "user_config.py"
    user_file.write_text(f'CONFIG = {{"BASE_DIR": "{temp_dir / "user_out"}", "MAX_WORKERS": 2}}\n')
    args = Namespace(config=str(user_file), base_dir=str(temp_dir / "cli_out"),
                     verbose=True, rerun=False)

    config = init_runtime_config(args)

    assert config.base_dir == str((temp_dir / "cli_out").resolve())
    assert config.cascade.max_workers == 2
    assert config.logging.level == "DEBUG"
    assert config.output_dirs["store"].endswith("store")
    assert config.run_id

    saved = json.loads((temp_dir / "cli_out" / f"runtime_config_{config.run_id}.json").read_text())
    assert saved["run_id"] == config.run_id
    assert "created_at" in saved


def test_init_runtime_config_rerun_cleans_base(temp_dir):
    base = temp_dir / "out"
    (base / "store").mkdir(parents=True)
    stale = base / "store" / "stale.db"
    stale.write_text("x")

    init_runtime_config(Namespace(base_dir=str(base), rerun=True))
    assert not stale.exists()
    assert (base / "store").is_dir()


def test_init_runtime_config_backfill_requires_range(temp_dir):
    with pytest.raises(ValueError):
        init_runtime_config(Namespace(base_dir=str(temp_dir), mode="backfill"))
