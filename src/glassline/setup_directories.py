"""
Directory setup for the glassline pipeline.

Everything a run produces lives under one base directory:
- store/: the table store database
- backfill/: backfill window trackers
- logs/: pipeline logs
- runtime_config_<run_id>.json at the base
"""

from pathlib import Path


def setup_output_directories(base_output_dir=None):
    """
    Set up the output directory structure.

    Parameters
    ----------
    base_output_dir : str or Path, optional
        Base output directory. Defaults to ./output in the current directory.

    Returns
    -------
    dict
        Dictionary with paths: 'base', 'store', 'backfill', 'logs'
    """
    if base_output_dir is None:
        base_output_dir = Path.cwd() / "output"

    base_output_dir = Path(base_output_dir).expanduser().resolve()

    directories = {
        "base": base_output_dir,
        "store": base_output_dir / "store",
        "backfill": base_output_dir / "backfill",
        "logs": base_output_dir / "logs",
    }

    for path in directories.values():
        path.mkdir(parents=True, exist_ok=True)

    return directories


def get_log_path(output_dirs, run_id=None):
    """
    Get the log file path for a run.

    Parameters
    ----------
    output_dirs : dict
        Output directories from setup_output_directories()
    run_id : str, optional
        Run identifier; without one the log is pipeline_latest.log

    Returns
    -------
    Path
        Full path to log file
    """
    log_dir = Path(output_dirs["logs"])
    log_dir.mkdir(parents=True, exist_ok=True)

    filename = f"pipeline_{run_id}.log" if run_id else "pipeline_latest.log"
    return log_dir / filename
