"""Complete runtime initialization for the glassline pipeline.

This module handles ALL initialization responsibilities:
- Configuration resolution (CLI > User > Param)
- Output directory setup
- Cleanup handling (--rerun)
- Configuration persistence with run ID
- Returns fully ready InternalConfig for the orchestrator
"""

import importlib.util
import json
import logging
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from glassline.schemas.resolve import resolve_config
from glassline.schemas.param import ParamConfig
from glassline.schemas.user import UserConfig
from glassline.schemas.cli import CLIConfig
from glassline.schemas.internal import InternalConfig
from glassline.setup_directories import setup_output_directories

logger = logging.getLogger(__name__)


def load_user_config_dict(config_path: str) -> dict:
    """Load user config dict from Python file.

    Raises
    ------
    FileNotFoundError
        If config file does not exist.
    ValueError
        If no CONFIG dict found in file.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    spec = importlib.util.spec_from_file_location("config_module", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Could not load config module from {path}")

    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    for name in dir(module):
        if name.startswith('CONFIG'):
            obj = getattr(module, name)
            if isinstance(obj, dict):
                return obj

    raise ValueError(f"No CONFIG dict found in {path}")


def generate_run_id() -> str:
    """UTC timestamp plus a short random suffix, e.g. ``20240301T120000_1a2b3c4d``."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    return f"{stamp}_{uuid.uuid4().hex[:8]}"


def _handle_rerun_cleanup(base_dir: Optional[str], rerun: bool) -> None:
    """Handle --rerun directory cleanup if requested."""
    if not rerun or base_dir is None:
        return

    base_dir_path = Path(base_dir)
    if base_dir_path.exists():
        logger.info("Cleaning output directory: %s", base_dir_path)
        shutil.rmtree(base_dir_path)


def _persist_runtime_config(config: InternalConfig, output_dirs: Dict[str, Path]) -> Path:
    """Save the resolved configuration next to the outputs for reproducibility."""
    config_file = Path(output_dirs["base"]) / f"runtime_config_{config.run_id}.json"

    config_dict = config.model_dump()
    config_dict["created_at"] = datetime.now(timezone.utc).isoformat()

    with open(config_file, 'w') as f:
        json.dump(config_dict, f, indent=2, default=str)

    logger.info("Runtime config saved: %s", config_file)
    return config_file


def init_runtime_config(args) -> InternalConfig:
    """Complete runtime initialization - single entry point for the CLI.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed arguments. Reads ``config`` (optional path to a user config
        file), ``mode``, ``base_dir``, ``start_time``, ``end_time``,
        ``mirror``, ``verbose`` and ``rerun`` when present.

    Returns
    -------
    InternalConfig
        Resolved configuration with ``output_dirs`` and ``run_id`` set.

    Examples
    --------
    >>> args = parser.parse_args()
    >>> config = init_runtime_config(args)
    >>> orchestrator = PipelineOrchestrator(config)
    """
    param_cfg = ParamConfig()

    config_path = getattr(args, 'config', None)
    user_cfg = UserConfig.model_validate(load_user_config_dict(config_path)) if config_path else None

    cli_args = {
        k: v
        for k, v in {
            "mode": getattr(args, 'mode', None),
            "base_dir": getattr(args, 'base_dir', None),
            "start_time": getattr(args, 'start_time', None),
            "end_time": getattr(args, 'end_time', None),
            "mirror_path": getattr(args, 'mirror', None),
            "log_level": "DEBUG" if getattr(args, 'verbose', False) else None,
        }.items()
        if v is not None
    }
    cli_cfg = CLIConfig.model_validate(cli_args)

    internal_config_dict = resolve_config(param_cfg, user_cfg, cli_cfg).model_dump()

    _handle_rerun_cleanup(internal_config_dict["base_dir"], getattr(args, 'rerun', False))

    output_dirs = setup_output_directories(internal_config_dict["base_dir"])
    internal_config_dict["base_dir"] = str(output_dirs["base"])
    internal_config_dict["output_dirs"] = {k: str(v) for k, v in output_dirs.items()}
    internal_config_dict["run_id"] = generate_run_id()

    config = InternalConfig.model_validate(internal_config_dict)
    _persist_runtime_config(config, output_dirs)

    logger.info("Runtime initialization complete. Run ID: %s", config.run_id)
    return config


__all__ = ['init_runtime_config', 'load_user_config_dict', 'generate_run_id']
