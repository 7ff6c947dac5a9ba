"""CLIConfig: Command-line operational overrides.

Minimal configuration for operational parameters that commonly change
between runs: mode, output paths, backfill range, verbosity.

This schema handles command-line arguments parsed by argparse.
"""

from typing import Literal, Optional
from pydantic import model_validator
from glassline.schemas.base import GlasslineBaseModel


class CLIConfig(GlasslineBaseModel):
    """Command-line configuration overrides.

    Operational-only settings that override user and param configs.
    Highest priority in config resolution.

    Notes
    -----
    If start_time or end_time are provided but mode is not, mode is
    automatically set to "backfill".

    Usage
    -----
        cli_cfg = CLIConfig(
            start_time="2024-03-01T12:00:00Z",
            end_time="2024-03-04T06:00:00Z",
            mirror_path="/mnt/mirror/glassline.db",
        )
        # mode automatically set to "backfill"

        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    mode: Optional[Literal["live", "backfill"]] = None
    base_dir: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    mirror_path: Optional[str] = None
    log_level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]] = None

    @model_validator(mode="after")
    def infer_backfill_mode_from_times(self):
        """If times provided but mode not specified, set mode to backfill."""
        if self.mode is None:
            if self.start_time or self.end_time:
                self.mode = "backfill"

        return self

    def to_internal_overrides(self) -> dict:
        """Convert CLI config to internal config structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        if self.mode is not None:
            overrides["mode"] = self.mode

        if self.base_dir is not None:
            overrides["base_dir"] = str(self.base_dir)

        backfill_overrides = {}
        if self.start_time is not None:
            backfill_overrides["start_time"] = self.start_time
        if self.end_time is not None:
            backfill_overrides["end_time"] = self.end_time
        if self.mirror_path is not None:
            backfill_overrides["mirror_path"] = self.mirror_path

        if backfill_overrides:
            overrides["backfill"] = backfill_overrides

        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        return overrides
