"""ParamConfig: Expert defaults for the glassline pipeline.

This module defines the complete default configuration. ALL pipeline
parameters must have defaults here. No runtime code should define fallback
values - this is the single source of truth for defaults.

Runtime code NEVER reads from ParamConfig directly - it only receives InternalConfig.
"""

from typing import Literal, Optional
from pydantic import Field, field_validator
from glassline.schemas.base import GlasslineBaseModel


# =============================================================================
# Nested Configuration Models
# =============================================================================

class TableNamesConfig(GlasslineBaseModel):
    """Names of the raw, envelope and target tables."""
    raw: str = "RawEvents"
    envelopes: str = "Envelopes"
    iri_measurements: str = "IriMeasurements"
    iri_defects: str = "IriDefects"
    cold_system_measurements: str = "ColdSystemMeasurements"
    blank_watch_temperatures: str = "BlankWatchTemperatures"
    blank_watch_gob_loading: str = "BlankWatchGobLoading"


class StoreConfig(GlasslineBaseModel):
    """Table store configuration."""
    db_filename: str = Field("glassline.db", min_length=1)
    tables: TableNamesConfig = Field(default_factory=TableNamesConfig)


class TransformsConfig(GlasslineBaseModel):
    """Device transformation settings.

    `gob_loading_lineage_keys` lists the payload keys stripped before the
    gob-loading open-ended expansion. Two historical variants of this list
    exist (`user` alone versus `cycle`/`section`/`gob`/`position`); the
    default is their union.
    """
    gob_loading_lineage_keys: list[str] = Field(
        default_factory=lambda: ["cycle", "section", "gob", "position", "user"]
    )
    probe_names_key: str = "probeNames"
    thresholds_key: str = "thresholds"
    probe_index_start: int = Field(6, ge=0)
    probe_index_length: int = Field(1, ge=1)

    @field_validator("gob_loading_lineage_keys", mode="before")
    @classmethod
    def split_comma_string(cls, v):
        """Accept a comma separated string."""
        if isinstance(v, str):
            return [k.strip() for k in v.split(",") if k.strip()]
        return v


class CascadeConfig(GlasslineBaseModel):
    """Cascade engine configuration."""
    max_workers: int = Field(5, ge=1, description="Concurrent policies per source append")
    queue_size: int = Field(100, ge=1, description="Pending raw batches")
    batch_size: int = Field(500, ge=1, description="Raw events per ingested batch")
    retry_attempts: int = Field(3, ge=1, description="Attempts per failed cascade step")


class BackfillConfig(GlasslineBaseModel):
    """Historical backfill configuration."""
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    mirror_path: Optional[str] = None
    mirror_cluster: str = "https://mirror.glassline.local"
    mirror_database: str = "telemetry"
    max_workers: int = Field(4, ge=1)
    window_timeout_sec: int = Field(3600, ge=1)
    tracker_filename: str = "backfill_tracker.db"


class LoggingConfig(GlasslineBaseModel):
    """Logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


# =============================================================================
# Main ParamConfig
# =============================================================================

class ParamConfig(GlasslineBaseModel):
    """Complete expert configuration with all defaults.

    This is the base layer in config resolution::

        internal_cfg = resolve_config(param_cfg, user_cfg, cli_cfg)

    Runtime code only sees InternalConfig.
    """

    mode: Literal["live", "backfill"] = "live"
    base_dir: Optional[str] = None
    store: StoreConfig = Field(default_factory=StoreConfig)
    transforms: TransformsConfig = Field(default_factory=TransformsConfig)
    cascade: CascadeConfig = Field(default_factory=CascadeConfig)
    backfill: BackfillConfig = Field(default_factory=BackfillConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
