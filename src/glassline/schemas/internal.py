"""InternalConfig: Authoritative runtime configuration.

This is the ONLY config schema that runtime code sees. It is fully validated,
normalized, and frozen.

All .get() calls, fallback defaults, and validation logic are FORBIDDEN in
runtime code - everything is explicit here.
"""

from typing import Literal, Optional
from pydantic import Field, ConfigDict
from glassline.schemas.base import GlasslineBaseModel


# =============================================================================
# Nested Configuration Models (Runtime)
# =============================================================================

class InternalTableNamesConfig(GlasslineBaseModel):
    """Runtime table names."""
    raw: str
    envelopes: str
    iri_measurements: str
    iri_defects: str
    cold_system_measurements: str
    blank_watch_temperatures: str
    blank_watch_gob_loading: str


class InternalStoreConfig(GlasslineBaseModel):
    """Runtime store configuration."""
    db_filename: str
    tables: InternalTableNamesConfig


class InternalTransformsConfig(GlasslineBaseModel):
    """Runtime transformation settings."""
    gob_loading_lineage_keys: list[str]
    probe_names_key: str
    thresholds_key: str
    probe_index_start: int = Field(ge=0)
    probe_index_length: int = Field(ge=1)


class InternalCascadeConfig(GlasslineBaseModel):
    """Runtime cascade configuration."""
    max_workers: int = Field(ge=1)
    queue_size: int = Field(ge=1)
    batch_size: int = Field(ge=1)
    retry_attempts: int = Field(ge=1)


class InternalBackfillConfig(GlasslineBaseModel):
    """Runtime backfill configuration.

    start_time and end_time are only required in backfill mode; that is
    checked in resolve_config().
    """
    start_time: Optional[str]
    end_time: Optional[str]
    mirror_path: Optional[str]
    mirror_cluster: str
    mirror_database: str
    max_workers: int = Field(ge=1)
    window_timeout_sec: int = Field(ge=1)
    tracker_filename: str


class InternalLoggingConfig(GlasslineBaseModel):
    """Runtime logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


# =============================================================================
# Main InternalConfig
# =============================================================================

class InternalConfig(GlasslineBaseModel):
    """Authoritative runtime configuration.

    Runtime modules receive InternalConfig and access fields directly::

        def __init__(self, config: InternalConfig):
            self.max_workers = config.cascade.max_workers  # NOT .get()

    The extra `output_dirs` and `run_id` fields are filled in by
    init_runtime_config(); they stay None when a config is resolved directly.
    """

    mode: Literal["live", "backfill"]
    base_dir: Optional[str]
    store: InternalStoreConfig
    transforms: InternalTransformsConfig
    cascade: InternalCascadeConfig
    backfill: InternalBackfillConfig
    logging: InternalLoggingConfig
    output_dirs: Optional[dict[str, str]] = None
    run_id: Optional[str] = None

    model_config = ConfigDict(
        extra='forbid',
        validate_assignment=True,
        use_enum_values=True,
        str_strip_whitespace=True,
        frozen=True,  # Immutable after construction
    )
