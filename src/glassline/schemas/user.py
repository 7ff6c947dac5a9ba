"""UserConfig: Forgiving, minimal user-facing configuration.

This schema accepts user inputs with aliases for common naming patterns
(e.g., BASE_DIR → base_dir, START_TIME → start_time).

UserConfig is intentionally minimal - users only specify what they want
to override from the expert defaults.
"""

from typing import Literal, Optional
from pydantic import Field, field_validator, model_validator
from glassline.schemas.base import GlasslineBaseModel


class UserStoreConfig(GlasslineBaseModel):
    """User-facing store config."""
    db_filename: Optional[str] = None
    tables: Optional[dict[str, str]] = None


class UserTransformsConfig(GlasslineBaseModel):
    """User-facing transformation config."""
    gob_loading_lineage_keys: Optional[list[str]] = None
    probe_names_key: Optional[str] = None
    thresholds_key: Optional[str] = None
    probe_index_start: Optional[int] = None
    probe_index_length: Optional[int] = None

    @field_validator("gob_loading_lineage_keys", mode="before")
    @classmethod
    def split_comma_string(cls, v):
        """Accept a comma separated string."""
        if isinstance(v, str):
            return [k.strip() for k in v.split(",") if k.strip()]
        return v


class UserCascadeConfig(GlasslineBaseModel):
    """User-facing cascade config."""
    max_workers: Optional[int] = None
    queue_size: Optional[int] = None
    batch_size: Optional[int] = None
    retry_attempts: Optional[int] = None


class UserBackfillConfig(GlasslineBaseModel):
    """User-facing backfill config."""
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    mirror_path: Optional[str] = None
    mirror_cluster: Optional[str] = None
    mirror_database: Optional[str] = None
    max_workers: Optional[int] = None
    window_timeout_sec: Optional[int] = None


class UserConfig(GlasslineBaseModel):
    """User-facing configuration schema.

    Minimal, forgiving, and uses common aliases. Users only specify
    what they want to override from ParamConfig defaults.

    Usage
    -----
        user_cfg = UserConfig(
            base_dir="/data/glassline",
            start_time="2024-03-01T12:00:00Z",
            end_time="2024-03-04T06:00:00Z",
        )

        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    # Top-level operational settings
    mode: Optional[Literal["live", "backfill"]] = Field(None, alias="MODE")
    base_dir: Optional[str] = Field(None, alias="BASE_DIR")
    db_filename: Optional[str] = Field(None, alias="DB_FILENAME")
    log_level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]] = Field(
        None, alias="LOG_LEVEL"
    )

    # Backfill settings (flat aliases)
    start_time: Optional[str] = Field(None, alias="START_TIME")
    end_time: Optional[str] = Field(None, alias="END_TIME")
    mirror_path: Optional[str] = Field(None, alias="MIRROR_PATH")

    # Transformation settings (flat aliases)
    gob_loading_lineage_keys: Optional[list[str]] = Field(None, alias="GOB_LOADING_LINEAGE_KEYS")

    # Cascade settings (flat aliases)
    max_workers: Optional[int] = Field(None, alias="MAX_WORKERS")

    # Nested overrides (advanced users)
    store: Optional[UserStoreConfig] = None
    transforms: Optional[UserTransformsConfig] = None
    cascade: Optional[UserCascadeConfig] = None
    backfill: Optional[UserBackfillConfig] = None

    model_config = GlasslineBaseModel.model_config.copy()
    # Allow forgiving input dictionaries (ignore unknown legacy keys)
    model_config.update({"populate_by_name": True, "extra": "ignore"})

    @model_validator(mode="after")
    def infer_backfill_mode_from_times(self):
        """If a time range is given but mode is not, set mode to backfill."""
        if self.mode is None:
            if self.start_time or self.end_time:
                self.mode = "backfill"
            elif self.backfill and (self.backfill.start_time or self.backfill.end_time):
                self.mode = "backfill"

        return self

    @field_validator("gob_loading_lineage_keys", mode="before")
    @classmethod
    def split_comma_string(cls, v):
        """Accept a comma separated string."""
        if isinstance(v, str):
            return [k.strip() for k in v.split(",") if k.strip()]
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        """Accept lowercase level names."""
        if isinstance(v, str):
            return v.upper().strip()
        return v

    def to_internal_overrides(self) -> dict:
        """Convert flat UserConfig to nested InternalConfig structure.

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
        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        # Store section
        store = {}
        if self.db_filename is not None:
            store["db_filename"] = self.db_filename
        if self.store is not None:
            store.update(self.store.model_dump(exclude_none=True))
        if store:
            overrides["store"] = store

        # Transforms section
        transforms = {}
        if self.gob_loading_lineage_keys is not None:
            transforms["gob_loading_lineage_keys"] = self.gob_loading_lineage_keys
        if self.transforms is not None:
            transforms.update(self.transforms.model_dump(exclude_none=True))
        if transforms:
            overrides["transforms"] = transforms

        # Cascade section
        cascade = {}
        if self.max_workers is not None:
            cascade["max_workers"] = self.max_workers
        if self.cascade is not None:
            cascade.update(self.cascade.model_dump(exclude_none=True))
        if cascade:
            overrides["cascade"] = cascade

        # Backfill section
        backfill = {}
        if self.start_time is not None:
            backfill["start_time"] = self.start_time
        if self.end_time is not None:
            backfill["end_time"] = self.end_time
        if self.mirror_path is not None:
            backfill["mirror_path"] = self.mirror_path
        if self.backfill is not None:
            backfill.update(self.backfill.model_dump(exclude_none=True))
        if backfill:
            overrides["backfill"] = backfill

        return overrides
