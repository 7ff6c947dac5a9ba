"""glassline User Configuration.

This is the user-facing configuration file. Modify settings here to customize
the pipeline behavior. Expert defaults live in glassline.schemas.param.

Usage:
    glassline --config scripts/user_config.py setup
    glassline --config scripts/user_config.py ingest events.jsonl
    glassline --config scripts/user_config.py backfill --dry-run
"""

CONFIG = {
    # ========================================================================
    # PIPELINE MODE & OUTPUT
    # ========================================================================
    "MODE": "live",           # "live" or "backfill"
    "BASE_DIR": "./output",   # All outputs go here
    "DB_FILENAME": "glassline.db",
    "LOG_LEVEL": "INFO",

    # ========================================================================
    # BACKFILL SETTINGS
    # ========================================================================
    "START_TIME": None,       # ISO format: "2024-03-01T12:00:00Z"
    "END_TIME": None,         # ISO format: "2024-03-04T06:00:00Z"
    "MIRROR_PATH": None,      # Mirror store database to replay from

    # ========================================================================
    # TRANSFORMATION SETTINGS
    # ========================================================================
    # Payload keys that are lineage, not measurements, for gob loading.
    # Older payloads only carried "user"; newer ones carry the cycle keys.
    "GOB_LOADING_LINEAGE_KEYS": ["cycle", "section", "gob", "position", "user"],

    # ========================================================================
    # CASCADE SETTINGS
    # ========================================================================
    "MAX_WORKERS": 5,         # Device functions run concurrently per append
    # Note: queue size, batch size and retries are in glassline.schemas.param
}
