#!/usr/bin/env python3
"""glassline pipeline runner.

Usage:
    python scripts/run_pipeline.py --config scripts/user_config.py setup
    python scripts/run_pipeline.py --config scripts/user_config.py ingest events.jsonl
    python scripts/run_pipeline.py backfill --start-time 2024-03-01T12:00:00Z \
        --end-time 2024-03-04T06:00:00Z --mirror /mnt/mirror/glassline.db

Note: User config in scripts/user_config.py, expert defaults in glassline.schemas.param
"""

import sys

from glassline.cli import main


if __name__ == "__main__":
    sys.exit(main())
