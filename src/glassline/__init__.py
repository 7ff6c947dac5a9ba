"""`glassline` - update-policy medallion pipeline for glass-container telemetry.

Subpackages:
- intake: Raw event to envelope projection
- transform: Device transformation functions (flattener + descriptors)
- store: SQLite-backed append-only table store
- pipeline: Cascade engine, control surface, orchestration
- backfill: Historical day-window replay
"""

__version__ = "0.1.0"
