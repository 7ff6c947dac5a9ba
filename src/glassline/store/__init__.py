"""Append-only table storage.

The envelope store, the raw table and the typed target tables all live in
one :class:`TableStore`. Schemas are ordered ``{column: kind}`` dicts.
"""

from glassline.store.schema import COLUMN_KINDS, conform_frame, empty_frame, validate_schema
from glassline.store.table_store import TableStore

__all__ = [
    "TableStore",
    "COLUMN_KINDS",
    "conform_frame",
    "empty_frame",
    "validate_schema",
]
