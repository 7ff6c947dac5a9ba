"""Table schemas and frame conformance.

A table schema is an ordered ``{column: kind}`` dict. Kinds:

- ``string``: text, never null in transformation outputs
- ``real``: float64, nullable
- ``int``: nullable integer (pandas ``Int64``)
- ``datetime``: UTC instant (``datetime64[ns, UTC]``)
- ``dynamic``: untyped nested document (stored as JSON text)
"""

import json
from typing import Iterable

import numpy as np
import pandas as pd

from glassline.decode import decode_time, format_time
from glassline.contracts.base import require
from glassline.contracts.failure import SchemaMismatchError

__all__ = [
    "COLUMN_KINDS",
    "validate_schema",
    "empty_frame",
    "conform_frame",
    "to_db_records",
    "from_db_rows",
]

COLUMN_KINDS = {
    "string": "TEXT",
    "real": "REAL",
    "int": "INTEGER",
    "datetime": "TEXT",
    "dynamic": "TEXT",
}


def validate_schema(schema: dict) -> dict:
    """Return a copy of ``schema`` after checking every kind is known."""
    require(len(schema) > 0, "Table schema must declare at least one column")
    for column, kind in schema.items():
        require(
            kind in COLUMN_KINDS,
            f"Unknown column kind '{kind}' for column '{column}' "
            f"(expected one of {sorted(COLUMN_KINDS)})"
        )
        require(not column.startswith("_"), f"Column '{column}' uses the reserved '_' prefix")
    return dict(schema)


def _timestamps(values: Iterable) -> pd.Series:
    decoded = [decode_time(v).value for v in values]
    return pd.to_datetime(pd.Series(decoded, dtype=object), utc=True)


def _cast(series: pd.Series, kind: str) -> pd.Series:
    if kind == "real":
        return pd.to_numeric(series, errors="coerce").astype("float64")
    if kind == "int":
        return pd.to_numeric(series, errors="coerce").astype("Int64")
    if kind == "datetime":
        return _timestamps(series.tolist())
    # string and dynamic stay as python objects
    return series.astype(object)


def empty_frame(schema: dict) -> pd.DataFrame:
    return conform_frame(pd.DataFrame({col: pd.Series([], dtype=object) for col in schema}), schema)


def conform_frame(df: pd.DataFrame, schema: dict) -> pd.DataFrame:
    """Select and cast the schema's columns, in schema order.

    Raises
    ------
    SchemaMismatchError
        If a schema column is absent from ``df``
    """
    missing = [col for col in schema if col not in df.columns]
    require(
        not missing,
        f"Frame is missing columns {missing} required by schema {list(schema)}",
        SchemaMismatchError,
    )
    out = pd.DataFrame(index=range(len(df)))
    for column, kind in schema.items():
        out[column] = _cast(df[column].reset_index(drop=True), kind)
    return out


def _to_db_value(value, kind: str):
    if value is None or value is pd.NA or value is pd.NaT:
        return None
    if kind == "dynamic":
        return json.dumps(value, default=str)
    if isinstance(value, float) and np.isnan(value):
        return None
    if kind == "datetime":
        return format_time(pd.Timestamp(value).to_pydatetime())
    if kind == "real":
        return float(value)
    if kind == "int":
        return int(value)
    return str(value)


def to_db_records(df: pd.DataFrame, schema: dict) -> list:
    """Render a conformed frame as tuples ready for ``executemany``."""
    columns = list(schema.items())
    records = []
    for row in df.itertuples(index=False, name=None):
        records.append(tuple(_to_db_value(v, kind) for v, (_, kind) in zip(row, columns)))
    return records


def from_db_rows(rows: list, schema: dict) -> pd.DataFrame:
    """Build a conformed frame from SQLite rows in schema column order."""
    if not rows:
        return empty_frame(schema)
    data = {}
    for i, (column, kind) in enumerate(schema.items()):
        values = [row[i] for row in rows]
        if kind == "dynamic":
            values = [json.loads(v) if v is not None else None for v in values]
        data[column] = pd.Series(values, dtype=object)
    return conform_frame(pd.DataFrame(data), schema)
