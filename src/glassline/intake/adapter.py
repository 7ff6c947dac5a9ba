"""Raw event to envelope projection.

Raw events carry their routing metadata in a nested ``properties`` bag::

    {"timestamp": "...",
     "properties": {"device": "iri", "category": "measurements",
                    "location": "...", "productionLine": "...", "lineUpl": "..."},
     "data": {...}}

The adapter lifts the properties to top-level string columns and passes
``data`` through untouched. It never fails on a single event: absent
properties become empty strings and an undecodable timestamp becomes null.
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional

import pandas as pd
from pydantic import BaseModel, ConfigDict

from glassline.decode import DecodeStats, decode_string, decode_time, lookup
from glassline.contracts.envelope import ENVELOPE_COLUMNS, assert_envelopes
from glassline.transform.base import TransformFunction, TransformResult

__all__ = [
    'RAW_SCHEMA',
    'ENVELOPE_SCHEMA',
    'PROPERTY_KEYS',
    'Envelope',
    'to_envelope',
    'IntakeFunction',
]

logger = logging.getLogger(__name__)

RAW_SCHEMA = {
    "timestamp": "dynamic",
    "properties": "dynamic",
    "data": "dynamic",
}

ENVELOPE_SCHEMA = {
    "timestamp": "datetime",
    "device": "string",
    "category": "string",
    "location": "string",
    "productionLine": "string",
    "lineUpl": "string",
    "data": "dynamic",
}

PROPERTY_KEYS = ("device", "category", "location", "productionLine", "lineUpl")


class Envelope(BaseModel):
    """One normalized envelope, for callers that build them in code."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    timestamp: Optional[datetime] = None
    device: str = ""
    category: str = ""
    location: str = ""
    productionLine: str = ""
    lineUpl: str = ""
    data: Any = None

    @classmethod
    def from_raw(cls, raw: Mapping) -> "Envelope":
        return cls(**to_envelope(raw))

    def as_row(self) -> dict:
        return {col: getattr(self, col) for col in ENVELOPE_COLUMNS}


def to_envelope(raw: Mapping, stats: Optional[DecodeStats] = None) -> dict:
    """Project one raw event into an envelope dict.

    Parameters
    ----------
    raw : Mapping
        Raw event with ``timestamp``, ``properties`` and ``data``.
    stats : DecodeStats, optional
        Receives a count for every field that did not decode cleanly.

    Returns
    -------
    dict
        Keys in envelope column order.

    Examples
    --------
    >>> env = to_envelope({"timestamp": "2024-03-01T00:00:00Z",
    ...                    "properties": {"device": "iri"}, "data": {"a": 1}})
    >>> env["device"], env["category"], env["data"]
    ('iri', '', {'a': 1})
    """
    stats = stats if stats is not None else DecodeStats(function="to_envelope")
    properties = raw.get("properties")
    if isinstance(properties, Mapping):
        properties = dict(properties)
    else:
        properties = {}

    envelope = {"timestamp": stats.record("timestamp", decode_time(raw.get("timestamp")))}
    for key in PROPERTY_KEYS:
        found = lookup(properties, key)
        decoded = decode_string(found.value) if found.ok else decode_string(None)
        envelope[key] = stats.record(key, decoded)
    envelope["data"] = raw.get("data")
    return envelope


class IntakeFunction(TransformFunction):
    """Raw table -> envelope table, one envelope per raw row."""

    name = "RawEventsToEnvelopes"
    output_schema = ENVELOPE_SCHEMA
    docstring = "Projects raw telemetry events into uniform envelopes"
    folder = "Intake"

    def transform(self, batch: pd.DataFrame, stats: DecodeStats) -> list:
        rows = []
        for raw in batch.to_dict("records"):
            rows.append(to_envelope(raw, stats))
        stats.envelopes_matched = len(rows)
        return rows

    def __call__(self, batch: pd.DataFrame) -> TransformResult:
        result = super().__call__(batch)
        assert_envelopes(result.frame)
        return result
