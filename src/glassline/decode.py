"""Explicit field decoding for untyped telemetry payloads.

Every field read out of an envelope's `data` goes through one of the
``decode_*`` functions below. Each returns a :class:`Decoded` that carries the
coerced value plus whether decoding succeeded and, if not, why. Callers
record failures in a :class:`DecodeStats` so that malformed-row rates are
observable per batch instead of being silently nulled.

Coercion rules
--------------
- string: missing -> ``""``; numbers and booleans are rendered; objects and
  arrays are rendered as compact JSON.
- real: missing or non-numeric -> ``None``.
- int: like real, but the value must be integral.
- time: ISO-8601 strings, datetimes and epoch numbers (seconds, or
  milliseconds above 1e11) decode to UTC; anything else -> ``None``.
"""

import json
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import pandas as pd

__all__ = [
    "Decoded",
    "DecodeStats",
    "MISSING",
    "NOT_NUMERIC",
    "NOT_INTEGER",
    "NOT_TIME",
    "decode_string",
    "decode_real",
    "decode_int",
    "decode_time",
    "lookup",
    "format_time",
]

MISSING = "missing"
NOT_NUMERIC = "not_numeric"
NOT_INTEGER = "not_integer"
NOT_TIME = "not_time"

_EPOCH_MS_THRESHOLD = 1e11


@dataclass(frozen=True)
class Decoded:
    """Result of decoding one field: the value plus success or failure reason."""
    value: Any
    ok: bool
    reason: Optional[str] = None


def _is_null(value) -> bool:
    if value is None or value is pd.NaT or value is pd.NA:
        return True
    return isinstance(value, float) and math.isnan(value)


def decode_string(raw) -> Decoded:
    if _is_null(raw):
        return Decoded("", False, MISSING)
    if isinstance(raw, str):
        return Decoded(raw, True)
    if isinstance(raw, bool):
        return Decoded("true" if raw else "false", True)
    if isinstance(raw, (dict, list)):
        return Decoded(json.dumps(raw, separators=(",", ":"), default=str), True)
    return Decoded(str(raw), True)


def decode_real(raw) -> Decoded:
    if _is_null(raw):
        return Decoded(None, False, MISSING)
    if isinstance(raw, bool):
        return Decoded(float(raw), True)
    if isinstance(raw, (int, float)):
        return Decoded(float(raw), True)
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return Decoded(None, False, MISSING)
        try:
            value = float(text)
        except ValueError:
            return Decoded(None, False, NOT_NUMERIC)
        if math.isnan(value):
            return Decoded(None, False, NOT_NUMERIC)
        return Decoded(value, True)
    return Decoded(None, False, NOT_NUMERIC)


def decode_int(raw) -> Decoded:
    decoded = decode_real(raw)
    if not decoded.ok:
        return decoded
    if math.isinf(decoded.value) or not decoded.value.is_integer():
        return Decoded(None, False, NOT_INTEGER)
    return Decoded(int(decoded.value), True)


def decode_time(raw) -> Decoded:
    """Decode an instant to an aware UTC datetime."""
    if _is_null(raw) or (isinstance(raw, str) and not raw.strip()):
        return Decoded(None, False, MISSING)
    if isinstance(raw, pd.Timestamp):
        raw = raw.to_pydatetime()
    if isinstance(raw, datetime):
        if raw.tzinfo is None:
            return Decoded(raw.replace(tzinfo=timezone.utc), True)
        return Decoded(raw.astimezone(timezone.utc), True)
    if isinstance(raw, bool):
        return Decoded(None, False, NOT_TIME)
    if isinstance(raw, (int, float)):
        seconds = raw / 1000.0 if abs(raw) > _EPOCH_MS_THRESHOLD else float(raw)
        try:
            return Decoded(datetime.fromtimestamp(seconds, tz=timezone.utc), True)
        except (OverflowError, OSError, ValueError):
            return Decoded(None, False, NOT_TIME)
    if isinstance(raw, str):
        try:
            parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError:
            return Decoded(None, False, NOT_TIME)
        return decode_time(parsed)
    return Decoded(None, False, NOT_TIME)


def lookup(document, path: str) -> Decoded:
    """Follow a dotted path through nested objects (and arrays by index).

    Returns the raw value found, or a failed Decoded with reason ``missing``
    when any segment is absent or the document has the wrong shape.
    """
    node = document
    for segment in path.split("."):
        if isinstance(node, dict):
            if segment not in node:
                return Decoded(None, False, MISSING)
            node = node[segment]
        elif isinstance(node, list) and segment.lstrip("-").isdigit():
            index = int(segment)
            if not -len(node) <= index < len(node):
                return Decoded(None, False, MISSING)
            node = node[index]
        else:
            return Decoded(None, False, MISSING)
    if node is None:
        return Decoded(None, False, MISSING)
    return Decoded(node, True)


def format_time(value: datetime) -> str:
    """Fixed-width UTC rendering, so stored instants sort lexically."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass
class DecodeStats:
    """Per-batch diagnostics for one transformation function.

    Attributes
    ----------
    envelopes_seen : int
        Rows in the input batch.
    envelopes_matched : int
        Rows passing the function's (device, category) filter.
    envelopes_dropped : int
        Matched rows dropped as malformed (see ``drop_reasons``).
    rows_emitted : int
        Output rows.
    field_failures : Counter
        ``"column:reason"`` -> count of fields that did not decode cleanly.
    """
    function: str
    envelopes_seen: int = 0
    envelopes_matched: int = 0
    envelopes_dropped: int = 0
    rows_emitted: int = 0
    drop_reasons: Counter = field(default_factory=Counter)
    field_failures: Counter = field(default_factory=Counter)

    def record(self, column: str, decoded: Decoded):
        """Count a failed decode and hand back the coerced value."""
        if not decoded.ok:
            self.field_failures[f"{column}:{decoded.reason}"] += 1
        return decoded.value

    def drop(self, reason: str) -> None:
        self.envelopes_dropped += 1
        self.drop_reasons[reason] += 1

    def as_dict(self) -> dict:
        return {
            "function": self.function,
            "envelopes_seen": self.envelopes_seen,
            "envelopes_matched": self.envelopes_matched,
            "envelopes_dropped": self.envelopes_dropped,
            "rows_emitted": self.rows_emitted,
            "drop_reasons": dict(self.drop_reasons),
            "field_failures": dict(self.field_failures),
        }
