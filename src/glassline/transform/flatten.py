"""Recursive-descent flattener for nested telemetry payloads.

Device payloads nest measurement groups several levels deep, sometimes as
JSON objects and sometimes as arrays of ``[key, value]`` pairs standing in
for objects. Some levels also carry *side channels*: sibling keys such as
``probeNames`` or ``thresholds`` that are not entries themselves but are
looked up positionally while expanding the entries next to them.

A :class:`FlattenSpec` describes one device payload declaratively:

- ``lineage``: ``(column, dotted path)`` pairs projected from ``data`` as strings
- ``payload``: dotted path of the nested structure to expand (``None``: ``data`` itself)
- ``strip_keys``: keys removed from the payload before expansion
- ``context_paths``: values looked up once from ``data`` and carried down
- ``levels``: one :class:`Level` per expansion step
- ``leaf``: callable building the value columns of one leaf entry

:class:`Flattener` interprets a spec over a batch of envelopes. One leaf
entry yields exactly one row. Envelopes whose payload has the wrong shape are
dropped as a whole and counted; they never fail the batch.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import pandas as pd

from glassline.decode import DecodeStats, MISSING, decode_string, lookup

__all__ = [
    'MalformedPayload',
    'Level',
    'FlattenSpec',
    'Flattener',
    'as_pairs',
    'BASE_COLUMNS',
]

logger = logging.getLogger(__name__)

# Envelope columns copied onto every output row (output name, envelope column)
BASE_COLUMNS = (
    ("timestamp", "timestamp"),
    ("location", "location"),
    ("production_line", "productionLine"),
    ("line_upl", "lineUpl"),
)


class MalformedPayload(ValueError):
    """An envelope's payload does not have the shape its device implies.

    Always caught per envelope by :class:`Flattener`; the envelope is dropped
    and ``reason`` is counted.
    """

    def __init__(self, reason: str, detail: str = ""):
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason


def as_pairs(node, where: str = "payload") -> list:
    """View an object or an array of ``[key, value]`` pairs as a list of pairs.

    Raises
    ------
    MalformedPayload
        If ``node`` is neither, or an array item is not a two-element pair.
    """
    if isinstance(node, dict):
        return [(str(k), v) for k, v in node.items()]
    if isinstance(node, list):
        pairs = []
        for item in node:
            if not (isinstance(item, (list, tuple)) and len(item) == 2):
                raise MalformedPayload("bad_pair", f"{where} item {item!r} is not a [key, value] pair")
            key = decode_string(item[0])
            if not key.ok:
                raise MalformedPayload("bad_pair", f"{where} item has no key")
            pairs.append((key.value, item[1]))
        return pairs
    raise MalformedPayload(
        "bad_shape", f"{where} is {type(node).__name__}, expected object or pair array"
    )


def _is_empty(node) -> bool:
    return node is None or (isinstance(node, (dict, list, str)) and len(node) == 0)


@dataclass(frozen=True)
class Level:
    """One expansion step.

    Parameters
    ----------
    column : str or None
        Output column receiving the entry key; ``None`` leaves the key to the leaf.
    via : str, optional
        Sub-property of each entry holding the next level's payload.
    side_channels : tuple of str
        Keys removed from this level's entries and carried in the context.
    drop_empty : bool
        Skip entries whose next-level payload is missing or empty.
    """
    column: Optional[str]
    via: Optional[str] = None
    side_channels: tuple = ()
    drop_empty: bool = False


@dataclass(frozen=True)
class FlattenSpec:
    """Declarative description of one device payload. See module docstring."""
    device: str
    category: str
    lineage: tuple
    payload: Optional[str]
    levels: tuple
    leaf: Callable[[str, Any, dict, DecodeStats], dict]
    strip_keys: tuple = ()
    context_paths: tuple = field(default_factory=tuple)


class Flattener:
    """Interprets a :class:`FlattenSpec` over a batch of envelopes.

    Example usage::

        flattener = Flattener(spec)
        rows = flattener.flatten(envelopes_df, stats)
    """

    def __init__(self, spec: FlattenSpec):
        self.spec = spec

    def matches(self, envelope: dict) -> bool:
        return (envelope.get("device") == self.spec.device
                and envelope.get("category") == self.spec.category)

    def flatten(self, batch: pd.DataFrame, stats: DecodeStats) -> list:
        """Flatten every matching envelope of ``batch`` into row dicts."""
        rows = []
        for envelope in batch.to_dict("records"):
            if not self.matches(envelope):
                continue
            stats.envelopes_matched += 1
            try:
                rows.extend(self.flatten_envelope(envelope, stats))
            except MalformedPayload as exc:
                stats.drop(exc.reason)
                logger.debug("Dropped %s/%s envelope at %s: %s", self.spec.device,
                             self.spec.category, envelope.get("timestamp"), exc)
        return rows

    def flatten_envelope(self, envelope: dict, stats: DecodeStats) -> list:
        """Rows for one envelope.

        Raises
        ------
        MalformedPayload
            If ``data`` is not an object or a nested level has the wrong shape.
        """
        data = envelope.get("data")
        if not isinstance(data, dict):
            raise MalformedPayload(
                "data_not_object", f"data is {type(data).__name__}"
            )

        prefix = {out: envelope.get(col) for out, col in BASE_COLUMNS}
        for column, path in self.spec.lineage:
            found = lookup(data, path)
            decoded = decode_string(found.value) if found.ok else decode_string(None)
            prefix[column] = stats.record(column, decoded)

        if self.spec.payload is None:
            payload = data
        else:
            found = lookup(data, self.spec.payload)
            if not found.ok:
                # Nothing to expand is not a shape error
                stats.field_failures[f"{self.spec.payload}:{MISSING}"] += 1
                return []
            payload = found.value

        if self.spec.strip_keys:
            payload = [(k, v) for k, v in as_pairs(payload, "data")
                       if k not in self.spec.strip_keys]

        context = {}
        for name, path in self.spec.context_paths:
            found = lookup(data, path)
            context[name] = found.value if found.ok else None

        rows = []
        self._expand(payload, 0, context, prefix, rows, stats)
        return rows

    def _expand(self, node, depth: int, context: dict, prefix: dict,
                rows: list, stats: DecodeStats) -> None:
        level = self.spec.levels[depth]
        where = level.column or f"level {depth + 1}"
        pairs = as_pairs(node, where)

        if level.side_channels:
            context = dict(context)
            entries = []
            for key, value in pairs:
                if key in level.side_channels:
                    context[key] = value
                else:
                    entries.append((key, value))
        else:
            entries = pairs

        is_leaf = depth == len(self.spec.levels) - 1
        for key, value in entries:
            row = dict(prefix)
            if level.column is not None:
                row[level.column] = key

            if is_leaf:
                row.update(self.spec.leaf(key, value, context, stats))
                rows.append(row)
                continue

            child = value
            if level.via is not None:
                child = self._address(value, level.via)
            if level.drop_empty and _is_empty(child):
                continue
            self._expand(child, depth + 1, context, row, rows, stats)

    @staticmethod
    def _address(value, prop: str):
        if isinstance(value, dict):
            return value.get(prop)
        if isinstance(value, list):
            try:
                return dict(as_pairs(value)).get(prop)
            except MalformedPayload:
                return None
        return None
