"""The five device transformation functions.

Each function is a :class:`FlattenSpec` plus an output schema:

================================  ============  ============  =========================
Function                          device        category      payload
================================  ============  ============  =========================
IriMeasurementsTransform          iri           measurements  inspection -> probe
IriDefectsTransform               iri           defects       inspection -> probe
ColdSystemMeasurementsTransform   cold-system   measurements  inspection.measures -> name
BlankWatchTemperaturesTransform   blank-watch   temperatures  name (+ temp_timestamps)
BlankWatchGobLoadingTransform     blank-watch   gob-loading   every non-lineage key
================================  ============  ============  =========================
"""

import logging
from typing import TYPE_CHECKING

import pandas as pd

from glassline.decode import (
    DecodeStats,
    Decoded,
    MISSING,
    decode_int,
    decode_real,
    decode_string,
    decode_time,
)
from glassline.transform.base import TransformFunction
from glassline.transform.flatten import Flattener, FlattenSpec, Level, as_pairs

if TYPE_CHECKING:
    from glassline.schemas import InternalConfig

__all__ = [
    'IRI_MEASUREMENT_SCHEMA',
    'IRI_DEFECT_SCHEMA',
    'COLD_SYSTEM_MEASUREMENT_SCHEMA',
    'BLANK_WATCH_TEMPERATURE_SCHEMA',
    'BLANK_WATCH_GOB_LOADING_SCHEMA',
    'DeviceTransform',
    'read_reading',
    'build_device_functions',
]

logger = logging.getLogger(__name__)

_BASE_SCHEMA = {
    "timestamp": "datetime",
    "location": "string",
    "production_line": "string",
    "line_upl": "string",
}

_IRI_LINEAGE = (
    ("id_container", "idContainer"),
    ("id_mold", "idMold"),
    ("id_cavity", "idCavity"),
    ("id_section", "idSection"),
)

_CYCLE_LINEAGE = (
    ("cycle", "cycle"),
    ("section", "section"),
    ("gob", "gob"),
    ("position", "position"),
)

_COLD_LINEAGE = (
    ("cycle", "cycle"),
    ("section", "section"),
    ("leg", "leg"),
    ("position", "position"),
)


def _schema(lineage, columns) -> dict:
    schema = dict(_BASE_SCHEMA)
    schema.update({col: "string" for col, _ in lineage})
    schema.update(columns)
    return schema


IRI_MEASUREMENT_SCHEMA = _schema(_IRI_LINEAGE, {
    "inspection_name": "string",
    "probe_index": "int",
    "probe_label": "string",
    "threshold": "real",
    "value": "real",
})

IRI_DEFECT_SCHEMA = _schema(_IRI_LINEAGE, {
    "inspection_name": "string",
    "probe_index": "int",
    "probe_label": "string",
    "threshold": "real",
    "defect_value": "real",
})

COLD_SYSTEM_MEASUREMENT_SCHEMA = _schema(_COLD_LINEAGE, {
    "inspection_name": "string",
    "measurement_name": "string",
    "probe_label": "string",
    "threshold": "real",
    "value": "real",
})

BLANK_WATCH_TEMPERATURE_SCHEMA = _schema(_CYCLE_LINEAGE, {
    "measurement_name": "string",
    "measurement_timestamp": "datetime",
    "value": "real",
})

BLANK_WATCH_GOB_LOADING_SCHEMA = _schema(_CYCLE_LINEAGE, {
    "measurement_name": "string",
    "value": "real",
})


# =============================================================================
# Leaf readers
# =============================================================================

def read_reading(entry, index=None):
    """Extract the scalar reading from a leaf entry.

    Objects hold it under ``value`` (or ``values``). Arrays with one element
    unwrap; longer arrays are indexed by the probe index when there is one.
    """
    if isinstance(entry, dict):
        entry = entry["value"] if "value" in entry else entry.get("values")
    if isinstance(entry, list):
        if len(entry) == 1:
            return entry[0]
        if index is not None and 0 <= index < len(entry):
            return entry[index]
    return entry


def _positional(channel, index):
    """Element ``index`` of a side channel (array, or object keyed by index)."""
    if index is None:
        return None
    if isinstance(channel, list):
        return channel[index] if 0 <= index < len(channel) else None
    if isinstance(channel, dict):
        return channel.get(str(index))
    return None


def _probe_leaf(value_column: str, names_key: str, thresholds_key: str,
                index_start: int, index_length: int):
    def leaf(key, entry, context, stats: DecodeStats) -> dict:
        index_text = key[index_start:index_start + index_length]
        index = stats.record("probe_index", decode_int(index_text))

        names = context.get(names_key)
        thresholds = context.get(thresholds_key)
        if isinstance(entry, dict):
            names = entry.get(names_key, names)
            thresholds = entry.get(thresholds_key, thresholds)

        name = decode_string(_positional(names, index))
        if not name.ok:
            stats.record("probe_name", name)
        threshold = stats.record("threshold", decode_real(_positional(thresholds, index)))

        return {
            "probe_index": index,
            "probe_label": f"{index_text} {name.value}".strip(),
            "threshold": threshold,
            value_column: stats.record(value_column, decode_real(read_reading(entry, index))),
        }
    return leaf


def _cold_leaf(key, entry, context, stats: DecodeStats) -> dict:
    return {
        "probe_label": "",
        "threshold": None,
        "value": stats.record("value", decode_real(read_reading(entry))),
    }


def _temperature_leaf(key, entry, context, stats: DecodeStats) -> dict:
    timestamps = context.get("temp_timestamps")
    if timestamps is None:
        stamp = Decoded(None, False, MISSING)
    else:
        stamp = decode_time(dict(as_pairs(timestamps, "temp_timestamps")).get(key))
    return {
        "measurement_timestamp": stats.record("measurement_timestamp", stamp),
        "value": stats.record("value", decode_real(read_reading(entry))),
    }


def _gob_loading_leaf(key, entry, context, stats: DecodeStats) -> dict:
    return {
        "value": stats.record("value", decode_real(read_reading(entry))),
    }


# =============================================================================
# Functions
# =============================================================================

class DeviceTransform(TransformFunction):
    """A transformation function driven by a :class:`FlattenSpec`."""

    def __init__(self, name: str, spec: FlattenSpec, output_schema: dict,
                 docstring: str, folder: str):
        super().__init__(name=name, output_schema=output_schema,
                         docstring=docstring, folder=folder)
        self.spec = spec
        self.flattener = Flattener(spec)

    @property
    def device(self) -> str:
        return self.spec.device

    @property
    def category(self) -> str:
        return self.spec.category

    def transform(self, batch: pd.DataFrame, stats: DecodeStats) -> list:
        return self.flattener.flatten(batch, stats)


def _iri_transform(name, category, payload, schema, value_column, docstring, cfg):
    side_channels = (cfg.probe_names_key, cfg.thresholds_key)
    spec = FlattenSpec(
        device="iri",
        category=category,
        lineage=_IRI_LINEAGE,
        payload=payload,
        levels=(
            Level("inspection_name"),
            Level(None, side_channels=side_channels),
        ),
        leaf=_probe_leaf(value_column, cfg.probe_names_key, cfg.thresholds_key,
                         cfg.probe_index_start, cfg.probe_index_length),
    )
    return DeviceTransform(name, spec, schema, docstring, "Transforms/IRI")


def build_device_functions(config: "InternalConfig") -> dict:
    """Build the five device functions from runtime config.

    Returns
    -------
    dict
        ``{function name: DeviceTransform}`` in declaration order.
    """
    cfg = config.transforms
    functions = [
        _iri_transform(
            "IriMeasurementsTransform", "measurements", "measurements",
            IRI_MEASUREMENT_SCHEMA, "value",
            "Flattens IRI inspection measurements to one row per probe", cfg,
        ),
        _iri_transform(
            "IriDefectsTransform", "defects", "defects",
            IRI_DEFECT_SCHEMA, "defect_value",
            "Flattens IRI inspection defects to one row per probe", cfg,
        ),
        DeviceTransform(
            "ColdSystemMeasurementsTransform",
            FlattenSpec(
                device="cold-system",
                category="measurements",
                lineage=_COLD_LINEAGE,
                payload="measurements",
                levels=(
                    Level("inspection_name", via="measures", drop_empty=True),
                    Level("measurement_name"),
                ),
                leaf=_cold_leaf,
            ),
            COLD_SYSTEM_MEASUREMENT_SCHEMA,
            "Flattens cold-system inspection measures to one row per measurement",
            "Transforms/ColdSystem",
        ),
        DeviceTransform(
            "BlankWatchTemperaturesTransform",
            FlattenSpec(
                device="blank-watch",
                category="temperatures",
                lineage=_CYCLE_LINEAGE,
                payload="temperatures",
                levels=(Level("measurement_name"),),
                leaf=_temperature_leaf,
                context_paths=(("temp_timestamps", "temp_timestamps"),),
            ),
            BLANK_WATCH_TEMPERATURE_SCHEMA,
            "Expands blank-watch temperatures joined with their timestamps",
            "Transforms/BlankWatch",
        ),
        DeviceTransform(
            "BlankWatchGobLoadingTransform",
            FlattenSpec(
                device="blank-watch",
                category="gob-loading",
                lineage=_CYCLE_LINEAGE,
                payload=None,
                levels=(Level("measurement_name"),),
                leaf=_gob_loading_leaf,
                strip_keys=tuple(cfg.gob_loading_lineage_keys),
            ),
            BLANK_WATCH_GOB_LOADING_SCHEMA,
            "Expands every non-lineage gob-loading key into a measurement row",
            "Transforms/BlankWatch",
        ),
    ]
    logger.debug("Built %d device functions", len(functions))
    return {fn.name: fn for fn in functions}
