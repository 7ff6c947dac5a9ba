"""Device transformation functions.

One recursive-descent :class:`Flattener` engine interprets five declarative
:class:`FlattenSpec` descriptors, one per (device, category) pair.
"""

from glassline.transform.base import TransformFunction, TransformResult
from glassline.transform.flatten import (
    BASE_COLUMNS,
    FlattenSpec,
    Flattener,
    Level,
    MalformedPayload,
    as_pairs,
)
from glassline.transform.devices import (
    IRI_MEASUREMENT_SCHEMA,
    IRI_DEFECT_SCHEMA,
    COLD_SYSTEM_MEASUREMENT_SCHEMA,
    BLANK_WATCH_TEMPERATURE_SCHEMA,
    BLANK_WATCH_GOB_LOADING_SCHEMA,
    DeviceTransform,
    build_device_functions,
    read_reading,
)

__all__ = [
    'TransformFunction',
    'TransformResult',
    'BASE_COLUMNS',
    'FlattenSpec',
    'Flattener',
    'Level',
    'MalformedPayload',
    'as_pairs',
    'IRI_MEASUREMENT_SCHEMA',
    'IRI_DEFECT_SCHEMA',
    'COLD_SYSTEM_MEASUREMENT_SCHEMA',
    'BLANK_WATCH_TEMPERATURE_SCHEMA',
    'BLANK_WATCH_GOB_LOADING_SCHEMA',
    'DeviceTransform',
    'build_device_functions',
    'read_reading',
]
