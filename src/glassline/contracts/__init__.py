"""Pipeline contracts: fail-fast enforcement of stage invariants.

Key principle:
- Pydantic validates config correctness
- Contracts validate pipeline wiring and stage outputs
- Transformation functions absorb bad telemetry row by row
"""

from glassline.contracts.failure import (
    ContractViolation,
    SchemaMismatchError,
    CascadeCycleError,
    UnknownTableError,
    UnknownFunctionError,
    CascadeStepError,
    SetupError,
)
from glassline.contracts.base import require
from glassline.contracts.envelope import ENVELOPE_COLUMNS, assert_envelopes
from glassline.contracts.target import assert_schema_compatible, assert_target_frame

__all__ = [
    "ContractViolation",
    "SchemaMismatchError",
    "CascadeCycleError",
    "UnknownTableError",
    "UnknownFunctionError",
    "CascadeStepError",
    "SetupError",
    "require",
    "ENVELOPE_COLUMNS",
    "assert_envelopes",
    "assert_schema_compatible",
    "assert_target_frame",
]
