"""Envelope stage contract.

Enforces the guarantee that the intake adapter produced a frame with the
uniform envelope columns, in order.
"""

import pandas as pd
from glassline.contracts.base import require

ENVELOPE_COLUMNS = (
    "timestamp", "device", "category", "location", "productionLine", "lineUpl", "data",
)


def assert_envelopes(df: pd.DataFrame) -> None:
    """Enforce envelope stage contract.

    Raises
    ------
    ContractViolation
        If the frame is not a DataFrame or its columns differ from the envelope layout
    """
    require(
        isinstance(df, pd.DataFrame),
        f"Envelope contract violated: output is {type(df)}, expected DataFrame"
    )
    require(
        tuple(df.columns) == ENVELOPE_COLUMNS,
        f"Envelope contract violated: columns {list(df.columns)}, expected {list(ENVELOPE_COLUMNS)}"
    )
    for col in ("device", "category", "location", "productionLine", "lineUpl"):
        require(
            not df[col].isna().any(),
            f"Envelope contract violated: '{col}' contains nulls (expected empty strings)"
        )
