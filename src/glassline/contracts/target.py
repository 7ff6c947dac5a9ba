"""Target stage contract.

Enforces that a transformation function's output matches the declared
schema of the table it is appended to.
"""

import pandas as pd
from glassline.contracts.base import require
from glassline.contracts.failure import SchemaMismatchError


def assert_schema_compatible(function_name: str, output_schema: dict,
                             table: str, table_schema: dict) -> None:
    """Check a function's declared output schema against a table schema.

    Called when a policy is bound, before any data flows.

    Raises
    ------
    SchemaMismatchError
        If column names, order or kinds differ
    """
    require(
        list(output_schema.items()) == list(table_schema.items()),
        f"Schema mismatch: function '{function_name}' produces "
        f"{list(output_schema.items())} but table '{table}' is "
        f"{list(table_schema.items())}",
        SchemaMismatchError,
    )


def assert_target_frame(df: pd.DataFrame, table: str, table_schema: dict) -> None:
    """Check a produced frame against the target table schema at append time.

    Raises
    ------
    SchemaMismatchError
        If the frame columns differ from the table columns
    """
    require(
        isinstance(df, pd.DataFrame),
        f"Target contract violated: output for '{table}' is {type(df)}, expected DataFrame",
        SchemaMismatchError,
    )
    require(
        list(df.columns) == list(table_schema),
        f"Schema mismatch: frame columns {list(df.columns)} do not match "
        f"table '{table}' columns {list(table_schema)}",
        SchemaMismatchError,
    )
