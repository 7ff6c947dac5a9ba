"""Centralized failure taxonomy for the pipeline.

Contracts fail fast, loud, and once. Binding and schema errors share the
ContractViolation base so callers can handle pipeline bugs uniformly.
"""


class ContractViolation(RuntimeError):
    """Raised when a pipeline contract is violated.

    This indicates a bug in pipeline wiring or logic, not bad telemetry.

    Key distinction:
    - ValidationError: User/config error (handled by Pydantic)
    - ContractViolation: Pipeline bug (programmer or setup error)
    - MalformedPayload: One bad envelope (dropped, counted, never raised out)
    """
    pass


class SchemaMismatchError(ContractViolation):
    """Function output schema diverges from the target table schema."""
    pass


class CascadeCycleError(ContractViolation):
    """An update policy would close a cycle in the table graph."""
    pass


class UnknownTableError(ContractViolation):
    """A statement or policy references a table that does not exist."""
    pass


class UnknownFunctionError(ContractViolation):
    """A policy references a function that is not registered."""
    pass


class CascadeStepError(RuntimeError):
    """A cascade step failed and was rolled back as a whole.

    Carries the source table and extent id so the caller can resubmit the
    identical batch.
    """

    def __init__(self, table: str, extent_id: str, cause: BaseException):
        super().__init__(f"Cascade step failed for {table} extent {extent_id}: {cause}")
        self.table = table
        self.extent_id = extent_id
        self.cause = cause


class SetupError(RuntimeError):
    """A control-script statement failed; later statements were not run."""

    def __init__(self, index: int, statement, cause: BaseException):
        super().__init__(f"Setup statement #{index} ({statement.describe()}) failed: {cause}")
        self.index = index
        self.statement = statement
        self.cause = cause
