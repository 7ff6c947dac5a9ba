"""Base contract enforcement utilities.

The require() function is the single enforcement mechanism for all contracts.
"""

from glassline.contracts.failure import ContractViolation


def require(condition: bool, message: str, error: type = ContractViolation) -> None:
    """Enforce a pipeline contract.

    Parameters
    ----------
    condition : bool
        The invariant that must be true.

    message : str
        Error message explaining the contract violation.

    error : type, optional
        ContractViolation subclass to raise (default ContractViolation).

    Raises
    ------
    ContractViolation
        If condition is False.

    Examples
    --------
    >>> require("data" in df.columns, "Envelope contract: missing 'data' column")
    """
    if not condition:
        raise error(message)
