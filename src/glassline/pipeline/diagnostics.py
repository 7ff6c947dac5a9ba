"""Diagnostic surface: existence, row counts and freshness.

Used to verify a deployment, not by the transformation path itself.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Dict, Iterable, List

from glassline.intake import IntakeFunction
from glassline.pipeline.cascade import CascadeEngine
from glassline.pipeline.control import target_bindings
from glassline.store import TableStore

if TYPE_CHECKING:
    from glassline.schemas import InternalConfig

__all__ = [
    'Check',
    'VerificationReport',
    'check_tables',
    'check_functions',
    'check_policies',
    'row_counts',
    'freshness',
    'verify_setup',
]

logger = logging.getLogger(__name__)


@dataclass
class Check:
    kind: str
    name: str
    ok: bool
    detail: str = ""


@dataclass
class VerificationReport:
    """Result of :func:`verify_setup`."""
    checks: List[Check] = field(default_factory=list)
    row_counts: Dict[str, int] = field(default_factory=dict)
    fresh_rows: Dict[str, int] = field(default_factory=dict)
    freshness_window: timedelta = timedelta(hours=1)

    @property
    def ok(self) -> bool:
        return all(c.ok for c in self.checks)

    @property
    def failures(self) -> List[Check]:
        return [c for c in self.checks if not c.ok]

    def summary(self) -> List[str]:
        lines = []
        for check in self.checks:
            mark = "OK " if check.ok else "MISSING"
            detail = f" ({check.detail})" if check.detail else ""
            lines.append(f"[{mark}] {check.kind} {check.name}{detail}")
        for table, count in self.row_counts.items():
            lines.append(
                f"{table}: {count} rows, {self.fresh_rows.get(table, 0)} "
                f"in the last {self.freshness_window}"
            )
        return lines


def check_tables(store: TableStore, names: Iterable[str]) -> List[Check]:
    return [Check("table", name, store.table_exists(name)) for name in names]


def check_functions(engine: CascadeEngine, names: Iterable[str]) -> List[Check]:
    return [Check("function", name, engine.has_function(name)) for name in names]


def check_policies(engine: CascadeEngine, expected: Dict[str, tuple]) -> List[Check]:
    """Check each target has an enabled policy with the expected source and function.

    ``expected`` maps target table to ``(source, function)``.
    """
    checks = []
    for target, (source, function) in expected.items():
        policy = engine.policy(target)
        if policy is None:
            checks.append(Check("policy", target, False, "no update policy"))
        elif (policy.source, policy.function) != (source, function):
            checks.append(Check("policy", target, False,
                                f"bound to {policy.source} | {policy.function}"))
        elif not policy.enabled:
            checks.append(Check("policy", target, False, "disabled"))
        else:
            checks.append(Check("policy", target, True, policy.describe()))
    return checks


def row_counts(store: TableStore, tables: Iterable[str]) -> Dict[str, int]:
    return {t: store.row_count(t) for t in tables if store.table_exists(t)}


def freshness(store: TableStore, tables: Iterable[str], window: timedelta) -> Dict[str, int]:
    """Rows ingested within the trailing ``window``, per existing table."""
    return {t: store.rows_ingested_since(t, window) for t in tables if store.table_exists(t)}


def verify_setup(engine: CascadeEngine, config: "InternalConfig",
                 freshness_window: timedelta = timedelta(hours=1)) -> VerificationReport:
    """Check every table, function and policy of the default pipeline.

    Returns
    -------
    VerificationReport
        ``report.ok`` is True when everything is present and enabled.
    """
    names = config.store.tables
    bindings = target_bindings(config)
    tables = [names.raw, names.envelopes] + list(bindings)

    expected = {names.envelopes: (names.raw, IntakeFunction.name)}
    expected.update({t: (names.envelopes, fn) for t, fn in bindings.items()})

    report = VerificationReport(freshness_window=freshness_window)
    report.checks.extend(check_tables(engine.store, tables))
    report.checks.extend(check_functions(engine, [IntakeFunction.name] + list(bindings.values())))
    report.checks.extend(check_policies(engine, expected))
    report.row_counts = row_counts(engine.store, tables)
    report.fresh_rows = freshness(engine.store, tables, freshness_window)

    if report.ok:
        logger.info("Verification passed: %d checks", len(report.checks))
    else:
        logger.warning("Verification failed: %s",
                       ", ".join(f"{c.kind} {c.name}" for c in report.failures))
    return report
