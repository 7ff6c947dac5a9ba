"""Cascade trigger engine.

Update policies bind a transformation function to a target table::

    source table --function--> target table

The bindings form a directed acyclic graph (raw -> envelopes -> five device
tables). Appending a batch to any table runs every enabled policy whose
source is that table over exactly the appended batch, appends the outputs to
the targets and recurses, all inside the one store transaction that holds the
triggering append. Either the whole step commits or none of it does.

Each append is an extent with an ``extent_id``. The store's extent ledger
records ``(table, extent_id)``; resubmitting an applied extent is a no-op,
which is what makes a retried step (or a re-run backfill window) safe.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

import pandas as pd

from glassline.decode import decode_time
from glassline.contracts import (
    CascadeCycleError,
    CascadeStepError,
    UnknownFunctionError,
    UnknownTableError,
    assert_schema_compatible,
    assert_target_frame,
)
from glassline.store import TableStore
from glassline.transform.base import TransformFunction, TransformResult

__all__ = ['UpdatePolicy', 'AppendResult', 'CascadeEngine']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpdatePolicy:
    """Binding of ``function`` from ``source`` to ``target``.

    There is at most one policy per target table.
    """
    target: str
    source: str
    function: str
    enabled: bool = True

    def describe(self) -> str:
        state = "enabled" if self.enabled else "disabled"
        return f"{self.source} --{self.function}--> {self.target} ({state})"


@dataclass
class AppendResult:
    """Outcome of one ``CascadeEngine.ingest`` call.

    Attributes
    ----------
    applied : bool
        False when the extent was already in the ledger (nothing written).
    rows : int
        Rows appended to the ingested table.
    cascaded : dict
        ``{target table: rows appended}`` for every policy that ran.
    stats : dict
        ``{function name: DecodeStats}`` for every policy that ran.
    """
    table: str
    extent_id: str
    applied: bool
    rows: int = 0
    cascaded: Dict[str, int] = field(default_factory=dict)
    stats: Dict[str, object] = field(default_factory=dict)

    @property
    def total_rows(self) -> int:
        return self.rows + sum(self.cascaded.values())


class CascadeEngine:
    """Runs update policies on every append.

    **Validation:**

    Policies are validated when bound, before any data flows: both tables
    exist, the function is registered, its output schema equals the target
    schema and the graph stays acyclic. Errors surface synchronously.

    **Concurrency:**

    Policies sharing a source run their functions concurrently on a thread
    pool (they read the same immutable batch and write different tables).
    Appends are written by the calling thread, in policy order, inside the
    store transaction. Store transactions are serialized, so batches reach
    each target in arrival order.

    **Enable / disable:**

    Manual only. A failing policy fails the step; it is never skipped.

    Example usage::

        engine = CascadeEngine(store, max_workers=5)
        engine.register_function(IntakeFunction())
        engine.alter_policy("Envelopes", source="RawEvents", function="RawEventsToEnvelopes")
        result = engine.ingest("RawEvents", raw_rows)
    """

    def __init__(self, store: TableStore, max_workers: int = 5):
        self.store = store
        self.max_workers = max_workers
        self._functions: Dict[str, TransformFunction] = {}
        self._lock = threading.RLock()
        # Policies persist in the store; functions are code and are registered per process
        self._policies: Dict[str, UpdatePolicy] = {
            row["target"]: UpdatePolicy(**row) for row in store.load_policies()
        }
        if self._policies:
            logger.info("Loaded %d update policies from store", len(self._policies))

    # ========================================================================
    # Functions
    # ========================================================================

    def register_function(self, function: TransformFunction) -> None:
        """Create or replace a function.

        Replacing a function re-checks the schema of every policy using it.

        Raises
        ------
        SchemaMismatchError
            If a bound target no longer matches the new output schema.
        """
        with self._lock:
            for policy in self._policies.values():
                if policy.function == function.name:
                    assert_schema_compatible(function.name, function.output_schema,
                                             policy.target, self.store.schema(policy.target))
            replaced = function.name in self._functions
            self.store.save_function(function.name, function.docstring, function.folder,
                                     function.output_schema)
            self._functions[function.name] = function
        logger.info("%s function %s [%s]", "Replaced" if replaced else "Created",
                    function.name, function.folder)

    def has_function(self, name: str) -> bool:
        """True if registered here or declared in the store catalog."""
        with self._lock:
            return name in self._functions or name in self.store.function_catalog()

    def function(self, name: str) -> TransformFunction:
        with self._lock:
            if name not in self._functions:
                raise UnknownFunctionError(f"Function '{name}' is not registered")
            return self._functions[name]

    def functions(self) -> List[str]:
        with self._lock:
            return sorted(self._functions)

    # ========================================================================
    # Policies
    # ========================================================================

    def alter_policy(self, target: str, source: str, function: str,
                     enabled: bool = True) -> UpdatePolicy:
        """Bind (or rebind) the update policy of ``target``.

        Returns
        -------
        UpdatePolicy
            The policy now in force.

        Raises
        ------
        UnknownTableError
            If ``source`` or ``target`` does not exist.
        UnknownFunctionError
            If ``function`` is not registered.
        SchemaMismatchError
            If the function output schema differs from the target schema.
        CascadeCycleError
            If the binding would close a cycle.
        """
        policy = UpdatePolicy(target=target, source=source, function=function, enabled=enabled)
        with self._lock:
            self._check_policy(policy)
            candidate = dict(self._policies)
            candidate[target] = policy
            self._topological_order(candidate)
            self.store.save_policy(target, source, function, enabled)
            self._policies = candidate
        logger.info("Update policy: %s", policy.describe())
        return policy

    def _check_policy(self, policy: UpdatePolicy) -> None:
        for table in (policy.source, policy.target):
            if not self.store.table_exists(table):
                raise UnknownTableError(
                    f"Update policy on '{policy.target}' references missing table '{table}'"
                )
        fn = self.function(policy.function)
        assert_schema_compatible(fn.name, fn.output_schema,
                                 policy.target, self.store.schema(policy.target))

    def policy(self, target: str) -> Optional[UpdatePolicy]:
        with self._lock:
            return self._policies.get(target)

    def policies(self) -> List[UpdatePolicy]:
        with self._lock:
            return [self._policies[t] for t in sorted(self._policies)]

    def policies_from(self, source: str) -> List[UpdatePolicy]:
        """Enabled policies reading ``source``, ordered by target name."""
        with self._lock:
            return [p for p in self.policies() if p.source == source and p.enabled]

    def set_enabled(self, target: str, enabled: bool) -> UpdatePolicy:
        with self._lock:
            if target not in self._policies:
                raise UnknownTableError(f"No update policy on '{target}'")
            policy = replace(self._policies[target], enabled=enabled)
            if enabled:
                self._check_policy(policy)
            self.store.save_policy(policy.target, policy.source, policy.function, enabled)
            self._policies[target] = policy
        logger.info("Update policy: %s", policy.describe())
        return policy

    def enable(self, target: str) -> UpdatePolicy:
        return self.set_enabled(target, True)

    def disable(self, target: str) -> UpdatePolicy:
        return self.set_enabled(target, False)

    def remove_policy(self, target: str) -> bool:
        with self._lock:
            self.store.delete_policy(target)
            return self._policies.pop(target, None) is not None

    @staticmethod
    def _topological_order(policies: Dict[str, UpdatePolicy]) -> List[str]:
        """Kahn's algorithm over the table graph.

        Raises
        ------
        CascadeCycleError
            If the policies do not form a DAG.
        """
        nodes = set()
        children: Dict[str, List[str]] = {}
        indegree: Dict[str, int] = {}
        for policy in policies.values():
            nodes.update((policy.source, policy.target))
            children.setdefault(policy.source, []).append(policy.target)
            indegree[policy.target] = indegree.get(policy.target, 0) + 1

        ready = sorted(n for n in nodes if indegree.get(n, 0) == 0)
        order = []
        while ready:
            node = ready.pop(0)
            order.append(node)
            for child in sorted(children.get(node, [])):
                indegree[child] -= 1
                if indegree[child] == 0:
                    ready.append(child)
            ready.sort()

        if len(order) != len(nodes):
            stuck = sorted(nodes - set(order))
            raise CascadeCycleError(f"Update policies form a cycle through {stuck}")
        return order

    def validate(self) -> List[str]:
        """Re-check every policy against the current tables and functions.

        Returns
        -------
        list of str
            Tables in topological (upstream first) order.
        """
        with self._lock:
            for policy in self._policies.values():
                self._check_policy(policy)
            return self._topological_order(self._policies)

    # ========================================================================
    # Control operations that must keep policies consistent
    # ========================================================================

    def rename_table(self, old: str, new: str) -> None:
        """Rename a table and repoint the policies that reference it."""
        with self._lock, self.store.transaction():
            self.store.rename_table(old, new)
            renamed = {}
            for policy in self._policies.values():
                policy = replace(
                    policy,
                    source=new if policy.source == old else policy.source,
                    target=new if policy.target == old else policy.target,
                )
                renamed[policy.target] = policy
            self._policies = renamed

    def recreate_table(self, name: str, schema: dict) -> None:
        """Drop and recreate a table; its policy must still fit the new schema."""
        with self._lock, self.store.transaction():
            self.store.recreate_table(name, schema)
            policy = self._policies.get(name)
            if policy is not None:
                fn = self.function(policy.function)
                assert_schema_compatible(fn.name, fn.output_schema, name, schema)

    # ========================================================================
    # Ingestion
    # ========================================================================

    def ingest(self, table: str, rows: Union[pd.DataFrame, Iterable[dict]],
               extent_id: Optional[str] = None,
               creation_time: Optional[datetime] = None) -> AppendResult:
        """Append a batch to ``table`` and run the cascade.

        Parameters
        ----------
        table : str
            Table receiving the batch.
        rows : DataFrame or iterable of dict
            The batch. Must carry every column of the table schema.
        extent_id : str, optional
            Batch identity; generated if omitted. Resubmitting an applied
            id writes nothing.
        creation_time : datetime, optional
            Creation-time tag for the batch and every cascaded extent.

        Returns
        -------
        AppendResult

        Raises
        ------
        CascadeStepError
            If anything failed; the whole step was rolled back and may be
            resubmitted with the same ``extent_id``.
        """
        frame = rows if isinstance(rows, pd.DataFrame) else pd.DataFrame(list(rows))
        extent_id = extent_id or self.store.new_extent_id()
        result = AppendResult(table=table, extent_id=extent_id, applied=False)

        try:
            with self._lock, self.store.transaction():
                if self.store.has_extent(table, extent_id):
                    logger.info("Extent %s already applied to %s, skipping", extent_id, table)
                    return result

                result.rows = self.store.append(table, frame, extent_id, creation_time)
                result.applied = True
                if creation_time is None:
                    stamped = self.store.get_extent(table, extent_id)["creation_time"]
                    creation_time = decode_time(stamped).value
                self._cascade(table, extent_id, creation_time, result)
        except Exception as exc:
            logger.error("Cascade step for %s extent %s rolled back: %s", table, extent_id, exc)
            raise CascadeStepError(table, extent_id, exc) from exc

        logger.info("Ingested %d rows into %s (extent %s), cascaded %s",
                    result.rows, table, extent_id, result.cascaded)
        return result

    def _cascade(self, source: str, extent_id: str, creation_time: datetime,
                 result: AppendResult) -> None:
        policies = self.policies_from(source)
        if not policies:
            return

        batch = self.store.read(source, extent_id=extent_id)
        outputs = self._run_functions(policies, batch)

        for policy in policies:
            output = outputs[policy.target]
            result.stats[policy.function] = output.stats
            assert_target_frame(output.frame, policy.target, self.store.schema(policy.target))
            written = self.store.append(policy.target, output.frame, extent_id, creation_time)
            result.cascaded[policy.target] = result.cascaded.get(policy.target, 0) + written
            if written:
                self._cascade(policy.target, extent_id, creation_time, result)

    def _run_functions(self, policies: List[UpdatePolicy],
                       batch: pd.DataFrame) -> Dict[str, TransformResult]:
        functions = {p.target: self.function(p.function) for p in policies}
        if len(policies) == 1 or self.max_workers == 1:
            return {target: fn(batch) for target, fn in functions.items()}

        workers = min(self.max_workers, len(policies))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cascade") as pool:
            futures = {target: pool.submit(fn, batch) for target, fn in functions.items()}
            return {target: future.result() for target, future in futures.items()}
