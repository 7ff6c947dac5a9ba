"""Declarative control surface.

Setup is a script: an ordered list of statements applied one at a time.
Every statement is idempotent, so re-running a script is safe. Later
statements presume earlier ones succeeded (a policy needs its tables and
function), so the first failure stops the script with a :class:`SetupError`.

Statements
----------
- :class:`CreateTable`: create, or confirm an identical schema
- :class:`RenameTable`: rename keeping schema, rows and policies
- :class:`RecreateTable`: drop and recreate a table schema
- :class:`CreateOrReplaceFunction`: register a function with docstring and folder
- :class:`AlterUpdatePolicy`: bind a function from a source to a target
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from glassline.contracts import SetupError
from glassline.intake import ENVELOPE_SCHEMA, RAW_SCHEMA, IntakeFunction
from glassline.transform import TransformFunction, build_device_functions
from glassline.pipeline.cascade import CascadeEngine

if TYPE_CHECKING:
    from glassline.schemas import InternalConfig

__all__ = [
    'Statement',
    'CreateTable',
    'RenameTable',
    'RecreateTable',
    'CreateOrReplaceFunction',
    'AlterUpdatePolicy',
    'run_setup_script',
    'build_functions',
    'target_bindings',
    'default_setup_script',
]

logger = logging.getLogger(__name__)


class Statement:
    """Base class for control statements."""

    def apply(self, engine: CascadeEngine) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__


@dataclass
class CreateTable(Statement):
    name: str
    schema: dict

    def apply(self, engine):
        engine.store.create_table(self.name, self.schema)

    def describe(self):
        return f"create table {self.name}"


@dataclass
class RenameTable(Statement):
    """Rename ``old`` to ``new``; a no-op when the rename already happened."""
    old: str
    new: str

    def apply(self, engine):
        store = engine.store
        if store.table_exists(self.new) and not store.table_exists(self.old):
            logger.debug("Table %s already renamed to %s", self.old, self.new)
            return
        engine.rename_table(self.old, self.new)

    def describe(self):
        return f"rename table {self.old} to {self.new}"


@dataclass
class RecreateTable(Statement):
    """Drop and recreate ``name`` with ``schema``. Existing rows are discarded."""
    name: str
    schema: dict

    def apply(self, engine):
        engine.recreate_table(self.name, self.schema)

    def describe(self):
        return f"recreate table {self.name}"


@dataclass
class CreateOrReplaceFunction(Statement):
    function: TransformFunction
    docstring: Optional[str] = None
    folder: Optional[str] = None

    def apply(self, engine):
        if self.docstring is not None:
            self.function.docstring = self.docstring
        if self.folder is not None:
            self.function.folder = self.folder
        engine.register_function(self.function)

    def describe(self):
        return f"create-or-alter function {self.function.name}"


@dataclass
class AlterUpdatePolicy(Statement):
    target: str
    source: str
    function: str
    enabled: bool = True

    def apply(self, engine):
        engine.alter_policy(self.target, source=self.source,
                            function=self.function, enabled=self.enabled)

    def describe(self):
        return f"alter table {self.target} policy update ({self.source} | {self.function})"


def run_setup_script(engine: CascadeEngine, statements: Sequence[Statement]) -> List[str]:
    """Apply ``statements`` in order, stopping at the first failure.

    Returns
    -------
    list of str
        Descriptions of the applied statements.

    Raises
    ------
    SetupError
        Wrapping the first failing statement and its cause. Statements
        after it are not applied.
    """
    applied = []
    for index, statement in enumerate(statements, start=1):
        try:
            statement.apply(engine)
        except Exception as exc:
            logger.error("Setup stopped at #%d (%s): %s", index, statement.describe(), exc)
            raise SetupError(index, statement, exc) from exc
        applied.append(statement.describe())
        logger.debug("Setup #%d ok: %s", index, statement.describe())

    logger.info("Setup script applied: %d statements", len(applied))
    return applied


# =============================================================================
# Default medallion
# =============================================================================

# (table names attribute, function name)
_TARGETS = (
    ("iri_measurements", "IriMeasurementsTransform"),
    ("iri_defects", "IriDefectsTransform"),
    ("cold_system_measurements", "ColdSystemMeasurementsTransform"),
    ("blank_watch_temperatures", "BlankWatchTemperaturesTransform"),
    ("blank_watch_gob_loading", "BlankWatchGobLoadingTransform"),
)


def build_functions(config: "InternalConfig") -> Dict[str, TransformFunction]:
    """The intake function plus the five device functions, by name."""
    functions = {IntakeFunction.name: IntakeFunction()}
    functions.update(build_device_functions(config))
    return functions


def target_bindings(config: "InternalConfig") -> Dict[str, str]:
    """``{target table: function name}`` for the five device tables."""
    tables = config.store.tables
    return {getattr(tables, attr): fn for attr, fn in _TARGETS}


def default_setup_script(config: "InternalConfig") -> List[Statement]:
    """Statements declaring the whole pipeline.

    Order matters: tables, then functions, then policies (raw -> envelopes
    first, then the five device tables).
    """
    tables = config.store.tables
    functions = build_functions(config)
    bindings = target_bindings(config)

    script: List[Statement] = [
        CreateTable(tables.raw, RAW_SCHEMA),
        CreateTable(tables.envelopes, ENVELOPE_SCHEMA),
    ]
    for target, fn_name in bindings.items():
        script.append(CreateTable(target, functions[fn_name].output_schema))

    for fn in functions.values():
        script.append(CreateOrReplaceFunction(fn))

    script.append(AlterUpdatePolicy(tables.envelopes, source=tables.raw,
                                    function=IntakeFunction.name))
    for target, fn_name in bindings.items():
        script.append(AlterUpdatePolicy(target, source=tables.envelopes, function=fn_name))
    return script
