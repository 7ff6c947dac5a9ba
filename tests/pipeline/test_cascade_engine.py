import pytest
from datetime import datetime, timezone

from glassline.contracts import (
    CascadeCycleError,
    CascadeStepError,
    SchemaMismatchError,
    UnknownFunctionError,
    UnknownTableError,
)
from glassline.pipeline import CascadeEngine
from glassline.transform import TransformFunction

from tests.helpers.functions import NUMBERS

pytestmark = [pytest.mark.unit, pytest.mark.pipeline]


def test_append_cascades_through_chain(chain, numbers):
    result = chain.ingest("A", numbers(("a", 1.0), ("b", 2.0)), extent_id="e1")

    assert result.applied is True
    assert result.rows == 2
    assert result.cascaded == {"B": 2, "C": 2}
    assert result.total_rows == 6
    assert chain.store.read("C")["value"].tolist() == [4.0, 8.0]
    assert set(result.stats) == {"Doubler"}


def test_resubmitting_an_extent_writes_nothing(chain, numbers):
    chain.ingest("A", numbers(("a", 1.0)), extent_id="e1")
    again = chain.ingest("A", numbers(("a", 1.0)), extent_id="e1")

    assert again.applied is False
    assert again.total_rows == 0
    for table in ("A", "B", "C"):
        assert chain.store.row_count(table) == 1


def test_cascaded_extents_share_id_and_creation_time(chain, numbers):
    created = datetime(2023, 6, 1, tzinfo=timezone.utc)
    chain.ingest("A", numbers(("a", 1.0)), extent_id="hist", creation_time=created)

    for table in ("A", "B", "C"):
        extent = chain.store.get_extent(table, "hist")
        assert extent["creation_time"] == "2023-06-01T00:00:00.000000Z"


def test_default_creation_time_is_inherited(chain, numbers, clock):
    chain.ingest("A", numbers(("a", 1.0)), extent_id="live")
    stamp = chain.store.get_extent("A", "live")["creation_time"]
    assert chain.store.get_extent("C", "live")["creation_time"] == stamp


def test_failing_function_rolls_back_whole_step(chain, numbers):
    chain.store.create_table("D", NUMBERS)
    chain.alter_policy("D", source="A", function="Exploder")

    with pytest.raises(CascadeStepError) as exc:
        chain.ingest("A", numbers(("ok", 1.0), ("boom", 2.0)), extent_id="bad")

    assert exc.value.extent_id == "bad"
    assert isinstance(exc.value.cause, RuntimeError)
    for table in ("A", "B", "C", "D"):
        assert chain.store.row_count(table) == 0
    assert not chain.store.has_extent("A", "bad")

    # the same extent can be resubmitted once the function is fixed
    chain.disable("D")
    result = chain.ingest("A", numbers(("ok", 1.0), ("boom", 2.0)), extent_id="bad")
    assert result.applied is True
    assert result.cascaded == {"B": 2, "C": 2}


def test_disabled_policy_is_skipped(chain, numbers):
    chain.disable("C")
    result = chain.ingest("A", numbers(("a", 1.0)))

    assert result.cascaded == {"B": 1}
    assert chain.store.row_count("C") == 0
    assert chain.policy("C").enabled is False

    chain.enable("C")
    chain.ingest("A", numbers(("b", 1.0)))
    assert chain.store.row_count("C") == 1


def test_fan_out_runs_every_policy(chain, numbers):
    chain.store.create_table("B2", NUMBERS)
    chain.alter_policy("B2", source="A", function="Doubler")

    result = chain.ingest("A", numbers(("a", 1.0), ("b", 1.0), ("c", 1.0)))
    assert result.cascaded == {"B": 3, "B2": 3, "C": 3}


def test_empty_batch_still_cascades_empty_extents(chain, numbers):
    result = chain.ingest("A", numbers(), extent_id="empty")
    assert result.applied is True
    assert result.total_rows == 0
    assert chain.store.has_extent("B", "empty")


def test_cycle_is_rejected_when_bound(chain):
    with pytest.raises(CascadeCycleError):
        chain.alter_policy("A", source="C", function="Doubler")
    assert chain.policy("A") is None


def test_self_loop_is_rejected(chain):
    with pytest.raises(CascadeCycleError):
        chain.alter_policy("A", source="A", function="Doubler")


def test_schema_mismatch_is_rejected_when_bound(chain):
    chain.store.create_table("Wide", {"name": "string", "value": "real", "extra": "int"})
    with pytest.raises(SchemaMismatchError):
        chain.alter_policy("Wide", source="A", function="Doubler")


def test_missing_table_or_function(chain):
    with pytest.raises(UnknownTableError):
        chain.alter_policy("Nope", source="A", function="Doubler")
    with pytest.raises(UnknownTableError):
        chain.alter_policy("B", source="Nope", function="Doubler")
    with pytest.raises(UnknownFunctionError):
        chain.alter_policy("B", source="A", function="Missing")


def test_replacing_function_rechecks_bound_schemas(chain):
    class NarrowDoubler(TransformFunction):
        name = "Doubler"
        output_schema = {"name": "string"}

        def transform(self, batch, stats):
            return []

    with pytest.raises(SchemaMismatchError):
        chain.register_function(NarrowDoubler())
    assert chain.function("Doubler").output_schema == NUMBERS


def test_validate_returns_topological_order(chain):
    assert chain.validate() == ["A", "B", "C"]


def test_rename_repoints_policies(chain, numbers):
    chain.rename_table("B", "Middle")

    assert chain.policy("Middle").source == "A"
    assert chain.policy("C").source == "Middle"
    chain.ingest("A", numbers(("a", 1.0)))
    assert chain.store.row_count("C") == 1


def test_recreate_table_must_fit_bound_function(chain):
    with pytest.raises(SchemaMismatchError):
        chain.recreate_table("B", {"name": "string"})
    assert chain.store.schema("B") == NUMBERS


def test_policies_and_catalog_persist_across_engines(chain):
    reopened = CascadeEngine(chain.store)

    assert [p.describe() for p in reopened.policies()] == [p.describe() for p in chain.policies()]
    assert reopened.has_function("Doubler")
    assert reopened.functions() == []
    with pytest.raises(UnknownFunctionError):
        reopened.function("Doubler")


def test_remove_policy(chain, numbers):
    assert chain.remove_policy("C") is True
    assert chain.remove_policy("C") is False
    result = chain.ingest("A", numbers(("a", 1.0)))
    assert result.cascaded == {"B": 1}


def test_ingest_accepts_row_dicts(chain):
    result = chain.ingest("A", [{"name": "a", "value": 1.5}])
    assert chain.store.read("B")["value"].tolist() == [3.0]
    assert result.extent_id


def test_ingest_into_missing_table_raises_step_error(chain, numbers):
    with pytest.raises(CascadeStepError) as exc:
        chain.ingest("Nope", numbers(("a", 1.0)))
    assert isinstance(exc.value.cause, UnknownTableError)
