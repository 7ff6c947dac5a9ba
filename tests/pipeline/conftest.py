import pytest
import pandas as pd

from glassline.pipeline import CascadeEngine

from tests.helpers.functions import NUMBERS, Doubler, Exploder


@pytest.fixture
def numbers():
    def _make(*pairs):
        return pd.DataFrame([{"name": n, "value": v} for n, v in pairs], columns=list(NUMBERS))
    return _make


@pytest.fixture
def chain(store):
    """A -> B (Doubler) -> C (Doubler) over a bare store."""
    for table in ("A", "B", "C"):
        store.create_table(table, NUMBERS)
    engine = CascadeEngine(store, max_workers=2)
    engine.register_function(Doubler())
    engine.register_function(Exploder())
    engine.alter_policy("B", source="A", function="Doubler")
    engine.alter_policy("C", source="B", function="Doubler")
    return engine
