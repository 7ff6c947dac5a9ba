import pytest
import pandas as pd

from glassline.decode import DecodeStats, decode_real
from glassline.transform import FlattenSpec, Flattener, Level, MalformedPayload, as_pairs

pytestmark = [pytest.mark.unit, pytest.mark.transform]


def value_leaf(key, entry, context, stats):
    return {"value": stats.record("value", decode_real(entry)), "unit": context.get("unit")}


def make_spec(**overrides):
    fields = dict(
        device="dev",
        category="cat",
        lineage=(("batch_id", "meta.batch"),),
        payload="groups",
        levels=(Level("group", side_channels=("unit",)), Level("name")),
        leaf=value_leaf,
    )
    fields.update(overrides)
    return FlattenSpec(**fields)


def env(data, device="dev", category="cat"):
    return {"timestamp": None, "device": device, "category": category, "location": "",
            "productionLine": "", "lineUpl": "", "data": data}


def test_as_pairs_accepts_objects_and_pair_arrays():
    assert as_pairs({"a": 1, "b": 2}) == [("a", 1), ("b", 2)]
    assert as_pairs([["a", 1], ("b", 2)]) == [("a", 1), ("b", 2)]
    assert as_pairs([]) == []


@pytest.mark.parametrize("node,reason", [
    (5, "bad_shape"),
    ("text", "bad_shape"),
    (None, "bad_shape"),
    ([["a", 1, 2]], "bad_pair"),
    ([[None, 1]], "bad_pair"),
])
def test_as_pairs_rejects(node, reason):
    with pytest.raises(MalformedPayload) as exc:
        as_pairs(node)
    assert exc.value.reason == reason


def test_nested_expansion_with_side_channel():
    data = {"meta": {"batch": 42},
            "groups": {"g1": {"x": 1, "y": 2}, "unit": "mm", "g2": [["z", "3"]]}}
    rows = Flattener(make_spec()).flatten_envelope(env(data), DecodeStats(function="t"))

    assert [(r["group"], r["name"], r["value"]) for r in rows] == [
        ("g1", "x", 1.0), ("g1", "y", 2.0), ("g2", "z", 3.0)
    ]
    assert {r["unit"] for r in rows} == {"mm"}
    assert {r["batch_id"] for r in rows} == {"42"}


def test_empty_group_yields_no_rows():
    data = {"groups": {"g1": {}, "g2": []}}
    stats = DecodeStats(function="t")
    assert Flattener(make_spec()).flatten_envelope(env(data), stats) == []
    assert stats.field_failures["batch_id:missing"] == 1


def test_via_and_drop_empty():
    spec = make_spec(levels=(Level("group", via="items", drop_empty=True), Level("name")))
    data = {"groups": {"g1": {"items": {"a": 1}}, "g2": {"items": None}, "g3": {"other": 1},
                       "g4": [["items", {"b": 2}]]}}
    rows = Flattener(spec).flatten_envelope(env(data), DecodeStats(function="t"))
    assert [(r["group"], r["name"]) for r in rows] == [("g1", "a"), ("g4", "b")]


def test_strip_keys_and_context_paths():
    spec = make_spec(payload=None, levels=(Level("name"),), strip_keys=("meta", "unit"),
                     context_paths=(("unit", "unit"),))
    data = {"meta": {"batch": 1}, "unit": "C", "t1": 5, "t2": 6}
    rows = Flattener(spec).flatten_envelope(env(data), DecodeStats(function="t"))

    assert [r["name"] for r in rows] == ["t1", "t2"]
    assert {r["unit"] for r in rows} == {"C"}


def test_flatten_counts_matches_and_drops():
    batch = pd.DataFrame([
        env({"groups": {"g": {"a": 1}}}),
        env({"groups": 7}),
        env({"groups": {"g": {"a": 1}}}, device="other"),
    ])
    stats = DecodeStats(function="t")
    rows = Flattener(make_spec()).flatten(batch, stats)

    assert len(rows) == 1
    assert stats.envelopes_matched == 2
    assert stats.drop_reasons == {"bad_shape": 1}
