import pytest
from datetime import datetime, timezone

from glassline.decode import (
    DecodeStats,
    MISSING,
    NOT_INTEGER,
    NOT_NUMERIC,
    NOT_TIME,
    decode_int,
    decode_real,
    decode_string,
    decode_time,
    format_time,
    lookup,
)

pytestmark = [pytest.mark.unit, pytest.mark.transform]


def test_decode_string_missing_is_empty():
    d = decode_string(None)
    assert d.value == ""
    assert d.ok is False
    assert d.reason == MISSING


def test_decode_string_renders_scalars_and_documents():
    assert decode_string(3).value == "3"
    assert decode_string(True).value == "true"
    assert decode_string({"a": [1, 2]}).value == '{"a":[1,2]}'


@pytest.mark.parametrize("raw,expected", [(5, 5.0), ("2.5", 2.5), (" 7 ", 7.0), (1.25, 1.25)])
def test_decode_real_accepts_numbers_and_numeric_strings(raw, expected):
    d = decode_real(raw)
    assert d.ok
    assert d.value == expected


def test_decode_real_failures_carry_reason():
    assert decode_real(None).reason == MISSING
    assert decode_real("").reason == MISSING
    assert decode_real("abc").reason == NOT_NUMERIC
    assert decode_real({"v": 1}).reason == NOT_NUMERIC
    assert decode_real(float("nan")).reason == MISSING


def test_decode_int():
    assert decode_int("0").value == 0
    assert decode_int(4.0).value == 4
    assert decode_int(4.5).reason == NOT_INTEGER
    assert decode_int("x").reason == NOT_NUMERIC


def test_decode_time_iso_z():
    d = decode_time("2024-03-01T12:30:00Z")
    assert d.ok
    assert d.value == datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)


def test_decode_time_seven_digit_fraction():
    # Sub-microsecond digits are truncated, not rejected
    d = decode_time("2024-03-01T12:30:00.1234567Z")
    assert d.ok
    assert d.value == datetime(2024, 3, 1, 12, 30, 0, 123456, tzinfo=timezone.utc)


def test_decode_time_epoch_seconds_and_millis():
    expected = datetime(2024, 3, 1, tzinfo=timezone.utc)
    seconds = expected.timestamp()
    assert decode_time(seconds).value == expected
    assert decode_time(seconds * 1000).value == expected


def test_decode_time_naive_is_utc():
    assert decode_time(datetime(2024, 3, 1)).value.tzinfo == timezone.utc


def test_decode_time_failures():
    assert decode_time("").reason == MISSING
    assert decode_time("yesterday").reason == NOT_TIME
    assert decode_time(True).reason == NOT_TIME
    assert decode_time([1]).reason == NOT_TIME


def test_lookup_paths():
    doc = {"a": {"b": [10, {"c": "x"}]}}
    assert lookup(doc, "a.b.1.c").value == "x"
    assert lookup(doc, "a.b.0").value == 10
    assert lookup(doc, "a.z").reason == MISSING
    assert lookup(doc, "a.b.5").ok is False
    assert lookup({"a": None}, "a").ok is False


def test_format_time_fixed_width():
    t = datetime(2024, 3, 1, 1, 2, 3, tzinfo=timezone.utc)
    assert format_time(t) == "2024-03-01T01:02:03.000000Z"


def test_decode_stats_counts_failures_and_drops():
    stats = DecodeStats(function="f")
    assert stats.record("value", decode_real("bad")) is None
    assert stats.record("value", decode_real(1)) == 1.0
    stats.drop("bad_shape")
    stats.drop("bad_shape")

    summary = stats.as_dict()
    assert summary["field_failures"] == {"value:not_numeric": 1}
    assert summary["envelopes_dropped"] == 2
    assert summary["drop_reasons"] == {"bad_shape": 2}
