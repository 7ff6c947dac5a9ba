import pytest

from tests.helpers.events import gob_loading_data, iri_data, mixed_raw_batch, raw_event

pytestmark = [pytest.mark.unit, pytest.mark.pipeline]


def test_raw_batch_reaches_every_device_table(engine):
    result = engine.ingest("RawEvents", mixed_raw_batch(), extent_id="raw-1")

    assert result.cascaded == {
        "Envelopes": 6,
        "IriMeasurements": 3,
        "IriDefects": 3,
        "ColdSystemMeasurements": 2,
        "BlankWatchTemperatures": 2,
        "BlankWatchGobLoading": 2,
    }
    for table in result.cascaded:
        assert engine.store.has_extent(table, "raw-1")


def test_unknown_device_stays_in_envelopes(engine):
    engine.ingest("RawEvents", [raw_event("forming", "status", {"state": "ok"})])
    envelopes = engine.store.read("Envelopes")

    assert envelopes["device"].tolist() == ["forming"]
    assert envelopes["data"].iloc[0] == {"state": "ok"}
    assert engine.store.row_count("IriMeasurements") == 0


def test_gob_loading_rows_through_cascade(engine):
    engine.ingest("RawEvents", [raw_event("blank-watch", "gob-loading", gob_loading_data())])
    df = engine.store.read("BlankWatchGobLoading")

    assert sorted(zip(df["measurement_name"], df["value"])) == [("metricX", 1.5), ("metricY", 2.5)]
    assert set(df["gob"]) == {"3"}
    assert set(df["location"]) == {"Plant-7"}


def test_malformed_event_does_not_fail_batch(engine):
    batch = [
        raw_event("iri", "measurements", "garbage"),
        raw_event("iri", "measurements", iri_data()),
        {"timestamp": None, "properties": None, "data": None},
    ]
    result = engine.ingest("RawEvents", batch)

    assert result.cascaded["Envelopes"] == 3
    assert result.cascaded["IriMeasurements"] == 3
    stats = result.stats["IriMeasurementsTransform"]
    assert stats.envelopes_dropped == 1
    assert stats.drop_reasons == {"data_not_object": 1}


def test_batches_arrive_in_order(engine):
    for i in range(3):
        engine.ingest("RawEvents", [raw_event("blank-watch", "gob-loading",
                                              {"cycle": str(i), "metric": float(i)})])
    df = engine.store.read("BlankWatchGobLoading")
    assert df["cycle"].tolist() == ["0", "1", "2"]


def test_replayed_raw_batch_is_not_duplicated(engine):
    engine.ingest("RawEvents", mixed_raw_batch(), extent_id="same")
    engine.ingest("RawEvents", mixed_raw_batch(), extent_id="same")

    assert engine.store.row_count("RawEvents") == 6
    assert engine.store.row_count("IriMeasurements") == 3
