import pytest

from core.errors import DuplicateReadingError
from core.models import AssetKind, ReadingType
from core.reconciliation import group_readings


def test_complete_pairs_for_pumps_and_tanks(make_pump_reading, make_tank_reading):
    readings = [
        make_pump_reading("P1", "END", electric=1250),
        make_tank_reading("T1", "START", volume=5000),
        make_pump_reading("P1", "START", electric=1000),
        make_tank_reading("T1", "END", volume=4700),
    ]

    result = group_readings(readings)

    assert not result.incomplete
    assert not result.has_anomalies
    pump_group = result.group_for(AssetKind.PUMP, "P1")
    tank_group = result.group_for(AssetKind.TANK, "T1")
    assert pump_group.start.electric_meter == 1000
    assert pump_group.end.electric_meter == 1250
    assert tank_group.start.volume == 5000
    assert tank_group.shift_id == "SH-1"


def test_lone_readings_are_tagged_with_the_missing_counterpart(make_pump_reading, make_tank_reading):
    readings = [
        make_pump_reading("P1", "START", electric=1000),
        make_tank_reading("T1", "END", volume=4700),
    ]

    result = group_readings(readings)

    assert not result.complete
    missing = {(item.asset_id, item.missing) for item in result.incomplete}
    assert missing == {("P1", ReadingType.END), ("T1", ReadingType.START)}


def test_pump_and_tank_with_the_same_id_are_grouped_separately(make_pump_reading, make_tank_reading):
    readings = [
        make_pump_reading("X1", "START", electric=1),
        make_tank_reading("X1", "END", volume=10),
    ]

    result = group_readings(readings)

    assert len(result.incomplete) == 2
    assert not result.complete


def test_readings_of_different_shifts_are_never_paired(make_pump_reading):
    readings = [
        make_pump_reading("P1", "START", electric=1000, shift_id="SH-1"),
        make_pump_reading("P1", "END", electric=1100, shift_id="SH-2"),
    ]

    result = group_readings(readings)

    assert not result.complete
    assert len(result.incomplete) == 2


def test_duplicate_type_is_reported_as_anomaly_not_picked(make_pump_reading):
    readings = [
        make_pump_reading("P1", "START", electric=1000, reading_id="a"),
        make_pump_reading("P1", "START", electric=1010, reading_id="b"),
        make_pump_reading("P1", "END", electric=1200, reading_id="c"),
    ]

    result = group_readings(readings)

    assert not result.complete
    assert not result.incomplete
    assert len(result.anomalies) == 1
    anomaly = result.anomalies[0]
    assert anomaly.duplicated_types == (ReadingType.START,)
    assert anomaly.count(ReadingType.START) == 2
    assert sorted(reading.reading_id for reading in anomaly.readings) == ["a", "b", "c"]

    with pytest.raises(DuplicateReadingError) as excinfo:
        result.raise_for_anomalies()
    assert excinfo.value.details["anomalies"][0]["asset_id"] == "P1"
    assert excinfo.value.details["anomalies"][0]["counts"] == {"START": 2, "END": 1}


def test_every_reading_lands_in_exactly_one_bucket(make_pump_reading, make_tank_reading):
    readings = [
        make_pump_reading("P1", "START", electric=1000),
        make_pump_reading("P1", "END", electric=1100),
        make_pump_reading("P2", "START", electric=2000),
        make_pump_reading("P3", "END", electric=10, reading_id="p3-end-1"),
        make_pump_reading("P3", "END", electric=11, reading_id="p3-end-2"),
        make_tank_reading("T1", "START", volume=5000),
        make_tank_reading("T1", "END", volume=4900),
        make_tank_reading("T2", "END", volume=300),
        make_pump_reading("P1", "START", electric=0, shift_id="SH-2"),
    ]

    result = group_readings(readings)

    grouped = result.readings()
    assert len(grouped) == len(readings)
    assert sorted(map(id, grouped)) == sorted(map(id, readings))


def test_empty_input():
    result = group_readings([])

    assert result.complete == ()
    assert result.incomplete == ()
    assert result.anomalies == ()
    result.raise_for_anomalies()


def test_to_dict_lists_each_bucket(make_pump_reading):
    result = group_readings([
        make_pump_reading("P1", "START", electric=1000),
        make_pump_reading("P1", "END", electric=1100),
        make_pump_reading("P2", "END", electric=50),
    ])

    data = result.to_dict()

    assert data["complete"][0]["asset_id"] == "P1"
    assert data["complete"][0]["end"]["electric_meter"] == 1100.0
    assert data["incomplete"] == [{
        "asset_kind": "PUMP",
        "asset_id": "P2",
        "missing": "START",
        "reading": result.incomplete[0].reading.to_dict(),
    }]
    assert data["anomalies"] == []
