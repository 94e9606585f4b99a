import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.models import PumpAsset, PumpReading, ReadingType, ShiftSnapshot, TankAsset, TankReading
from core.reconciliation import (
    InMemoryReconciliationRepository,
    InMemoryShiftDataSource,
    ReconciliationController,
    TemperatureCorrection,
    VarianceEngine,
)
from data.db_models import Base
from utils.helpers import to_decimal

SHIFT_OPENED_AT = datetime.datetime(2024, 3, 1, 6, 0, tzinfo=datetime.timezone.utc)
SHIFT_CLOSED_AT = datetime.datetime(2024, 3, 1, 14, 0, tzinfo=datetime.timezone.utc)


def _recorded_at(reading_type: ReadingType) -> datetime.datetime:
    return SHIFT_OPENED_AT if reading_type is ReadingType.START else SHIFT_CLOSED_AT


@pytest.fixture
def make_pump_reading():
    def _make(pump_id, reading_type, electric=None, manual=None, shift_id="SH-1", reading_id=None):
        rtype = ReadingType(reading_type)
        return PumpReading(
            shift_id=shift_id,
            pump_id=pump_id,
            reading_type=rtype,
            recorded_at=_recorded_at(rtype),
            electric_meter=to_decimal(electric),
            manual_meter=to_decimal(manual),
            reading_id=reading_id or f"{shift_id}/{pump_id}/{rtype.value}",
        )
    return _make


@pytest.fixture
def make_tank_reading():
    def _make(tank_id, reading_type, volume=None, temperature=None, dip=None, water_level=None,
              shift_id="SH-1", reading_id=None):
        rtype = ReadingType(reading_type)
        return TankReading(
            shift_id=shift_id,
            tank_id=tank_id,
            reading_type=rtype,
            recorded_at=_recorded_at(rtype),
            dip_value=to_decimal(dip),
            volume=to_decimal(volume),
            temperature=to_decimal(temperature),
            water_level=to_decimal(water_level),
            reading_id=reading_id or f"{shift_id}/{tank_id}/{rtype.value}",
        )
    return _make


@pytest.fixture
def make_shift(make_pump_reading, make_tank_reading):
    """
    One tank (T1) fed by one pump per entry in `pump_meters`. The defaults balance:
    300 L out of the tank, 150 L through each of two pumps.
    """
    def _make(shift_id="SH-1", opening=5000, closing=4700, pump_meters=((1000, 1150), (2000, 2150)),
              product_type=None, temperatures=(None, None), tolerance=None, station_id="ST-1"):
        tank = TankAsset("T1", product_type=product_type, station_id=station_id)
        pumps = tuple(PumpAsset(f"P{index}", tank_id="T1") for index in range(1, len(pump_meters) + 1))
        pump_readings = []
        for pump, (start, end) in zip(pumps, pump_meters):
            pump_readings.append(make_pump_reading(pump.pump_id, "START", electric=start, shift_id=shift_id))
            pump_readings.append(make_pump_reading(pump.pump_id, "END", electric=end, shift_id=shift_id))
        tank_readings = (
            make_tank_reading("T1", "START", volume=opening, temperature=temperatures[0], shift_id=shift_id),
            make_tank_reading("T1", "END", volume=closing, temperature=temperatures[1], shift_id=shift_id),
        )
        return ShiftSnapshot(
            shift_id=shift_id,
            station_id=station_id,
            tanks=(tank,),
            pumps=pumps,
            pump_readings=tuple(pump_readings),
            tank_readings=tank_readings,
            tolerance_percentage=to_decimal(tolerance),
        )
    return _make


@pytest.fixture
def data_source():
    return InMemoryShiftDataSource()


@pytest.fixture
def repository():
    return InMemoryReconciliationRepository()


@pytest.fixture
def controller(data_source, repository):
    return ReconciliationController(
        data_source,
        repository,
        variance_engine=VarianceEngine(Decimal("0.5")),
        correction=TemperatureCorrection(reference_temperature_c=15.0, enabled=True),
    )


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()
