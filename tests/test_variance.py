from decimal import Decimal

import pytest

from core.models import Caveat, MeterSource, PumpVolume, Severity, TankAsset, TankVolume
from core.reconciliation import VarianceEngine, variance_percentage

TANK = TankAsset("T1", product_type="PMS")


def tank_volume(adjusted, opening="5000", applied=True, water_levels=(None, None)):
    adjusted = Decimal(adjusted)
    return TankVolume(
        tank_id="T1",
        opening_volume=Decimal(opening),
        closing_volume=Decimal(opening) - adjusted,
        raw_reduction=adjusted,
        temp_correction_factor=Decimal("1"),
        correction_applied=applied,
        adjusted_reduction=adjusted,
        opening_water_level=water_levels[0],
        closing_water_level=water_levels[1],
    )


def pumps(*dispensed):
    return [PumpVolume(f"P{i}", Decimal("0"), Decimal(d), Decimal(d), MeterSource.ELECTRIC)
            for i, d in enumerate(dispensed, start=1)]


@pytest.fixture
def engine():
    return VarianceEngine(Decimal("0.5"))


@pytest.mark.parametrize("percentage, expected", [
    ("0", Severity.NORMAL),
    ("0.5", Severity.NORMAL),
    ("-0.5", Severity.NORMAL),
    ("0.51", Severity.WARNING),
    ("1.0", Severity.WARNING),
    ("-0.9", Severity.WARNING),
    ("1.01", Severity.CRITICAL),
    ("-5", Severity.CRITICAL),
])
def test_classification_bands(engine, percentage, expected):
    assert engine.classify(Decimal(percentage)) is expected


def test_balanced_tank_is_normal(engine):
    result = engine.evaluate_tank(TANK, tank_volume("300"), pumps("100", "200"))

    assert result.total_pump_dispensed == Decimal("300")
    assert result.variance == Decimal("0")
    assert result.variance_percentage == Decimal("0")
    assert result.severity is Severity.NORMAL
    assert result.is_within_tolerance is True
    assert result.caveats == ()


def test_five_percent_over_is_critical(engine):
    result = engine.evaluate_tank(TANK, tank_volume("315"), pumps("300"))

    assert result.variance == Decimal("15")
    assert result.variance_percentage == Decimal("5")
    assert result.severity is Severity.CRITICAL
    assert result.is_within_tolerance is False
    assert result.tolerance_percentage == Decimal("0.5")


def test_reduction_without_sales_is_unmonitored_not_classified(engine):
    result = engine.evaluate_tank(TANK, tank_volume("50"), [])

    assert Caveat.UNMONITORED_REDUCTION in result.caveats
    assert result.is_unmonitored
    assert result.severity is None
    assert result.variance == Decimal("50")
    assert result.variance_percentage == Decimal("0")
    assert result.is_within_tolerance is False


def test_idle_tank_with_no_sales_is_normal(engine):
    result = engine.evaluate_tank(TANK, tank_volume("0"), [])

    assert result.severity is Severity.NORMAL
    assert not result.is_unmonitored


def test_incomplete_pumps_are_listed_and_excluded(engine):
    result = engine.evaluate_tank(TANK, tank_volume("300"), pumps("300"), incomplete_pump_ids=["P9", "P7"])

    assert result.excluded_pump_ids == ("P7", "P9")
    assert Caveat.INCOMPLETE_PUMP_READINGS in result.caveats
    assert result.total_pump_dispensed == Decimal("300")


def test_skipped_correction_and_water_rise_are_caveats(engine):
    volume = tank_volume("300", applied=False, water_levels=(Decimal("10"), Decimal("25")))

    result = engine.evaluate_tank(TANK, volume, pumps("300"))

    assert Caveat.TEMPERATURE_CORRECTION_SKIPPED in result.caveats
    assert Caveat.WATER_LEVEL_INCREASE in result.caveats


def test_percentage_against_zero_dispensed_is_zero():
    assert variance_percentage(Decimal("10"), Decimal("0")) == Decimal("0")
    assert variance_percentage(Decimal("-3"), Decimal("300")) == Decimal("-1")


def test_negative_tolerance_is_rejected():
    with pytest.raises(ValueError):
        VarianceEngine(Decimal("-0.1"))


def test_default_tolerance_comes_from_settings(monkeypatch):
    from config import settings
    monkeypatch.setattr(settings, "DEFAULT_TOLERANCE_PERCENTAGE", 1.5)

    assert VarianceEngine().tolerance_percentage == Decimal("1.5")
