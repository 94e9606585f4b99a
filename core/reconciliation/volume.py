# File: core/reconciliation/volume.py
"""
Volume Calculator

Pure functions over complete reading groups:
- pump dispensed volume from cumulative meter readings
- tank raw reduction from opening/closing dip volumes
- linear temperature correction of the reduction to the reference temperature
- dip-to-volume conversion through a tank's strapping table

Negative results are reported, never clamped: a negative dispensed volume
means a meter rollover or replacement and a negative reduction means an
unrecorded delivery or a dip error. Both need a human to look at them.
"""

import logging
from decimal import Decimal
from typing import Dict, Mapping, Optional, Tuple

import numpy as np

from config import settings
from core.errors import MissingMeasurementError, NegativeVolumeError
from core.models import MeterSource, PumpVolume, StrappingTable, TankVolume
from utils.helpers import to_decimal
from .grouper import ReadingGroup

logger = logging.getLogger(__name__)

CORRECTION_FACTOR_PLACES = Decimal("0.00001")
NO_CORRECTION = Decimal("1")

# Linear thermal expansion coefficients (per °C) by product code
PRODUCT_EXPANSION_COEFFICIENTS: Dict[str, Decimal] = {
    "PMS": Decimal("0.00120"),  # Premium Motor Spirit (Gasoline)
    "AGO": Decimal("0.00083"),  # Automotive Gas Oil (Diesel)
    "DPK": Decimal("0.00090"),  # Dual Purpose Kerosene
    "LPG": Decimal("0.00300"),  # Liquefied Petroleum Gas
    "RFO": Decimal("0.00065"),  # Residual Fuel Oil
}

PRODUCT_ALIASES: Dict[str, str] = {
    "PETROL": "PMS",
    "GASOLINE": "PMS",
    "SUPER": "PMS",
    "UNLEADED": "PMS",
    "DIESEL": "AGO",
    "GASOIL": "AGO",
    "KEROSENE": "DPK",
    "PARAFFIN": "DPK",
}


def normalize_product_code(product_type: Optional[str]) -> Optional[str]:
    if not product_type:
        return None
    code = product_type.strip().upper().replace(" ", "")
    return PRODUCT_ALIASES.get(code, code)


def dip_to_volume(dip_value: Decimal, strapping: StrappingTable) -> Decimal:
    """
    Converts a dip level to litres by linear interpolation over the tank's strapping table.
    Levels outside the table are clamped to the first/last entry, as np.interp does.
    """
    if not strapping:
        raise MissingMeasurementError("Strapping table is empty. Cannot convert dip to volume.")
    ordered = sorted((to_decimal(level), to_decimal(volume)) for level, volume in strapping)
    levels = np.array([float(level) for level, _ in ordered])
    volumes = np.array([float(volume) for _, volume in ordered])
    interpolated = np.interp(float(dip_value), levels, volumes)
    return Decimal(str(round(float(interpolated), 2)))


def pump_dispensed(group: ReadingGroup) -> PumpVolume:
    """
    dispensed = end meter - start meter. The first source present on both readings
    is used (electric, then manual); sources are never mixed within a pair.
    """
    start_value = end_value = source = None
    for candidate in MeterSource:
        start_value = group.start.meter_value(candidate)
        end_value = group.end.meter_value(candidate)
        if start_value is not None and end_value is not None:
            source = candidate
            break
    if source is None:
        raise MissingMeasurementError(
            f"Pump {group.asset_id} in shift {group.shift_id} has no comparable meter value on both readings.",
            details={"pump_id": group.asset_id, "shift_id": group.shift_id},
        )

    dispensed = end_value - start_value
    if dispensed < 0:
        raise NegativeVolumeError(
            f"Pump {group.asset_id} in shift {group.shift_id} has a negative dispensed volume "
            f"({end_value} - {start_value} = {dispensed}). Meter rollover or replacement?",
            details={"asset_kind": "PUMP", "asset_id": group.asset_id, "shift_id": group.shift_id,
                     "start": str(start_value), "end": str(end_value), "value": str(dispensed)},
        )
    return PumpVolume(group.asset_id, start_value, end_value, dispensed, source)


def _reading_volume(reading, strapping: Optional[StrappingTable]) -> Decimal:
    if reading.volume is not None:
        return reading.volume
    if reading.dip_value is not None and strapping:
        volume = dip_to_volume(reading.dip_value, strapping)
        logger.debug(f"Tank {reading.tank_id}: dip {reading.dip_value} converted to {volume} L via strapping table.")
        return volume
    raise MissingMeasurementError(
        f"Tank {reading.tank_id} {reading.reading_type.value} reading in shift {reading.shift_id} "
        f"has no volume and no strapping table to convert its dip.",
        details={"tank_id": reading.tank_id, "shift_id": reading.shift_id,
                 "reading_type": reading.reading_type.value},
    )


def tank_raw_reduction(group: ReadingGroup, strapping: Optional[StrappingTable] = None) -> Tuple[Decimal, Decimal, Decimal]:
    """Returns (opening volume, closing volume, raw reduction)."""
    opening = _reading_volume(group.start, strapping)
    closing = _reading_volume(group.end, strapping)
    reduction = opening - closing
    if reduction < 0:
        raise NegativeVolumeError(
            f"Tank {group.asset_id} in shift {group.shift_id} gained volume ({opening} -> {closing}). "
            f"Unrecorded delivery or dip error?",
            details={"asset_kind": "TANK", "asset_id": group.asset_id, "shift_id": group.shift_id,
                     "start": str(opening), "end": str(closing), "value": str(reduction)},
        )
    return opening, closing, reduction


class TemperatureCorrection:
    """
    Linear volume correction to the reference temperature.

    factor = 1 - coefficient × (mean(start temp, end temp) - reference)

    When the product has no coefficient, a temperature is missing or correction is
    disabled, the factor is exactly 1 and `applied` is False, so downstream consumers
    can tell a skipped correction from an exact one.
    """

    def __init__(self,
                 reference_temperature_c: Optional[float] = None,
                 coefficients: Optional[Mapping[str, Decimal]] = None,
                 enabled: Optional[bool] = None):
        if reference_temperature_c is None:
            reference_temperature_c = settings.REFERENCE_TEMPERATURE_CELSIUS
        self.reference_temperature_c = to_decimal(reference_temperature_c)
        source = PRODUCT_EXPANSION_COEFFICIENTS if coefficients is None else coefficients
        self.coefficients: Dict[str, Decimal] = {
            normalize_product_code(code): to_decimal(value) for code, value in source.items()
        }
        self.enabled = settings.TEMPERATURE_CORRECTION_ENABLED if enabled is None else enabled

    def coefficient_for(self, product_type: Optional[str]) -> Optional[Decimal]:
        return self.coefficients.get(normalize_product_code(product_type))

    def factor(self, product_type: Optional[str],
               start_temperature: Optional[Decimal],
               end_temperature: Optional[Decimal]) -> Tuple[Decimal, bool, Optional[Decimal]]:
        """Returns (factor, applied, average temperature)."""
        average = None
        if start_temperature is not None and end_temperature is not None:
            average = (start_temperature + end_temperature) / 2

        coefficient = self.coefficient_for(product_type)
        if not self.enabled or coefficient is None or average is None:
            return NO_CORRECTION, False, average

        factor = Decimal("1") - coefficient * (average - self.reference_temperature_c)
        return factor.quantize(CORRECTION_FACTOR_PLACES), True, average


def tank_volume(group: ReadingGroup,
                correction: TemperatureCorrection,
                product_type: Optional[str] = None,
                strapping: Optional[StrappingTable] = None) -> TankVolume:
    opening, closing, raw = tank_raw_reduction(group, strapping)
    factor, applied, average = correction.factor(product_type, group.start.temperature, group.end.temperature)
    if not applied:
        logger.info(f"Tank {group.asset_id} in shift {group.shift_id}: temperature correction skipped "
                    f"(product={product_type}).")
    return TankVolume(
        tank_id=group.asset_id,
        opening_volume=opening,
        closing_volume=closing,
        raw_reduction=raw,
        temp_correction_factor=factor,
        correction_applied=applied,
        adjusted_reduction=raw * factor,
        average_temperature=average,
        opening_water_level=group.start.water_level,
        closing_water_level=group.end.water_level,
    )
