# File: core/reconciliation/variance.py
"""
Variance Engine

Compares a tank's adjusted reduction with the volume its connected pumps
dispensed over the same shift and classifies the discrepancy against a
tolerance percentage t:

    |variance %| <= t        NORMAL
    t < |variance %| <= 2t   WARNING
    |variance %| > 2t        CRITICAL

Severity policy lives here only; renderers read `severity`, never the thresholds.
"""

import logging
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from config import settings
from core.models import Caveat, PumpVolume, Severity, TankAsset, TankReconciliation, TankVolume
from utils.helpers import to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def variance_percentage(variance: Decimal, dispensed: Decimal) -> Decimal:
    """variance / dispensed × 100, defined as 0 when nothing was dispensed."""
    if dispensed == 0:
        return ZERO
    return variance / dispensed * HUNDRED


class VarianceEngine:

    def __init__(self, tolerance_percentage: Optional[Decimal] = None):
        if tolerance_percentage is None:
            tolerance_percentage = settings.DEFAULT_TOLERANCE_PERCENTAGE
        self.tolerance_percentage = to_decimal(tolerance_percentage)
        if self.tolerance_percentage < 0:
            raise ValueError(f"Tolerance percentage must not be negative, got {tolerance_percentage}.")

    def classify(self, percentage: Decimal) -> Severity:
        magnitude = abs(percentage)
        if magnitude <= self.tolerance_percentage:
            return Severity.NORMAL
        if magnitude <= self.tolerance_percentage * 2:
            return Severity.WARNING
        return Severity.CRITICAL

    def is_within_tolerance(self, percentage: Decimal) -> bool:
        return abs(percentage) <= self.tolerance_percentage

    def evaluate_tank(self,
                      tank: TankAsset,
                      volume: TankVolume,
                      pump_volumes: Sequence[PumpVolume],
                      incomplete_pump_ids: Iterable[str] = ()) -> TankReconciliation:
        """
        Args:
            tank: the tank's metadata
            volume: the tank's computed reduction for the shift
            pump_volumes: dispensed volumes of connected pumps with complete readings
            incomplete_pump_ids: connected pumps whose readings are not paired; they are
                left out of the total and listed on the result
        """
        caveats: List[Caveat] = []
        excluded = tuple(sorted(set(incomplete_pump_ids)))
        if excluded:
            caveats.append(Caveat.INCOMPLETE_PUMP_READINGS)
            logger.warning(f"Tank {tank.tank_id}: pumps {list(excluded)} have incomplete readings; "
                           f"their fuel movement is unaccounted.")
        if not volume.correction_applied:
            caveats.append(Caveat.TEMPERATURE_CORRECTION_SKIPPED)
        if (volume.opening_water_level is not None and volume.closing_water_level is not None
                and volume.closing_water_level > volume.opening_water_level):
            caveats.append(Caveat.WATER_LEVEL_INCREASE)

        total_dispensed = sum((pump.dispensed for pump in pump_volumes), ZERO)
        variance = volume.adjusted_reduction - total_dispensed
        percentage = variance_percentage(variance, total_dispensed)

        if total_dispensed == 0 and volume.adjusted_reduction != 0:
            # A percentage against a zero denominator says nothing; leave it unclassified.
            caveats.append(Caveat.UNMONITORED_REDUCTION)
            severity = None
            within_tolerance = False
            logger.warning(f"Tank {tank.tank_id}: {volume.adjusted_reduction} L reduction with no pump sales "
                           f"to account for it.")
        else:
            severity = self.classify(percentage)
            within_tolerance = self.is_within_tolerance(percentage)

        logger.info(f"Tank {tank.tank_id}: reduction={volume.adjusted_reduction} L, dispensed={total_dispensed} L, "
                    f"variance={variance} L ({percentage:.4f}%), severity={severity.value if severity else 'UNCLASSIFIED'}")

        return TankReconciliation(
            tank_id=tank.tank_id,
            product_type=tank.product_type,
            opening_volume=volume.opening_volume,
            closing_volume=volume.closing_volume,
            raw_reduction=volume.raw_reduction,
            temp_correction_factor=volume.temp_correction_factor,
            correction_applied=volume.correction_applied,
            adjusted_reduction=volume.adjusted_reduction,
            total_pump_dispensed=total_dispensed,
            variance=variance,
            variance_percentage=percentage,
            tolerance_percentage=self.tolerance_percentage,
            is_within_tolerance=within_tolerance,
            severity=severity,
            pump_volumes=tuple(pump_volumes),
            excluded_pump_ids=excluded,
            caveats=tuple(caveats),
            opening_water_level=volume.opening_water_level,
            closing_water_level=volume.closing_water_level,
        )
