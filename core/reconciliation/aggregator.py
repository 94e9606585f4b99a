# File: core/reconciliation/aggregator.py
import logging
import uuid
from decimal import Decimal
from typing import Optional, Sequence

from core.models import ReconciliationStatus, Severity, TankReconciliation, WetStockReconciliation
from utils.helpers import utc_now
from .variance import ZERO, variance_percentage

logger = logging.getLogger(__name__)


def overall_severity(tanks: Sequence[TankReconciliation]) -> Severity:
    """Most severe classified tank. Unclassified (unmonitored) tanks do not raise it."""
    classified = [tank.severity for tank in tanks if tank.severity is not None]
    if not classified:
        return Severity.NORMAL
    return max(classified, key=lambda severity: severity.rank)


def aggregate(shift_id: str,
              tanks: Sequence[TankReconciliation],
              station_id: Optional[str] = None,
              tolerance_percentage: Optional[Decimal] = None,
              recorded_by: Optional[str] = None,
              reconciliation_id: Optional[str] = None) -> WetStockReconciliation:
    """
    Rolls tank results up to a shift record.

    The shift variance is recomputed from the aggregated totals so that it is a
    netted figure; the sum of absolute tank variances is kept alongside it
    because +10 L on one tank and -10 L on another nets to zero while still
    being 20 L of discrepancy. Status stays PENDING; the lifecycle sets it.
    """
    total_dispensed = sum((tank.total_pump_dispensed for tank in tanks), ZERO)
    total_reduction = sum((tank.adjusted_reduction for tank in tanks), ZERO)
    total_variance = total_reduction - total_dispensed
    absolute_variance = sum((abs(tank.variance) for tank in tanks), ZERO)
    unmonitored = sum(1 for tank in tanks if tank.is_unmonitored)

    if tolerance_percentage is None and tanks:
        tolerance_percentage = tanks[0].tolerance_percentage

    record = WetStockReconciliation(
        reconciliation_id=reconciliation_id or str(uuid.uuid4()),
        shift_id=shift_id,
        station_id=station_id,
        status=ReconciliationStatus.PENDING,
        tanks=tuple(tanks),
        total_pump_dispensed=total_dispensed,
        total_tank_reduction=total_reduction,
        total_variance=total_variance,
        absolute_variance=absolute_variance,
        variance_percentage=variance_percentage(total_variance, total_dispensed),
        tolerance_percentage=tolerance_percentage,
        severity=overall_severity(tanks),
        unmonitored_tank_count=unmonitored,
        recorded_at=utc_now(),
        recorded_by=recorded_by,
    )
    logger.info(f"Shift {shift_id}: {len(tanks)} tanks, net variance={total_variance} L, "
                f"absolute variance={absolute_variance} L, severity={record.severity.value}, "
                f"unmonitored tanks={unmonitored}")
    return record
