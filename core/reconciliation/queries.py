# File: core/reconciliation/queries.py
"""
Read-side accessors over stored reconciliations: by shift, by tank history and
aggregate statistics for dashboard summaries.
"""

import datetime
import logging
from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, model_validator

from core.errors import ReconciliationNotFoundError
from core.models import ReconciliationStatus, Severity, TankReconciliation, WetStockReconciliation
from utils.helpers import decimal_to_float
from .variance import ZERO

logger = logging.getLogger(__name__)

MAX_RANGE_DAYS = 365


class ReconciliationQuery(BaseModel):
    """Filter for reconciliation lists. Dates match on the day a reconciliation was recorded."""
    station_id: Optional[str] = None
    shift_id: Optional[str] = None
    tank_id: Optional[str] = None
    status: Optional[ReconciliationStatus] = None
    severity: Optional[Severity] = None
    start_date: Optional[datetime.date] = None
    end_date: Optional[datetime.date] = None

    @model_validator(mode='after')
    def check_date_range(self):
        if self.start_date and self.end_date:
            if self.start_date > self.end_date:
                raise ValueError("Start date cannot be after end date")
            if (self.end_date - self.start_date).days > MAX_RANGE_DAYS:
                raise ValueError(f"Date range cannot exceed {MAX_RANGE_DAYS} days")
        return self

    def matches(self, record: WetStockReconciliation) -> bool:
        if self.station_id and record.station_id != self.station_id:
            return False
        if self.shift_id and record.shift_id != self.shift_id:
            return False
        if self.tank_id and record.tank(self.tank_id) is None:
            return False
        if self.status and record.status is not self.status:
            return False
        if self.severity and record.severity is not self.severity:
            return False
        if self.start_date or self.end_date:
            if record.recorded_at is None:
                return False
            recorded_on = record.recorded_at.date()
            if self.start_date and recorded_on < self.start_date:
                return False
            if self.end_date and recorded_on > self.end_date:
                return False
        return True


@dataclass(frozen=True)
class ReconciliationStatistics:
    total: int
    by_severity: Dict[str, int]
    by_status: Dict[str, int]
    total_pump_dispensed: Decimal
    total_tank_reduction: Decimal
    total_variance: Decimal
    absolute_variance: Decimal
    unmonitored_tank_count: int
    # Over calculated records (those with a severity), in percent
    average_variance_percentage: Decimal = ZERO
    critical_rate: Decimal = ZERO
    warning_rate: Decimal = ZERO
    compliance_rate: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "by_severity": self.by_severity,
            "by_status": self.by_status,
            "total_pump_dispensed": decimal_to_float(self.total_pump_dispensed),
            "total_tank_reduction": decimal_to_float(self.total_tank_reduction),
            "total_variance": decimal_to_float(self.total_variance),
            "absolute_variance": decimal_to_float(self.absolute_variance),
            "unmonitored_tank_count": self.unmonitored_tank_count,
            "average_variance_percentage": decimal_to_float(self.average_variance_percentage, 4),
            "critical_rate": decimal_to_float(self.critical_rate, 1),
            "warning_rate": decimal_to_float(self.warning_rate, 1),
            "compliance_rate": decimal_to_float(self.compliance_rate, 1),
        }


@dataclass(frozen=True)
class TankSummary:
    tank_id: str
    shift_count: int
    total_pump_dispensed: Decimal
    total_tank_reduction: Decimal
    total_variance: Decimal
    average_variance: Decimal
    critical_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tank_id": self.tank_id,
            "shift_count": self.shift_count,
            "total_pump_dispensed": decimal_to_float(self.total_pump_dispensed),
            "total_tank_reduction": decimal_to_float(self.total_tank_reduction),
            "total_variance": decimal_to_float(self.total_variance),
            "average_variance": decimal_to_float(self.average_variance),
            "critical_count": self.critical_count,
        }


class ReconciliationQueryService:

    def __init__(self, repository):
        self.repository = repository

    def by_id(self, reconciliation_id: str) -> WetStockReconciliation:
        record = self.repository.get(reconciliation_id)
        if record is None:
            raise ReconciliationNotFoundError(f"Reconciliation '{reconciliation_id}' not found.",
                                              details={"reconciliation_id": reconciliation_id})
        return record

    def by_shift(self, shift_id: str) -> Optional[WetStockReconciliation]:
        return self.repository.get_by_shift(shift_id)

    def list(self, query: Optional[ReconciliationQuery] = None) -> List[WetStockReconciliation]:
        return self.repository.list(query or ReconciliationQuery())

    def tank_history(self, tank_id: str,
                     query: Optional[ReconciliationQuery] = None) -> List[Tuple[WetStockReconciliation, TankReconciliation]]:
        """Tank results across shifts, newest first."""
        query = (query or ReconciliationQuery()).model_copy(update={"tank_id": tank_id})
        history = []
        for record in self.repository.list(query):
            tank = record.tank(tank_id)
            if tank is not None:
                history.append((record, tank))
        history.sort(key=lambda item: item[0].recorded_at or datetime.datetime.min.replace(tzinfo=datetime.timezone.utc),
                     reverse=True)
        return history

    def statistics(self, query: Optional[ReconciliationQuery] = None) -> ReconciliationStatistics:
        records = self.list(query)
        severity_counts = Counter(record.severity.value for record in records if record.severity)
        status_counts = Counter(record.status.value for record in records)
        calculated = [record for record in records if record.severity is not None]
        compliant = sum(1 for record in calculated if all(tank.is_within_tolerance for tank in record.tanks))

        def rate(count: int) -> Decimal:
            return Decimal(count) * 100 / len(calculated) if calculated else ZERO

        return ReconciliationStatistics(
            total=len(records),
            by_severity={severity.value: severity_counts.get(severity.value, 0) for severity in Severity},
            by_status={status.value: status_counts.get(status.value, 0) for status in ReconciliationStatus},
            total_pump_dispensed=sum((r.total_pump_dispensed for r in records), ZERO),
            total_tank_reduction=sum((r.total_tank_reduction for r in records), ZERO),
            total_variance=sum((r.total_variance for r in records), ZERO),
            absolute_variance=sum((r.absolute_variance for r in records), ZERO),
            unmonitored_tank_count=sum(r.unmonitored_tank_count for r in records),
            average_variance_percentage=(sum((abs(r.variance_percentage) for r in calculated), ZERO) / len(calculated)
                                         if calculated else ZERO),
            critical_rate=rate(severity_counts.get(Severity.CRITICAL.value, 0)),
            warning_rate=rate(severity_counts.get(Severity.WARNING.value, 0)),
            compliance_rate=rate(compliant),
        )

    def tank_summary(self, tank_id: str, query: Optional[ReconciliationQuery] = None) -> TankSummary:
        tanks = [tank for _, tank in self.tank_history(tank_id, query)]
        total_variance = sum((tank.variance for tank in tanks), ZERO)
        return TankSummary(
            tank_id=tank_id,
            shift_count=len(tanks),
            total_pump_dispensed=sum((tank.total_pump_dispensed for tank in tanks), ZERO),
            total_tank_reduction=sum((tank.adjusted_reduction for tank in tanks), ZERO),
            total_variance=total_variance,
            average_variance=total_variance / len(tanks) if tanks else ZERO,
            critical_count=sum(1 for tank in tanks if tank.severity is Severity.CRITICAL),
        )
