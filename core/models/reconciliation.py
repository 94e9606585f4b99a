# File: core/models/reconciliation.py
import datetime
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from utils.helpers import decimal_to_float
from .reading import MeterSource

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    NORMAL = "NORMAL"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.NORMAL: 0, Severity.WARNING: 1, Severity.CRITICAL: 2}


class ReconciliationStatus(str, Enum):
    PENDING = "PENDING"
    CALCULATED = "CALCULATED"
    UNDER_REVIEW = "UNDER_REVIEW"
    DISCREPANCY = "DISCREPANCY"
    COMPLETED = "COMPLETED"
    RESOLVED = "RESOLVED"


class Caveat(str, Enum):
    # Tank lost volume but no pump sales account for it
    UNMONITORED_REDUCTION = "UNMONITORED_REDUCTION"
    # A connected pump lacks a START/END pair; its dispensed volume is not in the total
    INCOMPLETE_PUMP_READINGS = "INCOMPLETE_PUMP_READINGS"
    TEMPERATURE_CORRECTION_SKIPPED = "TEMPERATURE_CORRECTION_SKIPPED"
    WATER_LEVEL_INCREASE = "WATER_LEVEL_INCREASE"


@dataclass(frozen=True)
class PumpVolume:
    pump_id: str
    opening_meter: Decimal
    closing_meter: Decimal
    dispensed: Decimal
    meter_source: MeterSource

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pump_id": self.pump_id,
            "opening_meter": decimal_to_float(self.opening_meter, 3),
            "closing_meter": decimal_to_float(self.closing_meter, 3),
            "dispensed": decimal_to_float(self.dispensed),
            "meter_source": self.meter_source.value,
        }


@dataclass(frozen=True)
class TankVolume:
    tank_id: str
    opening_volume: Decimal
    closing_volume: Decimal
    raw_reduction: Decimal
    temp_correction_factor: Decimal
    correction_applied: bool
    adjusted_reduction: Decimal
    average_temperature: Optional[Decimal] = None
    opening_water_level: Optional[Decimal] = None
    closing_water_level: Optional[Decimal] = None


@dataclass(frozen=True)
class TankReconciliation:
    tank_id: str
    product_type: Optional[str]
    opening_volume: Decimal
    closing_volume: Decimal
    raw_reduction: Decimal
    temp_correction_factor: Decimal
    correction_applied: bool
    adjusted_reduction: Decimal
    total_pump_dispensed: Decimal
    variance: Decimal
    variance_percentage: Decimal
    tolerance_percentage: Decimal
    is_within_tolerance: bool
    # None means unclassified (see Caveat.UNMONITORED_REDUCTION)
    severity: Optional[Severity]
    pump_volumes: Tuple[PumpVolume, ...] = ()
    excluded_pump_ids: Tuple[str, ...] = ()
    caveats: Tuple[Caveat, ...] = ()
    opening_water_level: Optional[Decimal] = None
    closing_water_level: Optional[Decimal] = None

    @property
    def is_unmonitored(self) -> bool:
        return Caveat.UNMONITORED_REDUCTION in self.caveats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tank_id": self.tank_id,
            "product_type": self.product_type,
            "opening_volume": decimal_to_float(self.opening_volume),
            "closing_volume": decimal_to_float(self.closing_volume),
            "raw_reduction": decimal_to_float(self.raw_reduction),
            "temp_correction_factor": decimal_to_float(self.temp_correction_factor, 5),
            "correction_applied": self.correction_applied,
            "adjusted_reduction": decimal_to_float(self.adjusted_reduction),
            "total_pump_dispensed": decimal_to_float(self.total_pump_dispensed),
            "variance": decimal_to_float(self.variance),
            "variance_percentage": decimal_to_float(self.variance_percentage, 4),
            "tolerance_percentage": decimal_to_float(self.tolerance_percentage, 4),
            "is_within_tolerance": self.is_within_tolerance,
            "severity": self.severity.value if self.severity else None,
            "pump_volumes": [pump.to_dict() for pump in self.pump_volumes],
            "excluded_pump_ids": list(self.excluded_pump_ids),
            "caveats": [caveat.value for caveat in self.caveats],
            "opening_water_level": decimal_to_float(self.opening_water_level),
            "closing_water_level": decimal_to_float(self.closing_water_level),
        }


@dataclass(frozen=True)
class WetStockReconciliation:
    """Shift-level reconciliation. Owns its tank results; only status and resolution fields change."""
    reconciliation_id: str
    shift_id: str
    status: ReconciliationStatus
    station_id: Optional[str] = None
    tanks: Tuple[TankReconciliation, ...] = ()
    total_pump_dispensed: Decimal = Decimal("0")
    total_tank_reduction: Decimal = Decimal("0")
    # Netted: total_tank_reduction - total_pump_dispensed
    total_variance: Decimal = Decimal("0")
    # Sum of |tank variance|; differs from the netted value when tank errors cancel out
    absolute_variance: Decimal = Decimal("0")
    variance_percentage: Decimal = Decimal("0")
    tolerance_percentage: Optional[Decimal] = None
    severity: Optional[Severity] = None
    unmonitored_tank_count: int = 0
    recorded_at: Optional[datetime.datetime] = None
    recorded_by: Optional[str] = None
    resolved_at: Optional[datetime.datetime] = None
    resolved_by: Optional[str] = None
    notes: Tuple[str, ...] = field(default_factory=tuple)

    def tank(self, tank_id: str) -> Optional[TankReconciliation]:
        for tank in self.tanks:
            if tank.tank_id == tank_id:
                return tank
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reconciliation_id": self.reconciliation_id,
            "shift_id": self.shift_id,
            "station_id": self.station_id,
            "status": self.status.value,
            "severity": self.severity.value if self.severity else None,
            "total_pump_dispensed": decimal_to_float(self.total_pump_dispensed),
            "total_tank_reduction": decimal_to_float(self.total_tank_reduction),
            "total_variance": decimal_to_float(self.total_variance),
            "absolute_variance": decimal_to_float(self.absolute_variance),
            "variance_percentage": decimal_to_float(self.variance_percentage, 4),
            "tolerance_percentage": decimal_to_float(self.tolerance_percentage, 4),
            "unmonitored_tank_count": self.unmonitored_tank_count,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
            "recorded_by": self.recorded_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
            "notes": list(self.notes),
            "tanks": [tank.to_dict() for tank in self.tanks],
        }
