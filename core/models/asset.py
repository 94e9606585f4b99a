# File: core/models/asset.py
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .reading import PumpReading, TankReading

logger = logging.getLogger(__name__)

# Strapping table: ascending (dip level, volume litres) pairs
StrappingTable = Sequence[Tuple[Decimal, Decimal]]


@dataclass(frozen=True)
class TankAsset:
    tank_id: str
    product_type: Optional[str] = None
    station_id: Optional[str] = None
    name: Optional[str] = None
    capacity_litres: Optional[Decimal] = None


@dataclass(frozen=True)
class PumpAsset:
    pump_id: str
    tank_id: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class ShiftSnapshot:
    """
    Everything the engine needs for one shift, already fetched by the collaborator
    that owns I/O: asset connectivity, the shift's readings and the tolerance in force.
    """
    shift_id: str
    tanks: Sequence[TankAsset]
    pumps: Sequence[PumpAsset]
    pump_readings: Sequence[PumpReading] = field(default_factory=tuple)
    tank_readings: Sequence[TankReading] = field(default_factory=tuple)
    station_id: Optional[str] = None
    tolerance_percentage: Optional[Decimal] = None
    strapping_tables: Dict[str, StrappingTable] = field(default_factory=dict)

    def pumps_for_tank(self, tank_id: str) -> List[PumpAsset]:
        return [pump for pump in self.pumps if pump.tank_id == tank_id]

    @property
    def readings(self) -> List[Any]:
        return [*self.pump_readings, *self.tank_readings]
