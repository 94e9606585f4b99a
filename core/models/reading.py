# File: core/models/reading.py
import datetime
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from utils.helpers import decimal_to_float

logger = logging.getLogger(__name__)


class ReadingType(str, Enum):
    START = "START"
    END = "END"

    @property
    def counterpart(self) -> "ReadingType":
        return ReadingType.END if self is ReadingType.START else ReadingType.START


class AssetKind(str, Enum):
    PUMP = "PUMP"
    TANK = "TANK"


class MeterSource(str, Enum):
    ELECTRIC = "ELECTRIC"
    MANUAL = "MANUAL"


@dataclass(frozen=True)
class PumpReading:
    """Cumulative pump meter reading taken at a shift boundary."""
    shift_id: str
    pump_id: str
    reading_type: ReadingType
    recorded_at: datetime.datetime
    electric_meter: Optional[Decimal] = None
    manual_meter: Optional[Decimal] = None
    reading_id: Optional[str] = None
    recorded_by: Optional[str] = None
    verified_by: Optional[str] = None

    asset_kind = AssetKind.PUMP

    @property
    def asset_id(self) -> str:
        return self.pump_id

    @property
    def key(self) -> Tuple[str, AssetKind, str]:
        return (self.shift_id, self.asset_kind, self.pump_id)

    def meter_value(self, source: MeterSource) -> Optional[Decimal]:
        if source is MeterSource.ELECTRIC:
            return self.electric_meter
        return self.manual_meter

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reading_id": self.reading_id,
            "shift_id": self.shift_id,
            "pump_id": self.pump_id,
            "reading_type": self.reading_type.value,
            "electric_meter": decimal_to_float(self.electric_meter, 3),
            "manual_meter": decimal_to_float(self.manual_meter, 3),
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
            "recorded_by": self.recorded_by,
            "verified_by": self.verified_by,
        }


@dataclass(frozen=True)
class TankReading:
    """Tank dip reading. `volume` may be absent when only the dip height was taken."""
    shift_id: str
    tank_id: str
    reading_type: ReadingType
    recorded_at: datetime.datetime
    dip_value: Optional[Decimal] = None
    volume: Optional[Decimal] = None
    temperature: Optional[Decimal] = None
    water_level: Optional[Decimal] = None
    reading_id: Optional[str] = None
    recorded_by: Optional[str] = None
    verified_by: Optional[str] = None

    asset_kind = AssetKind.TANK

    @property
    def asset_id(self) -> str:
        return self.tank_id

    @property
    def key(self) -> Tuple[str, AssetKind, str]:
        return (self.shift_id, self.asset_kind, self.tank_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reading_id": self.reading_id,
            "shift_id": self.shift_id,
            "tank_id": self.tank_id,
            "reading_type": self.reading_type.value,
            "dip_value": decimal_to_float(self.dip_value, 3),
            "volume": decimal_to_float(self.volume),
            "temperature": decimal_to_float(self.temperature),
            "water_level": decimal_to_float(self.water_level),
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
            "recorded_by": self.recorded_by,
            "verified_by": self.verified_by,
        }
