import datetime
from sqlalchemy import (
    Column, String, Boolean, Text, Numeric, Integer, JSON, ForeignKey, TIMESTAMP, UniqueConstraint, func
)
from sqlalchemy.orm import declarative_base, relationship
from typing import Dict, Any

# Base class for all ORM models
Base = declarative_base()


def _iso(value):
    return value.isoformat() if value else None


class Asset(Base):
    __tablename__ = 'assets'
    asset_id = Column(String(50), primary_key=True)
    asset_type = Column(String(20), nullable=False, index=True)  # 'Tank' or 'Pump'
    station_id = Column(String(50), nullable=False, index=True)
    name = Column(String(100))
    product_type = Column(String(50), index=True)
    capacity_litres = Column(Numeric(16, 3))
    connected_tank_id = Column(String(50), ForeignKey('assets.asset_id'), nullable=True, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())


class Shift(Base):
    __tablename__ = 'shifts'
    shift_id = Column(String(50), primary_key=True)
    station_id = Column(String(50), nullable=False, index=True)
    status = Column(String(20), default='OPEN', index=True)  # OPEN / CLOSED
    start_time = Column(TIMESTAMP(timezone=True))
    end_time = Column(TIMESTAMP(timezone=True))
    # Station/company tolerance in force for this shift; NULL falls back to the configured default
    tolerance_percentage = Column(Numeric(8, 4), nullable=True)


class PumpMeterReading(Base):
    __tablename__ = 'pump_meter_readings'
    reading_id = Column(Integer, primary_key=True, autoincrement=True)
    shift_id = Column(String(50), ForeignKey('shifts.shift_id'), nullable=False, index=True)
    pump_id = Column(String(50), ForeignKey('assets.asset_id'), nullable=False, index=True)
    reading_type = Column(String(10), nullable=False)
    electric_meter = Column(Numeric(18, 3))
    manual_meter = Column(Numeric(18, 3))
    recorded_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    recorded_by = Column(String(100))
    verified_by = Column(String(100))


class TankDipReading(Base):
    __tablename__ = 'tank_dip_readings'
    reading_id = Column(Integer, primary_key=True, autoincrement=True)
    shift_id = Column(String(50), ForeignKey('shifts.shift_id'), nullable=False, index=True)
    tank_id = Column(String(50), ForeignKey('assets.asset_id'), nullable=False, index=True)
    reading_type = Column(String(10), nullable=False)
    dip_value = Column(Numeric(12, 3))
    volume = Column(Numeric(16, 3))
    temperature = Column(Numeric(6, 2))
    water_level = Column(Numeric(10, 3))
    recorded_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    recorded_by = Column(String(100))
    verified_by = Column(String(100))


class StrappingData(Base):
    __tablename__ = 'strapping_data'
    id = Column(Integer, primary_key=True, autoincrement=True)
    asset_id = Column(String(50), ForeignKey('assets.asset_id'), nullable=False, index=True)
    level_mm = Column(Numeric(12, 3), nullable=False)
    volume_litres = Column(Numeric(16, 3), nullable=False)


class WetStockReconciliationRecord(Base):
    __tablename__ = 'wet_stock_reconciliations'
    __table_args__ = (UniqueConstraint('shift_id', name='uq_wet_stock_reconciliations_shift'),)

    reconciliation_id = Column(String(36), primary_key=True)
    shift_id = Column(String(50), nullable=False, index=True)
    station_id = Column(String(50), index=True)
    status = Column(String(20), nullable=False, index=True)
    severity = Column(String(20), index=True)
    total_pump_dispensed = Column(Numeric(18, 5))
    total_tank_reduction = Column(Numeric(18, 5))
    total_variance = Column(Numeric(18, 5))
    absolute_variance = Column(Numeric(18, 5))
    variance_percentage = Column(Numeric(14, 6))
    tolerance_percentage = Column(Numeric(8, 4))
    unmonitored_tank_count = Column(Integer, default=0)
    recorded_at = Column(TIMESTAMP(timezone=True))
    recorded_by = Column(String(100))
    resolved_at = Column(TIMESTAMP(timezone=True))
    resolved_by = Column(String(100))
    notes = Column(JSON, default=list)

    tanks = relationship('TankReconciliationRecord', back_populates='reconciliation',
                         cascade='all, delete-orphan', order_by='TankReconciliationRecord.tank_id')


class TankReconciliationRecord(Base):
    __tablename__ = 'tank_reconciliations'
    id = Column(Integer, primary_key=True, autoincrement=True)
    reconciliation_id = Column(String(36), ForeignKey('wet_stock_reconciliations.reconciliation_id', ondelete='CASCADE'),
                               nullable=False, index=True)
    tank_id = Column(String(50), nullable=False, index=True)
    product_type = Column(String(50))
    opening_volume = Column(Numeric(16, 3))
    closing_volume = Column(Numeric(16, 3))
    raw_reduction = Column(Numeric(16, 3))
    temp_correction_factor = Column(Numeric(10, 6))
    correction_applied = Column(Boolean, default=False)
    adjusted_reduction = Column(Numeric(18, 5))
    total_pump_dispensed = Column(Numeric(18, 5))
    variance = Column(Numeric(18, 5))
    variance_percentage = Column(Numeric(14, 6))
    tolerance_percentage = Column(Numeric(8, 4))
    is_within_tolerance = Column(Boolean)
    severity = Column(String(20))
    opening_water_level = Column(Numeric(10, 3))
    closing_water_level = Column(Numeric(10, 3))
    pump_volumes = Column(JSON, default=list)
    excluded_pump_ids = Column(JSON, default=list)
    caveats = Column(JSON, default=list)

    reconciliation = relationship('WetStockReconciliationRecord', back_populates='tanks')


class OperationLog(Base):
    __tablename__ = 'operation_logs'
    log_id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(TIMESTAMP(timezone=True), default=lambda: datetime.datetime.now(datetime.timezone.utc))
    user_name = Column(String(100), nullable=True)
    event_type = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    related_shift_id = Column(String(50), nullable=True)
    details = Column(JSON, nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "log_id": self.log_id, "timestamp": _iso(self.timestamp),
            "user_name": self.user_name, "event_type": self.event_type, "description": self.description,
            "related_shift_id": self.related_shift_id, "details": self.details
        }
