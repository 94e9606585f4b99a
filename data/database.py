import logging
from typing import List, Dict, Any, Optional, Tuple
from contextlib import contextmanager
from decimal import Decimal

from sqlalchemy import create_engine, select, desc
from sqlalchemy.orm import sessionmaker, Session, selectinload
from sqlalchemy.exc import SQLAlchemyError, IntegrityError

from config import settings
from core.errors import DuplicateReconciliationError, ReconciliationNotFoundError
from core.models import (
    MeterSource, PumpAsset, PumpReading, PumpVolume, ReadingType, ReconciliationStatus, Severity,
    ShiftSnapshot, TankAsset, TankReading, TankReconciliation, WetStockReconciliation, Caveat,
)
from core.reconciliation.queries import ReconciliationQuery
from data.db_models import (
    Asset, Shift, PumpMeterReading, TankDipReading, StrappingData,
    WetStockReconciliationRecord, TankReconciliationRecord, OperationLog,
)
from utils.helpers import ensure_utc, to_decimal

logger = logging.getLogger(__name__)

try:
    engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    logger.info("Database engine created successfully and SessionLocal configured.")
except Exception as e:
    logger.critical(f"CRITICAL: Failed to create database engine or SessionLocal: {e}", exc_info=True)
    engine = None
    SessionLocal = None


@contextmanager
def session_scope(session_factory):
    """Provide a transactional scope around a series of operations."""
    db = session_factory()
    try:
        yield db
    except SQLAlchemyError as e:
        logger.error(f"Database Session Error during yield: {e}", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def get_db() -> Optional[Session]:
    if not SessionLocal:
        logger.error("Database SessionLocal is not initialized. Cannot provide DB session.")
        yield None
        return
    with session_scope(SessionLocal) as db:
        yield db


def save_operation_log(db: Session, event_type: str, description: str,
                       user_name: Optional[str] = None,
                       related_shift_id: Optional[str] = None,
                       details: Optional[Dict[str, Any]] = None,
                       commit: bool = True) -> bool:
    if not db: return False
    try:
        log_entry = OperationLog(
            user_name=user_name, event_type=event_type, description=description,
            related_shift_id=related_shift_id, details=details
        )
        db.add(log_entry)
        if commit:
            db.commit()
        return True
    except SQLAlchemyError as e:
        logger.error(f"Error saving operation log event: {e}", exc_info=True)
        db.rollback()
        return False


def get_operation_logs(db: Session, shift_id: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    if not db: return []
    try:
        query = db.query(OperationLog)
        if shift_id:
            query = query.filter(OperationLog.related_shift_id == shift_id)
        logs = query.order_by(OperationLog.timestamp.desc(), OperationLog.log_id.desc()).limit(limit).all()
        return [log.to_dict() for log in logs]
    except SQLAlchemyError as e:
        logger.error(f"Error fetching operation logs: {e}", exc_info=True)
        return []


def get_strapping_data_from_db(db: Session, asset_id: str) -> Optional[List[Tuple[Decimal, Decimal]]]:
    """Strapping table for a tank as ascending (level_mm, volume_litres) pairs, or None if none is loaded."""
    if not db: return None
    try:
        results = db.query(StrappingData).filter(StrappingData.asset_id == asset_id).order_by(StrappingData.level_mm).all()
        if not results: return None
        return [(to_decimal(row.level_mm), to_decimal(row.volume_litres)) for row in results]
    except SQLAlchemyError as e:
        logger.error(f"DB Error getting strapping data for {asset_id}: {e}", exc_info=True)
        return None


# --- Row <-> domain conversion ---

def _pump_reading(row: PumpMeterReading) -> PumpReading:
    return PumpReading(
        shift_id=row.shift_id, pump_id=row.pump_id,
        reading_type=ReadingType(row.reading_type),
        recorded_at=ensure_utc(row.recorded_at),
        electric_meter=to_decimal(row.electric_meter), manual_meter=to_decimal(row.manual_meter),
        reading_id=str(row.reading_id), recorded_by=row.recorded_by, verified_by=row.verified_by,
    )


def _tank_reading(row: TankDipReading) -> TankReading:
    return TankReading(
        shift_id=row.shift_id, tank_id=row.tank_id,
        reading_type=ReadingType(row.reading_type),
        recorded_at=ensure_utc(row.recorded_at),
        dip_value=to_decimal(row.dip_value), volume=to_decimal(row.volume),
        temperature=to_decimal(row.temperature), water_level=to_decimal(row.water_level),
        reading_id=str(row.reading_id), recorded_by=row.recorded_by, verified_by=row.verified_by,
    )


def _pump_volume_to_json(pump: PumpVolume) -> Dict[str, Any]:
    return {
        "pump_id": pump.pump_id,
        "opening_meter": str(pump.opening_meter),
        "closing_meter": str(pump.closing_meter),
        "dispensed": str(pump.dispensed),
        "meter_source": pump.meter_source.value,
    }


def _pump_volume_from_json(data: Dict[str, Any]) -> PumpVolume:
    return PumpVolume(
        pump_id=data["pump_id"],
        opening_meter=to_decimal(data["opening_meter"]),
        closing_meter=to_decimal(data["closing_meter"]),
        dispensed=to_decimal(data["dispensed"]),
        meter_source=MeterSource(data["meter_source"]),
    )


def _tank_to_row(tank: TankReconciliation) -> TankReconciliationRecord:
    return TankReconciliationRecord(
        tank_id=tank.tank_id, product_type=tank.product_type,
        opening_volume=tank.opening_volume, closing_volume=tank.closing_volume,
        raw_reduction=tank.raw_reduction, temp_correction_factor=tank.temp_correction_factor,
        correction_applied=tank.correction_applied, adjusted_reduction=tank.adjusted_reduction,
        total_pump_dispensed=tank.total_pump_dispensed, variance=tank.variance,
        variance_percentage=tank.variance_percentage, tolerance_percentage=tank.tolerance_percentage,
        is_within_tolerance=tank.is_within_tolerance,
        severity=tank.severity.value if tank.severity else None,
        opening_water_level=tank.opening_water_level, closing_water_level=tank.closing_water_level,
        pump_volumes=[_pump_volume_to_json(pump) for pump in tank.pump_volumes],
        excluded_pump_ids=list(tank.excluded_pump_ids),
        caveats=[caveat.value for caveat in tank.caveats],
    )


def _tank_from_row(row: TankReconciliationRecord) -> TankReconciliation:
    return TankReconciliation(
        tank_id=row.tank_id, product_type=row.product_type,
        opening_volume=to_decimal(row.opening_volume), closing_volume=to_decimal(row.closing_volume),
        raw_reduction=to_decimal(row.raw_reduction), temp_correction_factor=to_decimal(row.temp_correction_factor),
        correction_applied=bool(row.correction_applied), adjusted_reduction=to_decimal(row.adjusted_reduction),
        total_pump_dispensed=to_decimal(row.total_pump_dispensed), variance=to_decimal(row.variance),
        variance_percentage=to_decimal(row.variance_percentage),
        tolerance_percentage=to_decimal(row.tolerance_percentage),
        is_within_tolerance=bool(row.is_within_tolerance),
        severity=Severity(row.severity) if row.severity else None,
        pump_volumes=tuple(_pump_volume_from_json(item) for item in row.pump_volumes or []),
        excluded_pump_ids=tuple(row.excluded_pump_ids or []),
        caveats=tuple(Caveat(value) for value in row.caveats or []),
        opening_water_level=to_decimal(row.opening_water_level),
        closing_water_level=to_decimal(row.closing_water_level),
    )


def _apply_to_row(row: WetStockReconciliationRecord, record: WetStockReconciliation) -> None:
    row.shift_id = record.shift_id
    row.station_id = record.station_id
    row.status = record.status.value
    row.severity = record.severity.value if record.severity else None
    row.total_pump_dispensed = record.total_pump_dispensed
    row.total_tank_reduction = record.total_tank_reduction
    row.total_variance = record.total_variance
    row.absolute_variance = record.absolute_variance
    row.variance_percentage = record.variance_percentage
    row.tolerance_percentage = record.tolerance_percentage
    row.unmonitored_tank_count = record.unmonitored_tank_count
    row.recorded_at = record.recorded_at
    row.recorded_by = record.recorded_by
    row.resolved_at = record.resolved_at
    row.resolved_by = record.resolved_by
    row.notes = list(record.notes)
    row.tanks = [_tank_to_row(tank) for tank in record.tanks]


def _record_from_row(row: WetStockReconciliationRecord) -> WetStockReconciliation:
    return WetStockReconciliation(
        reconciliation_id=row.reconciliation_id,
        shift_id=row.shift_id,
        status=ReconciliationStatus(row.status),
        station_id=row.station_id,
        tanks=tuple(_tank_from_row(tank) for tank in row.tanks),
        total_pump_dispensed=to_decimal(row.total_pump_dispensed) or Decimal("0"),
        total_tank_reduction=to_decimal(row.total_tank_reduction) or Decimal("0"),
        total_variance=to_decimal(row.total_variance) or Decimal("0"),
        absolute_variance=to_decimal(row.absolute_variance) or Decimal("0"),
        variance_percentage=to_decimal(row.variance_percentage) or Decimal("0"),
        tolerance_percentage=to_decimal(row.tolerance_percentage),
        severity=Severity(row.severity) if row.severity else None,
        unmonitored_tank_count=row.unmonitored_tank_count or 0,
        recorded_at=ensure_utc(row.recorded_at),
        recorded_by=row.recorded_by,
        resolved_at=ensure_utc(row.resolved_at),
        resolved_by=row.resolved_by,
        notes=tuple(row.notes or []),
    )


# --- Collaborators for the reconciliation controller ---

class SqlShiftDataSource:
    """Loads a shift's assets, readings and strapping tables from the database."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def load_shift(self, shift_id: str) -> ShiftSnapshot:
        with session_scope(self.session_factory) as db:
            shift = db.get(Shift, shift_id)
            if shift is None:
                raise LookupError(f"Shift '{shift_id}' not found.")

            assets = db.execute(
                select(Asset).where(Asset.station_id == shift.station_id, Asset.is_active.is_(True))
                .order_by(Asset.asset_id)
            ).scalars().all()
            tanks = [TankAsset(tank_id=a.asset_id, product_type=a.product_type, station_id=a.station_id,
                               name=a.name, capacity_litres=to_decimal(a.capacity_litres))
                     for a in assets if a.asset_type == 'Tank']
            pumps = [PumpAsset(pump_id=a.asset_id, tank_id=a.connected_tank_id, name=a.name)
                     for a in assets if a.asset_type == 'Pump']

            pump_rows = db.execute(select(PumpMeterReading).where(PumpMeterReading.shift_id == shift_id)
                                   .order_by(PumpMeterReading.reading_id)).scalars().all()
            tank_rows = db.execute(select(TankDipReading).where(TankDipReading.shift_id == shift_id)
                                   .order_by(TankDipReading.reading_id)).scalars().all()

            strapping = {}
            for tank in tanks:
                table = get_strapping_data_from_db(db, tank.tank_id)
                if table:
                    strapping[tank.tank_id] = table

            logger.debug(f"Loaded shift {shift_id}: {len(tanks)} tanks, {len(pumps)} pumps, "
                         f"{len(pump_rows)} pump readings, {len(tank_rows)} tank readings.")
            return ShiftSnapshot(
                shift_id=shift_id,
                station_id=shift.station_id,
                tanks=tuple(tanks),
                pumps=tuple(pumps),
                pump_readings=tuple(_pump_reading(row) for row in pump_rows),
                tank_readings=tuple(_tank_reading(row) for row in tank_rows),
                tolerance_percentage=to_decimal(shift.tolerance_percentage),
                strapping_tables=strapping,
            )

    def list_closed_shift_ids(self) -> List[str]:
        with session_scope(self.session_factory) as db:
            rows = db.execute(select(Shift.shift_id).where(Shift.status == 'CLOSED')
                              .order_by(Shift.end_time, Shift.shift_id)).scalars().all()
            return list(rows)


class SqlReconciliationRepository:
    """Reconciliation storage. The unique constraint on shift_id rejects a second record per shift."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def _load(self, db: Session, **criteria) -> Optional[WetStockReconciliationRecord]:
        query = select(WetStockReconciliationRecord).options(selectinload(WetStockReconciliationRecord.tanks))
        for column, value in criteria.items():
            query = query.where(getattr(WetStockReconciliationRecord, column) == value)
        return db.execute(query).scalar_one_or_none()

    def get(self, reconciliation_id: str) -> Optional[WetStockReconciliation]:
        with session_scope(self.session_factory) as db:
            row = self._load(db, reconciliation_id=reconciliation_id)
            return _record_from_row(row) if row else None

    def get_by_shift(self, shift_id: str) -> Optional[WetStockReconciliation]:
        with session_scope(self.session_factory) as db:
            row = self._load(db, shift_id=shift_id)
            return _record_from_row(row) if row else None

    def add(self, record: WetStockReconciliation) -> WetStockReconciliation:
        with session_scope(self.session_factory) as db:
            row = WetStockReconciliationRecord(reconciliation_id=record.reconciliation_id)
            _apply_to_row(row, record)
            db.add(row)
            save_operation_log(db, "RECONCILIATION_CREATED",
                               f"Reconciliation {record.reconciliation_id} stored with status {record.status.value}.",
                               user_name=record.recorded_by, related_shift_id=record.shift_id,
                               details={"reconciliation_id": record.reconciliation_id, "status": record.status.value},
                               commit=False)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                logger.warning(f"Rejected second reconciliation for shift {record.shift_id}: {e.orig}")
                raise DuplicateReconciliationError(
                    f"Shift '{record.shift_id}' already has a reconciliation.",
                    details={"shift_id": record.shift_id},
                ) from e
        return record

    def update(self, record: WetStockReconciliation) -> WetStockReconciliation:
        with session_scope(self.session_factory) as db:
            row = self._load(db, reconciliation_id=record.reconciliation_id)
            if row is None:
                raise ReconciliationNotFoundError(f"Reconciliation '{record.reconciliation_id}' not found.",
                                                  details={"reconciliation_id": record.reconciliation_id})
            previous_status = row.status
            _apply_to_row(row, record)
            if previous_status != record.status.value:
                save_operation_log(db, "RECONCILIATION_STATUS_CHANGED",
                                   f"Reconciliation {record.reconciliation_id}: {previous_status} -> {record.status.value}",
                                   user_name=record.resolved_by or record.recorded_by,
                                   related_shift_id=record.shift_id,
                                   details={"reconciliation_id": record.reconciliation_id,
                                            "from": previous_status, "to": record.status.value},
                                   commit=False)
            db.commit()
        return record

    def list(self, query: Optional[ReconciliationQuery] = None) -> List[WetStockReconciliation]:
        query = query or ReconciliationQuery()
        with session_scope(self.session_factory) as db:
            statement = select(WetStockReconciliationRecord).options(selectinload(WetStockReconciliationRecord.tanks))
            if query.station_id:
                statement = statement.where(WetStockReconciliationRecord.station_id == query.station_id)
            if query.shift_id:
                statement = statement.where(WetStockReconciliationRecord.shift_id == query.shift_id)
            if query.status:
                statement = statement.where(WetStockReconciliationRecord.status == query.status.value)
            if query.severity:
                statement = statement.where(WetStockReconciliationRecord.severity == query.severity.value)
            if query.tank_id:
                statement = statement.where(WetStockReconciliationRecord.tanks.any(
                    TankReconciliationRecord.tank_id == query.tank_id))
            rows = db.execute(statement.order_by(desc(WetStockReconciliationRecord.recorded_at))).scalars().all()
            # Date bounds compare on the UTC day, which is simpler to apply after loading
            return [record for record in map(_record_from_row, rows) if query.matches(record)]

