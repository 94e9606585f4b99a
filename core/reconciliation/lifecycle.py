# File: core/reconciliation/lifecycle.py
"""
Reconciliation Lifecycle Controller

    PENDING --calculate--> CALCULATED --route--> COMPLETED     (NORMAL)
                                              -> UNDER_REVIEW  (WARNING)
                                              -> DISCREPANCY   (CRITICAL)
    CALCULATED | UNDER_REVIEW | DISCREPANCY | COMPLETED --resolve--> RESOLVED

`TRANSITIONS` is the only place the allowed moves are defined.
"""

import logging
import threading
import uuid
import weakref
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from core.errors import (
    DuplicateReconciliationError,
    IncompleteReadingsError,
    InvalidTransitionError,
    ReconciliationError,
    ReconciliationNotFoundError,
)
from core.models import (
    AssetKind,
    ReadingType,
    ReconciliationStatus,
    Severity,
    ShiftSnapshot,
    TankReconciliation,
    WetStockReconciliation,
)
from utils.helpers import utc_now
from .aggregator import aggregate
from .grouper import GroupingResult, group_readings
from .repository import ReconciliationRepository, ShiftDataSource
from .variance import VarianceEngine
from .volume import TemperatureCorrection, pump_dispensed, tank_volume

logger = logging.getLogger(__name__)


class LifecycleEvent(str, Enum):
    CALCULATE = "CALCULATE"
    ROUTE_NORMAL = "ROUTE_NORMAL"
    ROUTE_WARNING = "ROUTE_WARNING"
    ROUTE_CRITICAL = "ROUTE_CRITICAL"
    RESOLVE = "RESOLVE"


S = ReconciliationStatus
E = LifecycleEvent

TRANSITIONS: Dict[ReconciliationStatus, Dict[LifecycleEvent, ReconciliationStatus]] = {
    S.PENDING: {E.CALCULATE: S.CALCULATED},
    S.CALCULATED: {
        E.ROUTE_NORMAL: S.COMPLETED,
        E.ROUTE_WARNING: S.UNDER_REVIEW,
        E.ROUTE_CRITICAL: S.DISCREPANCY,
        E.RESOLVE: S.RESOLVED,
    },
    S.UNDER_REVIEW: {E.RESOLVE: S.RESOLVED},
    S.DISCREPANCY: {E.RESOLVE: S.RESOLVED},
    S.COMPLETED: {E.RESOLVE: S.RESOLVED},
    S.RESOLVED: {},
}

ROUTING_EVENTS = {
    Severity.NORMAL: E.ROUTE_NORMAL,
    Severity.WARNING: E.ROUTE_WARNING,
    Severity.CRITICAL: E.ROUTE_CRITICAL,
}


def transition(status: ReconciliationStatus, event: LifecycleEvent) -> ReconciliationStatus:
    allowed = TRANSITIONS.get(status, {})
    if event not in allowed:
        raise InvalidTransitionError(
            f"Cannot {event.value.lower().replace('_', ' ')} a reconciliation in status {status.value}.",
            details={"status": status.value, "event": event.value,
                     "allowed": [allowed_event.value for allowed_event in allowed]},
        )
    return allowed[event]


def _missing_pairs(grouping: GroupingResult, snapshot: ShiftSnapshot) -> List[dict]:
    """Required assets without a complete pair, with the reading types they lack."""
    complete_tanks = grouping.complete_for(AssetKind.TANK)
    complete_pumps = grouping.complete_for(AssetKind.PUMP)
    incomplete = {
        AssetKind.TANK: grouping.incomplete_for(AssetKind.TANK),
        AssetKind.PUMP: grouping.incomplete_for(AssetKind.PUMP),
    }

    def describe(kind: AssetKind, asset_id: str) -> dict:
        lone = incomplete[kind].get(asset_id, [])
        missing_types = sorted({item.missing.value for item in lone}) or [rtype.value for rtype in ReadingType]
        return {"asset_kind": kind.value, "asset_id": asset_id, "missing": missing_types}

    missing = []
    for tank in snapshot.tanks:
        if tank.tank_id not in complete_tanks:
            missing.append(describe(AssetKind.TANK, tank.tank_id))
        for pump in snapshot.pumps_for_tank(tank.tank_id):
            if pump.pump_id not in complete_pumps:
                missing.append(describe(AssetKind.PUMP, pump.pump_id))
    return missing


@dataclass(frozen=True)
class ShiftValidation:
    """Outcome of a dry run over a shift's readings. Nothing is stored."""
    shift_id: str
    anomalies: List[dict] = field(default_factory=list)
    missing: List[dict] = field(default_factory=list)
    errors: List[dict] = field(default_factory=list)
    preview: Optional[WetStockReconciliation] = None
    existing_status: Optional[ReconciliationStatus] = None

    @property
    def is_valid(self) -> bool:
        return not (self.anomalies or self.missing or self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shift_id": self.shift_id,
            "is_valid": self.is_valid,
            "anomalies": self.anomalies,
            "missing": self.missing,
            "errors": self.errors,
            "preview": self.preview.to_dict() if self.preview else None,
            "existing_status": self.existing_status.value if self.existing_status else None,
        }


class _ShiftLock:
    """threading.Lock wrapper that can live in a WeakValueDictionary."""

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info):
        self._lock.release()


class ReconciliationController:
    """
    Drives shift reconciliations through their lifecycle.

    `calculate` is serialized per shift; different shifts run independently.
    The repository's uniqueness on shift_id backs the lock up across processes.
    """

    def __init__(self,
                 data_source: ShiftDataSource,
                 repository: ReconciliationRepository,
                 variance_engine: Optional[VarianceEngine] = None,
                 correction: Optional[TemperatureCorrection] = None,
                 auto_route: bool = True):
        self.data_source = data_source
        self.repository = repository
        self.variance_engine = variance_engine or VarianceEngine()
        self.correction = correction or TemperatureCorrection()
        self.auto_route = auto_route
        # Entries disappear once no caller holds or waits on the shift lock
        self._locks: "weakref.WeakValueDictionary[str, _ShiftLock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    @contextmanager
    def _shift_lock(self, shift_id: str):
        with self._locks_guard:
            lock = self._locks.get(shift_id)
            if lock is None:
                lock = self._locks[shift_id] = _ShiftLock()
        with lock:
            yield

    def compute(self, snapshot: ShiftSnapshot, recorded_by: Optional[str] = None,
                reconciliation_id: Optional[str] = None) -> WetStockReconciliation:
        """Runs the pure pipeline for one shift. Nothing is stored; the result is PENDING."""
        grouping = group_readings(snapshot.readings)
        grouping.raise_for_anomalies()

        missing = _missing_pairs(grouping, snapshot)
        if missing:
            names = ", ".join(f"{item['asset_kind']} {item['asset_id']}" for item in missing)
            raise IncompleteReadingsError(
                f"Shift {snapshot.shift_id} has incomplete readings for: {names}",
                details={"shift_id": snapshot.shift_id, "missing": missing},
            )

        engine = self.variance_engine
        if snapshot.tolerance_percentage is not None:
            engine = VarianceEngine(snapshot.tolerance_percentage)

        known_tanks = {tank.tank_id for tank in snapshot.tanks}
        for tank_id in grouping.complete_for(AssetKind.TANK):
            if tank_id not in known_tanks:
                logger.warning(f"Shift {snapshot.shift_id}: readings for unknown tank {tank_id} ignored.")

        pump_groups = grouping.complete_for(AssetKind.PUMP)
        tank_groups = grouping.complete_for(AssetKind.TANK)
        tank_results: List[TankReconciliation] = []
        for tank in snapshot.tanks:
            volume = tank_volume(tank_groups[tank.tank_id], self.correction, tank.product_type,
                                 snapshot.strapping_tables.get(tank.tank_id))
            pump_volumes = [pump_dispensed(pump_groups[pump.pump_id])
                            for pump in snapshot.pumps_for_tank(tank.tank_id)]
            tank_results.append(engine.evaluate_tank(tank, volume, pump_volumes))

        return aggregate(snapshot.shift_id, tank_results,
                         station_id=snapshot.station_id,
                         tolerance_percentage=engine.tolerance_percentage,
                         recorded_by=recorded_by,
                         reconciliation_id=reconciliation_id)

    def open(self, shift_id: str, station_id: Optional[str] = None) -> WetStockReconciliation:
        """Registers a PENDING reconciliation for a shift that has not been calculated yet."""
        placeholder = WetStockReconciliation(
            reconciliation_id=str(uuid.uuid4()),
            shift_id=shift_id,
            station_id=station_id,
            status=ReconciliationStatus.PENDING,
        )
        with self._shift_lock(shift_id):
            record = self.repository.add(placeholder)
        logger.info(f"Opened PENDING reconciliation {record.reconciliation_id} for shift {shift_id}.")
        return record

    def validate(self, shift_id: str) -> ShiftValidation:
        """
        Checks a shift's readings without storing anything: duplicate readings,
        missing START/END pairs, and the volume errors a calculation would hit.
        When the data is clean the result carries a preview of the reconciliation.
        """
        snapshot = self.data_source.load_shift(shift_id)
        existing = self.repository.get_by_shift(shift_id)
        grouping = group_readings(snapshot.readings)

        duplicated = {(anomaly.asset_kind.value, anomaly.asset_id) for anomaly in grouping.anomalies}
        missing = [item for item in _missing_pairs(grouping, snapshot)
                   if (item["asset_kind"], item["asset_id"]) not in duplicated]

        errors, preview = [], None
        if not grouping.anomalies and not missing:
            try:
                preview = self.compute(snapshot)
            except ReconciliationError as e:
                errors.append(e.to_dict())

        result = ShiftValidation(
            shift_id=shift_id,
            anomalies=[anomaly.to_dict() for anomaly in grouping.anomalies],
            missing=missing,
            errors=errors,
            preview=preview,
            existing_status=existing.status if existing else None,
        )
        logger.info(f"Validated shift {shift_id}: valid={result.is_valid}, anomalies={len(result.anomalies)}, "
                    f"missing={len(result.missing)}, errors={len(result.errors)}")
        return result

    def calculate(self, shift_id: str, recorded_by: Optional[str] = None) -> WetStockReconciliation:
        with self._shift_lock(shift_id):
            existing = self.repository.get_by_shift(shift_id)
            status = existing.status if existing else ReconciliationStatus.PENDING
            if existing and status is not ReconciliationStatus.PENDING:
                raise DuplicateReconciliationError(
                    f"Shift {shift_id} already has reconciliation {existing.reconciliation_id} "
                    f"in status {status.value}.",
                    details={"shift_id": shift_id, "reconciliation_id": existing.reconciliation_id,
                             "status": status.value},
                )

            snapshot = self.data_source.load_shift(shift_id)
            record = self.compute(snapshot, recorded_by=recorded_by,
                                  reconciliation_id=existing.reconciliation_id if existing else None)

            status = transition(status, LifecycleEvent.CALCULATE)
            if self.auto_route:
                status = transition(status, ROUTING_EVENTS[record.severity])
            record = replace(record, status=status)

            if existing:
                record = self.repository.update(record)
            else:
                record = self.repository.add(record)

        logger.info(f"Reconciliation {record.reconciliation_id} for shift {shift_id} calculated: "
                    f"severity={record.severity.value}, status={record.status.value}")
        if record.status is ReconciliationStatus.COMPLETED and record.unmonitored_tank_count:
            logger.warning(f"Reconciliation {record.reconciliation_id} for shift {shift_id} completed with "
                           f"{record.unmonitored_tank_count} unmonitored tank reduction(s); "
                           f"stock left those tanks with no pump sales recorded.")
        return record

    def resolve(self, reconciliation_id: str, note: Optional[str] = None,
                resolved_by: Optional[str] = None) -> WetStockReconciliation:
        record = self.repository.get(reconciliation_id)
        if record is None:
            raise ReconciliationNotFoundError(f"Reconciliation '{reconciliation_id}' not found.",
                                              details={"reconciliation_id": reconciliation_id})

        with self._shift_lock(record.shift_id):
            record = self.repository.get(reconciliation_id)
            status = transition(record.status, LifecycleEvent.RESOLVE)
            notes = record.notes + (note,) if note else record.notes
            record = self.repository.update(replace(
                record, status=status, resolved_at=utc_now(), resolved_by=resolved_by, notes=notes,
            ))

        logger.info(f"Reconciliation {reconciliation_id} resolved by {resolved_by or 'unknown'}.")
        return record

    # Operation names used by the rest of the application
    calculate_reconciliation = calculate
    resolve_reconciliation = resolve
