# File: core/reconciliation/repository.py
"""Collaborator interfaces for shift data and reconciliation storage, with in-memory implementations."""

import logging
import threading
from typing import Dict, List, Optional, Protocol, Sequence

from core.errors import DuplicateReconciliationError, ReconciliationNotFoundError
from core.models import ShiftSnapshot, WetStockReconciliation
from .queries import ReconciliationQuery

logger = logging.getLogger(__name__)


class ShiftDataSource(Protocol):
    """Supplies readings and asset connectivity for a shift, already fetched."""

    def load_shift(self, shift_id: str) -> ShiftSnapshot:
        ...

    def list_closed_shift_ids(self) -> Sequence[str]:
        ...


class ReconciliationRepository(Protocol):
    """Stores reconciliations. `add` must reject a second record for the same shift."""

    def get(self, reconciliation_id: str) -> Optional[WetStockReconciliation]:
        ...

    def get_by_shift(self, shift_id: str) -> Optional[WetStockReconciliation]:
        ...

    def add(self, record: WetStockReconciliation) -> WetStockReconciliation:
        ...

    def update(self, record: WetStockReconciliation) -> WetStockReconciliation:
        ...

    def list(self, query: Optional[ReconciliationQuery] = None) -> List[WetStockReconciliation]:
        ...


class InMemoryShiftDataSource:

    def __init__(self, snapshots: Sequence[ShiftSnapshot] = (), closed_shift_ids: Optional[Sequence[str]] = None):
        self._snapshots: Dict[str, ShiftSnapshot] = {snapshot.shift_id: snapshot for snapshot in snapshots}
        self._closed = list(closed_shift_ids) if closed_shift_ids is not None else list(self._snapshots)

    def put(self, snapshot: ShiftSnapshot, closed: bool = True) -> None:
        self._snapshots[snapshot.shift_id] = snapshot
        if closed and snapshot.shift_id not in self._closed:
            self._closed.append(snapshot.shift_id)

    def load_shift(self, shift_id: str) -> ShiftSnapshot:
        try:
            return self._snapshots[shift_id]
        except KeyError:
            raise LookupError(f"Shift '{shift_id}' not found.") from None

    def list_closed_shift_ids(self) -> List[str]:
        return list(self._closed)


class InMemoryReconciliationRepository:

    def __init__(self):
        self._records: Dict[str, WetStockReconciliation] = {}
        self._by_shift: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, reconciliation_id: str) -> Optional[WetStockReconciliation]:
        return self._records.get(reconciliation_id)

    def get_by_shift(self, shift_id: str) -> Optional[WetStockReconciliation]:
        reconciliation_id = self._by_shift.get(shift_id)
        return self._records.get(reconciliation_id) if reconciliation_id else None

    def add(self, record: WetStockReconciliation) -> WetStockReconciliation:
        with self._lock:
            if record.shift_id in self._by_shift:
                raise DuplicateReconciliationError(
                    f"Shift '{record.shift_id}' already has reconciliation '{self._by_shift[record.shift_id]}'.",
                    details={"shift_id": record.shift_id, "reconciliation_id": self._by_shift[record.shift_id]},
                )
            self._records[record.reconciliation_id] = record
            self._by_shift[record.shift_id] = record.reconciliation_id
        return record

    def update(self, record: WetStockReconciliation) -> WetStockReconciliation:
        with self._lock:
            if record.reconciliation_id not in self._records:
                raise ReconciliationNotFoundError(f"Reconciliation '{record.reconciliation_id}' not found.",
                                                  details={"reconciliation_id": record.reconciliation_id})
            self._records[record.reconciliation_id] = record
        return record

    def list(self, query: Optional[ReconciliationQuery] = None) -> List[WetStockReconciliation]:
        query = query or ReconciliationQuery()
        return [record for record in self._records.values() if query.matches(record)]
