# File: core/reconciliation/__init__.py
"""
Wet-stock reconciliation engine.

Pipeline per shift:
- Reading Grouper: pairs START/END readings per (shift, asset)
- Volume Calculator: pump dispensed volumes, tank reductions, temperature correction
- Variance Engine: per-tank variance and severity against a tolerance
- Aggregator: shift-level totals and overall severity
- Lifecycle Controller: PENDING -> CALCULATED -> review/completed -> RESOLVED
"""

from .grouper import group_readings, GroupingResult, ReadingGroup, IncompleteReading, DuplicateReadings
from .volume import (
    TemperatureCorrection,
    PRODUCT_EXPANSION_COEFFICIENTS,
    pump_dispensed,
    tank_raw_reduction,
    tank_volume,
    dip_to_volume,
)
from .variance import VarianceEngine, variance_percentage
from .aggregator import aggregate, overall_severity
from .queries import ReconciliationQuery, ReconciliationQueryService, ReconciliationStatistics, TankSummary
from .repository import (
    ShiftDataSource,
    ReconciliationRepository,
    InMemoryShiftDataSource,
    InMemoryReconciliationRepository,
)
from .lifecycle import ReconciliationController, ShiftValidation, LifecycleEvent, TRANSITIONS, transition

__all__ = [
    # Grouping
    'group_readings',
    'GroupingResult',
    'ReadingGroup',
    'IncompleteReading',
    'DuplicateReadings',
    # Volumes
    'TemperatureCorrection',
    'PRODUCT_EXPANSION_COEFFICIENTS',
    'pump_dispensed',
    'tank_raw_reduction',
    'tank_volume',
    'dip_to_volume',
    # Variance
    'VarianceEngine',
    'variance_percentage',
    # Aggregation
    'aggregate',
    'overall_severity',
    # Queries
    'ReconciliationQuery',
    'ReconciliationQueryService',
    'ReconciliationStatistics',
    'TankSummary',
    # Storage
    'ShiftDataSource',
    'ReconciliationRepository',
    'InMemoryShiftDataSource',
    'InMemoryReconciliationRepository',
    # Lifecycle
    'ReconciliationController',
    'ShiftValidation',
    'LifecycleEvent',
    'TRANSITIONS',
    'transition',
]
