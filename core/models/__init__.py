# File: core/models/__init__.py
"""Domain types for wet-stock reconciliation: readings, assets and reconciliation records."""

from .reading import ReadingType, AssetKind, MeterSource, PumpReading, TankReading
from .asset import TankAsset, PumpAsset, ShiftSnapshot, StrappingTable
from .reconciliation import (
    Severity,
    ReconciliationStatus,
    Caveat,
    PumpVolume,
    TankVolume,
    TankReconciliation,
    WetStockReconciliation,
)

__all__ = [
    # Readings
    "ReadingType",
    "AssetKind",
    "MeterSource",
    "PumpReading",
    "TankReading",
    # Assets
    "TankAsset",
    "PumpAsset",
    "ShiftSnapshot",
    "StrappingTable",
    # Reconciliation
    "Severity",
    "ReconciliationStatus",
    "Caveat",
    "PumpVolume",
    "TankVolume",
    "TankReconciliation",
    "WetStockReconciliation",
]
