# File: core/errors.py
"""
Error hierarchy for the wet-stock reconciliation engine.

Every error is recoverable: callers fix the data (or route the record to a
reviewer) and retry. The engine never auto-corrects anomalous input.
"""
from typing import Any, Dict, Optional


class ReconciliationError(Exception):
    """Base class. `details` carries machine-readable context for API responses and logs."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class IncompleteReadingsError(ReconciliationError):
    """A required tank or pump lacks a paired START/END reading for the shift."""


class DuplicateReadingError(ReconciliationError):
    """More than one reading of the same type exists for a (shift, asset) pair."""


class NegativeVolumeError(ReconciliationError):
    """A dispensed volume or tank reduction came out negative (rollover, meter swap, delivery, fault)."""


class MissingMeasurementError(ReconciliationError):
    """A paired reading has no usable primary measurement."""


class DuplicateReconciliationError(ReconciliationError):
    """A reconciliation already exists for the shift."""


class InvalidTransitionError(ReconciliationError):
    """A lifecycle operation was attempted from a state that does not permit it."""


class ReconciliationNotFoundError(ReconciliationError):
    """No reconciliation matches the given identifier."""
