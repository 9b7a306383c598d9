"""Exception taxonomy shared by the ledger, reporting, and CLI layers."""

from __future__ import annotations


class LedgerError(Exception):
    """Root of every error raised deliberately by Station Ledger."""


class BusinessRuleViolation(LedgerError):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced station, pump, tank, or record is unknown."""


class InvalidReading(BusinessRuleViolation):
    """Raised when a closing meter precedes its opening meter."""


class InvalidRestockAmount(BusinessRuleViolation):
    """Raised when a restock amount is not a positive number."""


class InvalidRealStock(BusinessRuleViolation):
    """Raised when a physically measured stock value is unusable."""


class ReconciliationNotAllowed(BusinessRuleViolation):
    """Raised when reconciliation is attempted outside the first of a month."""


class ReadingConflict(BusinessRuleViolation):
    """Raised when an edit would contradict the next day's recorded meters."""


class NoHistoryError(BusinessRuleViolation):
    """Raised when a pump has no record to anchor a stock adjustment."""

    def __init__(self, pump_id: str, message: str) -> None:
        super().__init__(message)
        self.pump_id = pump_id


class NoHistoryToRestock(NoHistoryError):
    """Raised for a pump with neither a same-day nor an earlier record."""

    def __init__(self, pump_id: str) -> None:
        super().__init__(pump_id, f"No previous record found to restock pump '{pump_id}'")


class NoHistoryToReconcile(NoHistoryError):
    """Raised for a pump whose opening stock cannot be anchored."""

    def __init__(self, pump_id: str) -> None:
        super().__init__(pump_id, f"No previous record found to reconcile pump '{pump_id}'")


class StoreFailure(LedgerError):
    """Raised when the record store cannot complete a read or write."""


__all__ = [
    "LedgerError",
    "BusinessRuleViolation",
    "MissingReferenceError",
    "InvalidReading",
    "InvalidRestockAmount",
    "InvalidRealStock",
    "ReconciliationNotAllowed",
    "ReadingConflict",
    "NoHistoryError",
    "NoHistoryToRestock",
    "NoHistoryToReconcile",
    "StoreFailure",
]
