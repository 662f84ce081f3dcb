"""
Exception types raised by the ingestion engine and its stores.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .pipeline import IngestionResult


class UsageLedgerError(Exception):
    """Base class for all usage ledger errors."""


class StoreError(UsageLedgerError):
    """Raised when a storage operation fails.

    Expected upsert conflicts never raise; this covers an unavailable
    database, constraint violations and similar faults.
    """
    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


class IngestionError(UsageLedgerError):
    """Raised after a payload was processed but some data points failed.

    Writes applied for other data points are kept. The full outcome,
    including every failure, is available on ``result``.
    """
    def __init__(self, result: "IngestionResult"):
        failures = result.failures
        first = failures[0] if failures else None
        message = f"{len(failures)} data point operation(s) failed"
        if first is not None:
            message += f"; first: {first.metric_name} [{first.stage}] {first.message}"
        super().__init__(message)
        self.result = result
