"""
Exception types for the update ledger.
"""

from typing import Any, Dict, Optional


class WardenError(Exception):
    """Base class for all ledger errors."""
    pass


class ConflictError(WardenError):
    """Raised when an update identity already has an attempt in flight."""
    pass


class InvalidTransitionError(WardenError):
    """Raised when a lifecycle transition is not allowed from the current state."""
    pass


class NotFoundError(WardenError):
    """Raised when an update record does not exist."""
    pass


class StorageError(WardenError):
    """Raised when a write or read against the event log or record store fails."""
    pass


class ConfigError(WardenError, ValueError):
    """Raised when configuration values are missing or invalid."""
    pass


class ApplierError(WardenError):
    """
    Raised by an Applier when performing or undoing an update fails.

    Fields:
        detail: Structured context (exit code, stderr tail, ...) recorded in meta
    """

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.detail: Dict[str, Any] = dict(detail or {})
