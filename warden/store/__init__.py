"""
Persistence for the update ledger.

This module provides:
- Database: Shared SQLite handle with transactional scopes
- EventLog: Append-only event storage
- UpdateStore: Cached per-update records
"""

from .database import Database
from .event_log import EventLog, EventStream
from .update_store import UpdateStore

__all__ = [
    "Database",
    "EventLog",
    "EventStream",
    "UpdateStore",
]
