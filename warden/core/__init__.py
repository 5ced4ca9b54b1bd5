"""
Core ledger primitives.

This module provides the foundational types:
- Event: Immutable log entries
- UpdateState / UpdateRecord: Lifecycle states and the cached record
- Reducer: Pure projection functions
- Canonical: Deterministic serialization
- Clock: Append-time timestamp sources
"""

from .events import Event, EventKind, lifecycle_payload
from .state import (
    State,
    UpdateRecord,
    UpdateState,
    TRANSITIONS,
    can_transition,
    require_transition,
)
from .reducer import Reducer
from .canonical import canonicalize, canonical_json_bytes, canonical_json_str
from .clock import ManualClock, SystemClock
from .errors import (
    ApplierError,
    ConfigError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
    WardenError,
)

__all__ = [
    "Event",
    "EventKind",
    "lifecycle_payload",
    "State",
    "UpdateRecord",
    "UpdateState",
    "TRANSITIONS",
    "can_transition",
    "require_transition",
    "Reducer",
    "canonicalize",
    "canonical_json_bytes",
    "canonical_json_str",
    "ManualClock",
    "SystemClock",
    "ApplierError",
    "ConfigError",
    "ConflictError",
    "InvalidTransitionError",
    "NotFoundError",
    "StorageError",
    "WardenError",
]
