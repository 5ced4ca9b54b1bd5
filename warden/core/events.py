"""
Event model for the append-only log.

Events are immutable records of something that happened to an update.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


class EventKind:
    """Event kinds emitted by the state machine and recovery."""

    STARTED = "update.started"
    APPLIED = "update.applied"
    FAILED = "update.failed"
    ROLLBACK_STARTED = "update.rollback_started"
    ROLLED_BACK = "update.rolled_back"
    RECONCILED = "update.reconciled"

    LIFECYCLE = (STARTED, APPLIED, FAILED, ROLLBACK_STARTED, ROLLED_BACK, RECONCILED)


# Payload key holding the referenced update id
REFERENCE_KEY = "update_id"


@dataclass(frozen=True)
class Event:
    """
    Immutable event record.

    Fields:
        id: Monotonic sequence number (assigned by EventLog)
        kind: Event category (e.g., "update.started", or a domain-specific kind)
        payload: Event-specific data, may be None
        created_at: Append timestamp, non-decreasing with id
    """
    id: int
    kind: str
    created_at: datetime
    payload: Optional[Dict[str, Any]] = field(default=None)

    @property
    def update_id(self) -> Optional[int]:
        """Referenced update id, or None if the payload references none."""
        if not isinstance(self.payload, dict):
            return None
        ref = self.payload.get(REFERENCE_KEY)
        return int(ref) if ref is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }


def lifecycle_payload(
    update_id: int,
    name: str,
    version: Optional[str],
    meta: Optional[Dict[str, Any]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """
    Payload for lifecycle events.

    Carries the full meta after the transition so replay reproduces both
    state and meta of the record.
    """
    payload: Dict[str, Any] = {
        REFERENCE_KEY: update_id,
        "name": name,
        "version": version,
        "meta": dict(meta or {}),
    }
    payload.update(extra)
    return payload
