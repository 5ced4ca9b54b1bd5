"""
Read helpers for auditing and reporting tools.
"""

from typing import Any, Dict, List, Optional

from .core.events import Event
from .core.state import UpdateRecord, UpdateState
from .store.event_log import EventLog
from .store.update_store import UpdateStore


def history(event_log: EventLog, update_id: int) -> List[Event]:
    """All events referencing update_id, in append order."""
    return list(event_log.read_by_reference(update_id))


def summarize(store: UpdateStore) -> Dict[str, int]:
    """Record count per state; every state is present, zero when unused."""
    counts = store.count_by_state()
    return {s.value: counts.get(s.value, 0) for s in UpdateState}


def latest_for(store: UpdateStore, name: str, version: Optional[str] = None) -> Optional[UpdateRecord]:
    """Most recent attempt for an identity, or None if it was never applied."""
    attempts = store.find(name, version)
    return attempts[-1] if attempts else None


def describe(store: UpdateStore, event_log: EventLog, update_id: int) -> Dict[str, Any]:
    """Record plus its event history, ready for JSON output."""
    rec = store.get(update_id)
    return {
        "update": rec.to_dict(),
        "events": [ev.to_dict() for ev in history(event_log, update_id)],
    }
