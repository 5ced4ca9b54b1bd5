"""
Replay runner: reconstruct projections from the event log.

Replay is pure: applies the reducer to each event in id order.
"""

from dataclasses import dataclass
from typing import List, Optional

from ..core.reducer import Reducer
from ..core.state import State
from ..store.event_log import EventLog
from ..store.update_store import UpdateStore
from .projection import Projection, default_reducer


@dataclass(frozen=True)
class ReplayResult:
    """
    Result of replay operation.

    Fields:
        state: Projections keyed by update id
        applied: Number of events applied
        skipped: Events without a handler (domain-specific kinds)
    """
    state: State
    applied: int
    skipped: int = 0

    def projection(self, update_id: int) -> Optional[Projection]:
        return self.state.get_agg(update_id)


@dataclass(frozen=True)
class Mismatch:
    """A record whose cached state or meta disagrees with its projection."""
    update_id: int
    record_state: Optional[str]
    projected_state: Optional[str]
    meta_matches: bool

    def to_dict(self):
        return {
            "update_id": self.update_id,
            "record_state": self.record_state,
            "projected_state": self.projected_state,
            "meta_matches": self.meta_matches,
        }


def replay(
    event_log: EventLog,
    reducer: Optional[Reducer] = None,
    update_id: Optional[int] = None,
    to_id: Optional[int] = None,
) -> ReplayResult:
    """
    Replay events to reconstruct projections.

    Args:
        event_log: Event log to read from
        reducer: Reducer with registered handlers (default: lifecycle handlers)
        update_id: Only replay events referencing this update (None = all)
        to_id: Stop at this event id (inclusive, None = all)
    """
    reducer = reducer or default_reducer()
    st = State()
    count = 0
    skipped = 0

    stream = event_log.read_all() if update_id is None else event_log.read_by_reference(update_id)
    for ev in stream:
        if to_id is not None and ev.id > to_id:
            break
        if not reducer.handles(ev.kind) or ev.update_id is None:
            skipped += 1
            continue
        st = reducer.apply(st, ev)
        count += 1

    return ReplayResult(state=st, applied=count, skipped=skipped)


def verify(event_log: EventLog, store: UpdateStore) -> List[Mismatch]:
    """
    Compare every record with the projection of its events.

    Returns:
        Mismatches, empty when the record store is a faithful cache
    """
    result = replay(event_log)
    mismatches = []
    for rec in store.list_all():
        proj = result.projection(rec.id)
        if proj is None:
            mismatches.append(Mismatch(rec.id, rec.state.value, None, False))
            continue
        meta_matches = proj.meta == rec.meta
        if proj.state != rec.state or not meta_matches:
            mismatches.append(Mismatch(rec.id, rec.state.value, proj.state.value, meta_matches))
    return mismatches
