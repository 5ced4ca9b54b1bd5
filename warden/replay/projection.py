"""
Projection handlers: fold one update's lifecycle events into its current state.

All handlers are pure and deterministic. A sequence that breaks the
transition table raises InvalidTransitionError; the log is then corrupt or
was written by something other than the state machine.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Optional

from ..core.errors import InvalidTransitionError
from ..core.events import Event, EventKind
from ..core.reducer import Reducer
from ..core.state import INITIAL_STATE, ROLLBACK_SOURCES, State, UpdateState, require_transition


@dataclass(frozen=True)
class Projection:
    """
    Derived state of one update.

    Fields:
        rollback_in_progress: True between update.rollback_started and its outcome
    """
    update_id: int
    name: str
    version: Optional[str]
    state: UpdateState
    meta: Dict[str, Any] = field(default_factory=dict)
    last_event_id: int = 0
    rollback_in_progress: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "update_id": self.update_id,
            "name": self.name,
            "version": self.version,
            "state": self.state.value,
            "meta": dict(self.meta),
            "last_event_id": self.last_event_id,
            "rollback_in_progress": self.rollback_in_progress,
        }


def register_handlers(reducer: Reducer) -> None:
    reducer.register(EventKind.STARTED, on_started)
    reducer.register(EventKind.APPLIED, on_applied)
    reducer.register(EventKind.FAILED, on_failed)
    reducer.register(EventKind.ROLLBACK_STARTED, on_rollback_started)
    reducer.register(EventKind.ROLLED_BACK, on_rolled_back)
    reducer.register(EventKind.RECONCILED, on_reconciled)


def _payload(ev: Event) -> Dict[str, Any]:
    return ev.payload if isinstance(ev.payload, dict) else {}


def _meta(ev: Event, cur: Optional[Projection]) -> Dict[str, Any]:
    meta = _payload(ev).get("meta")
    if meta is None:
        return dict(cur.meta) if cur is not None else {}
    return dict(meta)


def _require(cur: Optional[Projection], ev: Event) -> Projection:
    if cur is None:
        raise InvalidTransitionError(f"event {ev.id} ({ev.kind}) precedes update.started")
    return cur


def _fresh(ev: Event, state: UpdateState) -> Projection:
    payload = _payload(ev)
    return Projection(
        update_id=int(ev.update_id),
        name=payload.get("name") or "",
        version=payload.get("version"),
        state=state,
        meta=_meta(ev, None),
        last_event_id=ev.id,
    )


def on_started(cur: Optional[Projection], ev: Event) -> Projection:
    if cur is not None:
        raise InvalidTransitionError(f"update {cur.update_id} started twice (event {ev.id})")
    return _fresh(ev, INITIAL_STATE)


def on_applied(cur: Optional[Projection], ev: Event) -> Projection:
    cur = _require(cur, ev)
    require_transition(cur.state, UpdateState.APPLIED)
    return replace(cur, state=UpdateState.APPLIED, meta=_meta(ev, cur), last_event_id=ev.id)


def on_failed(cur: Optional[Projection], ev: Event) -> Projection:
    if cur is None and _payload(ev).get("recovered"):
        # Recovery found a pending record that never got its started event
        return _fresh(ev, UpdateState.FAILED)
    cur = _require(cur, ev)
    require_transition(cur.state, UpdateState.FAILED)
    return replace(cur, state=UpdateState.FAILED, meta=_meta(ev, cur), last_event_id=ev.id)


def on_rollback_started(cur: Optional[Projection], ev: Event) -> Projection:
    cur = _require(cur, ev)
    if cur.state not in ROLLBACK_SOURCES:
        raise InvalidTransitionError(f"rollback of update {cur.update_id} from {cur.state.value}")
    if cur.rollback_in_progress:
        raise InvalidTransitionError(f"update {cur.update_id} rollback already started")
    return replace(cur, meta=_meta(ev, cur), last_event_id=ev.id, rollback_in_progress=True)


def on_rolled_back(cur: Optional[Projection], ev: Event) -> Projection:
    cur = _require(cur, ev)
    if not cur.rollback_in_progress:
        raise InvalidTransitionError(f"update {cur.update_id} rolled back without rollback_started")
    require_transition(cur.state, UpdateState.ROLLED_BACK)
    return replace(
        cur,
        state=UpdateState.ROLLED_BACK,
        meta=_meta(ev, cur),
        last_event_id=ev.id,
        rollback_in_progress=False,
    )


def on_reconciled(cur: Optional[Projection], ev: Event) -> Projection:
    # Cache repair marker; the projected state itself does not move
    cur = _require(cur, ev)
    return replace(cur, last_event_id=ev.id)


def default_reducer() -> Reducer:
    reducer = Reducer()
    register_handlers(reducer)
    return reducer


def project(events: Iterable[Event], reducer: Optional[Reducer] = None) -> Optional[Projection]:
    """
    Fold the events of a single update into its projection.

    Events of kinds without a handler (domain-specific kinds) are skipped.

    Returns:
        Projection, or None if no lifecycle event was seen
    """
    reducer = reducer or default_reducer()
    st = State()
    update_id = None
    for ev in events:
        if not reducer.handles(ev.kind):
            continue
        if update_id is None:
            update_id = ev.update_id
        elif ev.update_id != update_id:
            raise ValueError(f"project() got events for updates {update_id} and {ev.update_id}")
        st = reducer.apply(st, ev)
    return st.get_agg(update_id) if update_id is not None else None
