"""
Reducer: pure projection functions.

The reducer folds events into per-update projections. It must be:
- Pure (no side effects, no I/O)
- Deterministic (same input -> same output)
"""

from typing import Any, Callable, Dict

from .events import Event
from .state import State
from .errors import InvalidTransitionError

# Handler signature: (current_projection, event) -> new_projection
Handler = Callable[[Any, Event], Any]


class Reducer:
    """
    Registry of event handlers keyed by event kind.

    Usage:
        reducer = Reducer()
        reducer.register("update.started", on_started)
        new_state = reducer.apply(state, event)
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {}

    def register(self, kind: str, handler: Handler) -> None:
        self._handlers[kind] = handler

    def handles(self, kind: str) -> bool:
        return kind in self._handlers

    def apply(self, state: State, event: Event) -> State:
        """
        Apply event to state using the registered handler.

        Raises:
            InvalidTransitionError: If no handler is registered for the kind
                or the event does not reference an update
        """
        if event.kind not in self._handlers:
            raise InvalidTransitionError(f"No handler for event kind: {event.kind}")
        update_id = event.update_id
        if update_id is None:
            raise InvalidTransitionError(f"event {event.id} ({event.kind}) references no update")

        current = state.get_agg(update_id)
        new_projection = self._handlers[event.kind](current, event)
        return state.with_agg(update_id, new_projection)
