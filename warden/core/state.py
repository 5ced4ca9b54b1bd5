"""
Update lifecycle states, the transition table and the record model.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from .errors import InvalidTransitionError


class UpdateState(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    def __str__(self) -> str:
        return self.value


# Legal forward edges. Anything not listed here is an illegal transition.
TRANSITIONS: Mapping[UpdateState, FrozenSet[UpdateState]] = {
    UpdateState.PENDING: frozenset({UpdateState.APPLIED, UpdateState.FAILED}),
    UpdateState.APPLIED: frozenset({UpdateState.ROLLED_BACK}),
    UpdateState.FAILED: frozenset({UpdateState.ROLLED_BACK}),
    UpdateState.ROLLED_BACK: frozenset(),
}

INITIAL_STATE = UpdateState.PENDING

# States a record may be rolled back from
ROLLBACK_SOURCES: FrozenSet[UpdateState] = frozenset(
    s for s, targets in TRANSITIONS.items() if UpdateState.ROLLED_BACK in targets
)


def can_transition(current: UpdateState, target: UpdateState) -> bool:
    return target in TRANSITIONS[current]


def require_transition(current: UpdateState, target: UpdateState) -> None:
    """
    Check an edge against the transition table.

    Raises:
        InvalidTransitionError: If current -> target is not a legal edge
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(f"illegal transition: {current.value} -> {target.value}")


@dataclass(frozen=True)
class UpdateRecord:
    """
    Cached projection of one update attempt.

    Fields:
        id: Record identifier (assigned by UpdateStore)
        name: Logical identity of the update
        version: Optional version discriminator for the same name
        state: Current lifecycle state
        meta: Structured metadata (attempt, error detail, rollback outcome)
        created_at: Creation timestamp
    """
    id: int
    name: str
    version: Optional[str]
    state: UpdateState
    created_at: datetime
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> str:
        return f"{self.name}@{self.version}" if self.version is not None else self.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "state": self.state.value,
            "meta": dict(self.meta),
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class State:
    """
    Immutable replay state.

    Fields:
        version: Monotonic version number (increments with each applied event)
        aggregates: Dict of update_id -> projection

    Use with_agg() to create a new state with an updated projection.
    """
    version: int = 0
    aggregates: Dict[int, Any] = field(default_factory=dict)

    def get_agg(self, update_id: int) -> Any:
        """Projection for update_id, or None if no event referenced it yet."""
        return self.aggregates.get(update_id)

    def with_agg(self, update_id: int, agg_state: Any) -> "State":
        new_aggs = dict(self.aggregates)
        new_aggs[update_id] = agg_state
        return State(version=self.version + 1, aggregates=new_aggs)
