"""
Tests for reducer purity and determinism.

Critical: Reducer must be pure (no side effects, deterministic).
"""

from datetime import datetime, timezone

import pytest

from warden.core.canonical import canonical_json_str
from warden.core.errors import InvalidTransitionError
from warden.core.events import Event
from warden.core.reducer import Reducer
from warden.core.state import State

TS = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _ev(event_id, kind, **payload):
    return Event(id=event_id, kind=kind, created_at=TS, payload=payload or None)


def test_reducer_deterministic_output():
    """Same (state, event) must produce same output."""
    r = Reducer()

    def handler(cur, ev):
        cur = cur or {"n": 0}
        return {"n": cur["n"] + ev.payload["inc"]}

    r.register("INC", handler)

    s0 = State()
    e = _ev(1, "INC", update_id=1, inc=2)

    s1 = r.apply(s0, e)
    s2 = r.apply(s0, e)

    assert canonical_json_str(s1.aggregates) == canonical_json_str(s2.aggregates)


def test_reducer_immutability():
    """Reducer must not mutate input state."""
    r = Reducer()
    r.register("SET", lambda cur, ev: {"value": ev.payload["val"]})

    s0 = State()
    original_aggs = s0.aggregates

    s1 = r.apply(s0, _ev(1, "SET", update_id=7, val=42))

    assert s0.aggregates is original_aggs
    assert s0.version == 0
    assert s1.version == 1
    assert s1.get_agg(7) == {"value": 42}


def test_reducer_keys_by_referenced_update():
    r = Reducer()
    r.register("INC", lambda cur, ev: (cur or 0) + 1)

    s = State()
    for i, ref in enumerate([1, 2, 1, 1]):
        s = r.apply(s, _ev(i + 1, "INC", update_id=ref))

    assert s.get_agg(1) == 3
    assert s.get_agg(2) == 1


def test_reducer_unknown_kind_raises():
    r = Reducer()

    with pytest.raises(InvalidTransitionError):
        r.apply(State(), _ev(1, "nope", update_id=1))


def test_reducer_event_without_reference_raises():
    r = Reducer()
    r.register("INC", lambda cur, ev: cur)

    assert not r.handles("other")
    with pytest.raises(InvalidTransitionError):
        r.apply(State(), _ev(1, "INC"))
