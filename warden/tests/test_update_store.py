"""
Tests for the update record store.

Critical: at most one pending record per (name, version), and set_state
compare-and-swap never overwrites a state it did not expect.
"""

import pytest

from warden.core.errors import ConflictError, InvalidTransitionError, NotFoundError
from warden.core.state import UpdateState


def test_create_starts_pending(ledger):
    rec = ledger.store.create("agent", "2.3", meta={"attempt": 1})

    assert rec.state == UpdateState.PENDING
    assert rec.name == "agent"
    assert rec.version == "2.3"
    assert rec.meta == {"attempt": 1}
    assert ledger.store.get(rec.id) == rec


def test_duplicate_pending_conflicts(ledger):
    ledger.store.create("pkg", "1.0")

    with pytest.raises(ConflictError):
        ledger.store.create("pkg", "1.0")

    assert ledger.store.count_attempts("pkg", "1.0") == 1


def test_unversioned_duplicates_conflict(ledger):
    ledger.store.create("pkg")

    with pytest.raises(ConflictError):
        ledger.store.create("pkg", None)


def test_other_versions_do_not_conflict(ledger):
    a = ledger.store.create("pkg", "1.0")
    b = ledger.store.create("pkg", "1.1")
    c = ledger.store.create("pkg")

    assert len({a.id, b.id, c.id}) == 3


def test_create_allowed_after_previous_attempt_resolves(ledger):
    first = ledger.store.create("pkg", "1.0")
    ledger.store.set_state(first.id, UpdateState.FAILED, {"error": "x"})

    second = ledger.store.create("pkg", "1.0")

    assert second.id != first.id
    assert [r.id for r in ledger.store.find("pkg", "1.0")] == [first.id, second.id]


def test_empty_name_rejected(ledger):
    with pytest.raises(ValueError):
        ledger.store.create("")


def test_get_missing(ledger):
    with pytest.raises(NotFoundError):
        ledger.store.get(404)


def test_set_state_overwrites_meta(ledger):
    rec = ledger.store.create("pkg", "1.0", meta={"attempt": 1})

    updated = ledger.store.set_state(rec.id, UpdateState.APPLIED, {"attempt": 1, "note": "ok"})

    assert updated.state == UpdateState.APPLIED
    assert updated.meta == {"attempt": 1, "note": "ok"}


def test_set_state_does_not_judge_legality(ledger):
    # Legality belongs to the state machine; the store only checks existence
    rec = ledger.store.create("pkg", "1.0")
    ledger.store.set_state(rec.id, UpdateState.ROLLED_BACK, None)

    assert ledger.store.get(rec.id).state == UpdateState.ROLLED_BACK
    assert ledger.store.get(rec.id).meta == {}


def test_set_state_compare_and_swap(ledger):
    rec = ledger.store.create("pkg", "1.0")
    ledger.store.set_state(rec.id, UpdateState.APPLIED, {}, expected=[UpdateState.PENDING])

    with pytest.raises(InvalidTransitionError):
        ledger.store.set_state(rec.id, UpdateState.FAILED, {}, expected=[UpdateState.PENDING])

    assert ledger.store.get(rec.id).state == UpdateState.APPLIED


def test_set_state_missing(ledger):
    with pytest.raises(NotFoundError):
        ledger.store.set_state(404, UpdateState.FAILED, {})


def test_list_by_state(ledger):
    a = ledger.store.create("a")
    b = ledger.store.create("b")
    ledger.store.create("c")
    ledger.store.set_state(b.id, UpdateState.FAILED, {})

    pending = ledger.store.list_by_state(UpdateState.PENDING)
    failed = ledger.store.list_by_state(UpdateState.FAILED)

    assert [r.name for r in pending] == ["a", "c"]
    assert [r.id for r in failed] == [b.id]
    assert ledger.store.count_by_state() == {"pending": 2, "failed": 1}
    assert a.id < b.id
