"""
Tests for the update lifecycle state machine.

Covers the apply/rollback scenarios end to end, the error taxonomy, the
duplicate-application race and the log/record consistency property.
"""

import threading

import pytest

from warden.core.errors import (
    ApplierError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
)
from warden.core.events import EventKind, lifecycle_payload
from warden.core.state import UpdateState
from warden.replay import project, verify

from .fakes import FakeApplier


def _kinds(ledger, update_id):
    return [e.kind for e in ledger.event_log.read_by_reference(update_id)]


def _assert_projection_matches(ledger, update_id):
    rec = ledger.store.get(update_id)
    proj = project(ledger.event_log.read_by_reference(update_id))
    assert proj.state == rec.state
    assert proj.meta == rec.meta


def test_apply_success(ledger, applier):
    """apply("agent", "2.3") with a succeeding applier."""
    result = ledger.machine(applier).apply("agent", "2.3")

    assert result.ok
    assert result.record.state == UpdateState.APPLIED
    assert [e.kind for e in result.events] == [EventKind.STARTED, EventKind.APPLIED]
    assert _kinds(ledger, result.record.id) == ["update.started", "update.applied"]
    assert applier.calls == [("apply", "agent", "2.3")]
    _assert_projection_matches(ledger, result.record.id)


def test_apply_failure_recorded_not_raised(ledger, failing_applier):
    """apply("agent", "2.3") where the applier fails with "disk full"."""
    result = ledger.machine(failing_applier).apply("agent", "2.3")

    assert not result.ok
    assert isinstance(result.error, ApplierError)
    assert result.record.state == UpdateState.FAILED
    assert result.record.meta["error"] == "disk full"
    assert result.record.meta["error_type"] == "ApplierError"
    assert _kinds(ledger, result.record.id) == ["update.started", "update.failed"]
    _assert_projection_matches(ledger, result.record.id)


def test_rollback_of_failed_update(ledger, failing_applier):
    machine = ledger.machine(failing_applier)
    failed = machine.apply("agent", "2.3")

    result = machine.rollback(failed.record.id)

    assert result.ok
    assert result.record.state == UpdateState.ROLLED_BACK
    assert result.record.meta["rollback"] == {"from_state": "failed", "outcome": "succeeded"}
    assert result.record.meta["error"] == "disk full"
    assert _kinds(ledger, failed.record.id) == [
        "update.started",
        "update.failed",
        "update.rollback_started",
        "update.rolled_back",
    ]
    assert failing_applier.calls[-1] == ("rollback", "agent", "2.3")
    _assert_projection_matches(ledger, failed.record.id)


def test_rollback_of_applied_update(ledger, applier):
    machine = ledger.machine(applier)
    applied = machine.apply("agent", "2.3")

    result = machine.rollback(applied.record.id)

    assert result.record.state == UpdateState.ROLLED_BACK
    assert result.record.meta["rollback"]["from_state"] == "applied"


def test_rollback_twice_rejected_without_new_events(ledger, applier):
    machine = ledger.machine(applier)
    rec = machine.apply("agent", "2.3").record
    machine.rollback(rec.id)
    before = _kinds(ledger, rec.id)

    with pytest.raises(InvalidTransitionError):
        machine.rollback(rec.id)

    after = _kinds(ledger, rec.id)
    assert after == before
    assert after.count("update.rolled_back") == 1
    assert ledger.store.get(rec.id).state == UpdateState.ROLLED_BACK


def test_rollback_of_pending_rejected(ledger, applier):
    rec = ledger.store.create("agent", "2.3")

    with pytest.raises(InvalidTransitionError):
        ledger.machine(applier).rollback(rec.id)

    assert applier.calls == []
    assert ledger.store.get(rec.id).state == UpdateState.PENDING


def test_rollback_of_unknown_update(ledger, applier):
    with pytest.raises(NotFoundError):
        ledger.machine(applier).rollback(12345)


def test_rollback_inverse_failure_still_terminal(ledger):
    applier = FakeApplier(rollback_error=ApplierError("uninstall failed", {"exit_code": 3}))
    machine = ledger.machine(applier)
    rec = machine.apply("agent", "2.3").record

    result = machine.rollback(rec.id)

    assert not result.ok
    assert str(result.error) == "uninstall failed"
    assert result.record.state == UpdateState.ROLLED_BACK
    assert result.record.meta["rollback"]["outcome"] == "failed"
    assert result.record.meta["rollback"]["error"] == "uninstall failed"
    assert result.record.meta["rollback"]["error_detail"] == {"exit_code": 3}
    _assert_projection_matches(ledger, rec.id)


def test_unexpected_applier_exception_wrapped(ledger):
    applier = FakeApplier(apply_error=RuntimeError("connection reset"))

    result = ledger.machine(applier).apply("agent", "2.3")

    assert isinstance(result.error, ApplierError)
    assert result.record.state == UpdateState.FAILED
    assert result.record.meta["error"] == "connection reset"
    assert result.record.meta["error_detail"] == {"exception": "RuntimeError"}


def test_cancellation_mid_apply_reaches_failed(ledger):
    applier = FakeApplier(apply_error=KeyboardInterrupt())

    with pytest.raises(KeyboardInterrupt):
        ledger.machine(applier).apply("agent", "2.3")

    (rec,) = ledger.store.find("agent", "2.3")
    assert rec.state == UpdateState.FAILED
    assert rec.meta["error"] == "cancelled"
    assert _kinds(ledger, rec.id) == ["update.started", "update.failed"]


def test_retry_after_failure_counts_attempts(ledger, failing_applier):
    machine = ledger.machine(failing_applier)
    first = machine.apply("agent", "2.3")

    failing_applier.apply_error = None
    second = machine.apply("agent", "2.3")

    assert first.record.meta["attempt"] == 1
    assert second.record.meta["attempt"] == 2
    assert second.record.state == UpdateState.APPLIED
    assert first.record.id != second.record.id


def test_apply_conflicts_with_pending_attempt(ledger, applier):
    ledger.store.create("pkg", "1.0")

    with pytest.raises(ConflictError):
        ledger.machine(applier).apply("pkg", "1.0")

    assert applier.calls == []
    assert len(list(ledger.event_log.read_all())) == 0


def test_concurrent_apply_race(ledger):
    """Two simultaneous apply("pkg", "1.0"): one wins, the other conflicts."""
    gate = threading.Event()
    applier = FakeApplier(gate=gate)
    machine = ledger.machine(applier)
    results, errors = [], []

    def worker():
        try:
            results.append(machine.apply("pkg", "1.0"))
        except ConflictError as ex:
            errors.append(ex)

    first = threading.Thread(target=worker)
    first.start()
    assert applier.entered.wait(timeout=10)

    second = threading.Thread(target=worker)
    second.start()
    second.join(timeout=30)

    gate.set()
    first.join(timeout=30)

    assert len(results) == 1
    assert len(errors) == 1
    assert results[0].record.state == UpdateState.APPLIED
    assert ledger.store.count_attempts("pkg", "1.0") == 1


def test_different_identities_apply_concurrently(ledger):
    gate = threading.Event()
    slow = FakeApplier(gate=gate)
    fast = FakeApplier()
    results = []

    t = threading.Thread(target=lambda: results.append(ledger.machine(slow).apply("slow", "1")))
    t.start()
    assert slow.entered.wait(timeout=10)

    # Not blocked by the in-flight update
    other = ledger.machine(fast).apply("fast", "1")
    assert other.record.state == UpdateState.APPLIED

    gate.set()
    t.join(timeout=30)
    assert results[0].record.state == UpdateState.APPLIED


def test_state_reproducible_at_every_step(ledger, failing_applier):
    machine = ledger.machine(failing_applier)
    a = machine.apply("a", "1").record
    failing_applier.apply_error = None
    b = machine.apply("b", "1").record
    machine.rollback(a.id)
    machine.rollback(b.id)
    c = machine.apply("a", "1").record

    for rec_id in (a.id, b.id, c.id):
        _assert_projection_matches(ledger, rec_id)
    assert verify(ledger.event_log, ledger.store) == []


def test_at_most_one_pending_per_identity(ledger, applier):
    machine = ledger.machine(applier)
    for _ in range(3):
        machine.apply("pkg", "1.0")

    pending = [r for r in ledger.store.find("pkg", "1.0") if r.state == UpdateState.PENDING]
    assert pending == []
    assert ledger.store.count_attempts("pkg", "1.0") == 3


def test_annotate_domain_event(ledger, applier):
    machine = ledger.machine(applier)
    rec = machine.apply("agent", "2.3").record

    ev = machine.annotate(rec.id, "agent.health_checked", {"healthy": True})

    assert ev.update_id == rec.id
    assert _kinds(ledger, rec.id)[-1] == "agent.health_checked"
    # Domain kinds do not disturb the projection
    _assert_projection_matches(ledger, rec.id)


def test_annotate_rejects_lifecycle_kind(ledger, applier):
    rec = ledger.machine(applier).apply("agent", "2.3").record

    with pytest.raises(ValueError):
        ledger.machine(applier).annotate(rec.id, EventKind.APPLIED)


def test_annotate_unknown_update(ledger, applier):
    with pytest.raises(NotFoundError):
        ledger.machine(applier).annotate(999, "note")
    assert list(ledger.event_log.read_all()) == []


def _start_rollback_elsewhere(ledger, rec):
    """Leave rollback_started as the latest lifecycle event, as another writer would."""
    meta = dict(rec.meta, rollback={"from_state": rec.state.value, "outcome": "in_progress"})
    with ledger.db.transaction() as conn:
        ledger.event_log.append(
            EventKind.ROLLBACK_STARTED,
            lifecycle_payload(rec.id, rec.name, rec.version, meta),
            conn=conn,
        )
        ledger.store.set_state(rec.id, rec.state, meta, expected=[rec.state], conn=conn)


def test_rollback_in_progress_conflicts(ledger, applier):
    machine = ledger.machine(applier)
    rec = machine.apply("agent", "2.3").record
    _start_rollback_elsewhere(ledger, rec)
    before = _kinds(ledger, rec.id)

    with pytest.raises(ConflictError):
        machine.rollback(rec.id)

    assert _kinds(ledger, rec.id) == before
    assert ("rollback", "agent", "2.3") not in applier.calls
    assert ledger.store.get(rec.id).state == UpdateState.APPLIED


def test_rollback_in_progress_conflicts_after_annotation(ledger, applier):
    machine = ledger.machine(applier)
    rec = machine.apply("agent", "2.3").record
    _start_rollback_elsewhere(ledger, rec)
    machine.annotate(rec.id, "agent.progress", {"step": 1})

    with pytest.raises(ConflictError):
        machine.rollback(rec.id)

    assert _kinds(ledger, rec.id)[-1] == "agent.progress"


def test_rollback_after_annotation_allowed(ledger, applier):
    machine = ledger.machine(applier)
    rec = machine.apply("agent", "2.3").record
    machine.annotate(rec.id, "agent.health_checked")

    result = machine.rollback(rec.id)

    assert result.record.state == UpdateState.ROLLED_BACK


def test_owner_dropped_from_finished_records(ledger, applier):
    machine = ledger.machine(applier)
    rec = machine.apply("agent", "2.3").record
    rolled = machine.rollback(rec.id).record

    assert "owner" not in rec.meta
    assert "owner" not in rolled.meta["rollback"]


def test_interruption_survives_failed_cancellation_record(ledger, monkeypatch):
    machine = ledger.machine(FakeApplier(apply_error=KeyboardInterrupt()))

    def broken_finish(*args, **kwargs):
        raise StorageError("database is locked")

    monkeypatch.setattr(machine, "_finish_apply", broken_finish)

    with pytest.raises(KeyboardInterrupt):
        machine.apply("agent", "2.3")

    # Left for recovery once this process is gone
    (rec,) = ledger.store.find("agent", "2.3")
    assert rec.state == UpdateState.PENDING


def test_rollback_interruption_survives_failed_record(ledger, monkeypatch):
    applier = FakeApplier(rollback_error=SystemExit(1))
    machine = ledger.machine(applier)
    rec = machine.apply("agent", "2.3").record

    def broken_finish(*args, **kwargs):
        raise StorageError("database is locked")

    monkeypatch.setattr(machine, "_finish_rollback", broken_finish)

    with pytest.raises(SystemExit):
        machine.rollback(rec.id)

    assert _kinds(ledger, rec.id)[-1] == "update.rollback_started"
