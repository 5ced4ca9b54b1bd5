"""
Update lifecycle state machine.

Drives one update through pending -> applied | failed -> rolled_back,
calling the Applier for the real work and recording every transition in
the event log. Each transition writes its event and the record change in
one transaction, so the record store never disagrees with the log.

Concurrency:
- Creating a pending record is an atomic insert-if-absent per (name, version)
- Transitions of the same update id are serialized by a per-id lock in this
  process and by compare-and-swap on the expected state across processes
- The Applier runs outside any transaction; other updates proceed meanwhile
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Iterator, List, Optional, Tuple

from . import metrics
from .applier import Applier
from .core.errors import ApplierError, ConflictError, InvalidTransitionError
from .core.events import Event, EventKind, REFERENCE_KEY, lifecycle_payload
from .core.owner import OWNER_KEY, current_owner
from .core.state import ROLLBACK_SOURCES, UpdateRecord, UpdateState, require_transition
from .logging_config import get_logger
from .store.database import Database
from .store.event_log import EventLog
from .store.update_store import UpdateStore

CANCELLED = "cancelled"


@dataclass(frozen=True)
class TransitionResult:
    """
    Outcome of apply() or rollback().

    Fields:
        record: Record after the operation
        events: Events appended by the operation, in order
        error: Applier failure, if any (recorded in record.meta, not raised)
    """
    record: UpdateRecord
    events: Tuple[Event, ...]
    error: Optional[ApplierError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class KeyedLocks:
    """Per-key locks created on demand and dropped once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, List[Any]] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def _as_applier_error(ex: Exception) -> ApplierError:
    if isinstance(ex, ApplierError):
        return ex
    return ApplierError(str(ex) or type(ex).__name__, {"exception": type(ex).__name__})


def _error_meta(meta: Dict[str, Any], error: ApplierError) -> Dict[str, Any]:
    meta = dict(meta)
    meta["error"] = str(error)
    meta["error_type"] = type(error).__name__
    if error.detail:
        meta["error_detail"] = dict(error.detail)
    return meta


class UpdateStateMachine:
    """
    Usage:
        machine = UpdateStateMachine(db, EventLog(db), UpdateStore(db), applier)
        result = machine.apply("agent", "2.3")
        if not result.ok:
            machine.rollback(result.record.id)
    """

    def __init__(self, db: Database, event_log: EventLog, store: UpdateStore, applier: Applier) -> None:
        self.db = db
        self.event_log = event_log
        self.store = store
        self.applier = applier
        self._locks = KeyedLocks()

    @classmethod
    def create(cls, db: Database, applier: Applier, clock=None) -> "UpdateStateMachine":
        return cls(db, EventLog(db, clock=clock), UpdateStore(db, clock=clock), applier)

    def apply(self, name: str, version: Optional[str] = None) -> TransitionResult:
        """
        Apply an update.

        Raises:
            ConflictError: If an attempt for (name, version) is already pending
            StorageError: If recording the start or the outcome fails

        Applier failures are not raised: the record moves to failed and the
        error is returned in TransitionResult.error. If the applier is
        interrupted (KeyboardInterrupt, SystemExit) the record still moves to
        failed before the interruption propagates.
        """
        with self.db.transaction() as conn:
            attempt = self.store.count_attempts(name, version, conn=conn) + 1
            record = self.store.create(
                name, version, meta={"attempt": attempt, OWNER_KEY: current_owner()}, conn=conn
            )
            started = self.event_log.append(
                EventKind.STARTED,
                lifecycle_payload(record.id, name, version, record.meta),
                conn=conn,
            )

        log = get_logger(__name__, trace_id=record.identity, update_id=record.id)
        metrics.record_event(started.kind)
        metrics.record_transition(UpdateState.PENDING.value)
        log.info("Update %s started (attempt %d)", record.id, attempt)

        with self._locks.hold(record.id):
            error = None
            try:
                with metrics.track_applier_duration("apply") as outcome:
                    self.applier.apply(name, version)
                    outcome["outcome"] = "success"
            except Exception as ex:
                error = _as_applier_error(ex)
            except BaseException as ex:
                try:
                    self._finish_apply(record, started, ApplierError(CANCELLED, {"exception": type(ex).__name__}))
                except Exception:
                    # Left pending; recovery fails it once this process is gone
                    log.exception("Could not record cancellation of update %s", record.id)
                raise
            return self._finish_apply(record, started, error)

    def _finish_apply(
        self, record: UpdateRecord, started: Event, error: Optional[ApplierError]
    ) -> TransitionResult:
        log = get_logger(__name__, trace_id=record.identity, update_id=record.id)
        meta = dict(record.meta)
        meta.pop(OWNER_KEY, None)
        if error is None:
            target, kind = UpdateState.APPLIED, EventKind.APPLIED
        else:
            target, kind, meta = UpdateState.FAILED, EventKind.FAILED, _error_meta(meta, error)

        require_transition(record.state, target)
        with self.db.transaction() as conn:
            ev = self.event_log.append(
                kind, lifecycle_payload(record.id, record.name, record.version, meta), conn=conn
            )
            updated = self.store.set_state(
                record.id, target, meta, expected=[UpdateState.PENDING], conn=conn
            )

        metrics.record_event(ev.kind)
        metrics.record_transition(target.value)
        if error is None:
            log.info("Update %s applied", record.id)
        else:
            log.warning("Update %s failed: %s", record.id, error)
        return TransitionResult(record=updated, events=(started, ev), error=error)

    def rollback(self, update_id: int) -> TransitionResult:
        """
        Undo an applied or failed update.

        The record ends in rolled_back even when the Applier's rollback
        fails; the outcome is kept in meta["rollback"] and the failure is
        returned in TransitionResult.error.

        Raises:
            NotFoundError: If the update does not exist
            InvalidTransitionError: If the update is pending or already rolled back
            ConflictError: If another rollback of this update is in flight
            StorageError: If recording the start or the outcome fails
        """
        with self._locks.hold(update_id):
            with self.db.transaction() as conn:
                record = self.store.get(update_id, conn=conn)
                if record.state not in ROLLBACK_SOURCES:
                    raise InvalidTransitionError(
                        f"update {update_id} cannot be rolled back from {record.state.value}"
                    )
                last = self.event_log.last(update_id, kinds=EventKind.LIFECYCLE, conn=conn)
                if last is not None and last.kind == EventKind.ROLLBACK_STARTED:
                    raise ConflictError(f"rollback of update {update_id} already in progress")

                meta = dict(record.meta)
                meta["rollback"] = {
                    "from_state": record.state.value,
                    "outcome": "in_progress",
                    OWNER_KEY: current_owner(),
                }
                started = self.event_log.append(
                    EventKind.ROLLBACK_STARTED,
                    lifecycle_payload(record.id, record.name, record.version, meta),
                    conn=conn,
                )
                record = self.store.set_state(
                    record.id, record.state, meta, expected=[record.state], conn=conn
                )

            log = get_logger(__name__, trace_id=record.identity, update_id=record.id)
            metrics.record_event(started.kind)
            log.info("Rollback of update %s started", record.id)

            error = None
            try:
                with metrics.track_applier_duration("rollback") as outcome:
                    self.applier.rollback(record.name, record.version)
                    outcome["outcome"] = "success"
            except Exception as ex:
                error = _as_applier_error(ex)
            except BaseException as ex:
                try:
                    self._finish_rollback(record, started, ApplierError(CANCELLED, {"exception": type(ex).__name__}))
                except Exception:
                    log.exception("Could not record cancelled rollback of update %s", record.id)
                raise
            return self._finish_rollback(record, started, error)

    def _finish_rollback(
        self, record: UpdateRecord, started: Event, error: Optional[ApplierError]
    ) -> TransitionResult:
        log = get_logger(__name__, trace_id=record.identity, update_id=record.id)
        meta = dict(record.meta)
        outcome: Dict[str, Any] = dict(meta.get("rollback") or {})
        outcome.pop(OWNER_KEY, None)
        outcome["outcome"] = "succeeded" if error is None else "failed"
        if error is not None:
            outcome["error"] = str(error)
            if error.detail:
                outcome["error_detail"] = dict(error.detail)
        meta["rollback"] = outcome

        require_transition(record.state, UpdateState.ROLLED_BACK)
        with self.db.transaction() as conn:
            ev = self.event_log.append(
                EventKind.ROLLED_BACK,
                lifecycle_payload(record.id, record.name, record.version, meta),
                conn=conn,
            )
            updated = self.store.set_state(
                record.id, UpdateState.ROLLED_BACK, meta, expected=[record.state], conn=conn
            )

        metrics.record_event(ev.kind)
        metrics.record_transition(UpdateState.ROLLED_BACK.value)
        if error is None:
            log.info("Update %s rolled back", record.id)
        else:
            log.warning("Update %s rolled back, inverse failed: %s", record.id, error)
        return TransitionResult(record=updated, events=(started, ev), error=error)

    def annotate(self, update_id: int, kind: str, payload: Optional[Dict[str, Any]] = None) -> Event:
        """
        Append a domain-specific event referencing an update.

        Lifecycle kinds are reserved for the state machine and recovery.

        Raises:
            ValueError: If kind is a lifecycle kind
            NotFoundError: If the update does not exist
        """
        if kind in EventKind.LIFECYCLE:
            raise ValueError(f"{kind} is reserved for lifecycle transitions")
        body = dict(payload or {})
        body[REFERENCE_KEY] = update_id
        with self.db.transaction() as conn:
            self.store.get(update_id, conn=conn)
            ev = self.event_log.append(kind, body, conn=conn)
        metrics.record_event(ev.kind)
        return ev
