"""
Recovery: repair records left mid-flight by a crashed process.

A pending record whose owning process is gone is evidence of a crash, never
of progress, so recovery moves it to failed. A rollback that started but
never finished is closed as rolled_back. Records whose owner is still alive
are in flight and left alone. Recovery never calls the Applier; a retry is
always an explicit new apply().
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from . import metrics
from .core.events import EventKind, lifecycle_payload
from .core.owner import OWNER_KEY, owner_alive
from .core.state import ROLLBACK_SOURCES, UpdateRecord, UpdateState
from .logging_config import get_logger
from .replay.projection import project
from .store.database import Database
from .store.event_log import EventLog
from .store.update_store import UpdateStore

INTERRUPTED = "interrupted"

ACTION_INTERRUPTED_APPLY = "interrupted_apply"
ACTION_INTERRUPTED_ROLLBACK = "interrupted_rollback"
ACTION_RECONCILED = "reconciled"

# Internal marker: the record is owned by a live process
_IN_FLIGHT = "in_flight"


@dataclass(frozen=True)
class RecoveryAction:
    update_id: int
    action: str
    from_state: str
    to_state: str
    event_id: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "update_id": self.update_id,
            "action": self.action,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "event_id": self.event_id,
        }


@dataclass(frozen=True)
class RecoveryReport:
    """
    Fields:
        scanned: Records inspected
        actions: Repairs made, in order
        in_flight: Records skipped because their owning process is alive
    """
    scanned: int = 0
    actions: Tuple[RecoveryAction, ...] = field(default_factory=tuple)
    in_flight: int = 0

    @property
    def repaired(self) -> int:
        return len(self.actions)


class Recovery:
    """
    Usage:
        report = Recovery(db, EventLog(db), UpdateStore(db)).run()
    """

    def __init__(self, db: Database, event_log: EventLog, store: UpdateStore) -> None:
        self.db = db
        self.event_log = event_log
        self.store = store

    def run(self) -> RecoveryReport:
        actions: List[RecoveryAction] = []
        scanned = 0
        in_flight = 0

        candidates = [(rec.id, self._recover_pending) for rec in self.store.list_by_state(UpdateState.PENDING)]
        for state in sorted(ROLLBACK_SOURCES, key=lambda s: s.value):
            candidates.extend((rec.id, self._recover_rollback) for rec in self.store.list_by_state(state))

        for update_id, recover in candidates:
            scanned += 1
            action = recover(update_id)
            if action == _IN_FLIGHT:
                in_flight += 1
            elif action is not None:
                actions.append(action)

        for action in actions:
            metrics.record_recovery(action.action)
        return RecoveryReport(scanned=scanned, actions=tuple(actions), in_flight=in_flight)

    def _recover_pending(self, update_id: int) -> Optional[Union[RecoveryAction, str]]:
        with self.db.transaction() as conn:
            rec = self.store.get(update_id, conn=conn)
            if rec.state != UpdateState.PENDING:
                return None

            proj = project(self.event_log.read_by_reference(update_id, conn=conn))
            if proj is None or proj.state == UpdateState.PENDING:
                if owner_alive(rec.meta.get(OWNER_KEY)):
                    return _IN_FLIGHT
                meta = dict(rec.meta)
                meta.pop(OWNER_KEY, None)
                meta.update(error=INTERRUPTED, error_type="Interrupted", recovered=True)
                ev = self.event_log.append(
                    EventKind.FAILED,
                    lifecycle_payload(rec.id, rec.name, rec.version, meta, recovered=True),
                    conn=conn,
                )
                self.store.set_state(rec.id, UpdateState.FAILED, meta, expected=[UpdateState.PENDING], conn=conn)
                action = RecoveryAction(
                    rec.id, ACTION_INTERRUPTED_APPLY, rec.state.value, UpdateState.FAILED.value, ev.id
                )
            else:
                # The log already holds the outcome; only the cached record is stale
                ev = self.event_log.append(
                    EventKind.RECONCILED,
                    lifecycle_payload(rec.id, rec.name, rec.version, proj.meta, state=proj.state.value),
                    conn=conn,
                )
                self.store.set_state(rec.id, proj.state, proj.meta, expected=[UpdateState.PENDING], conn=conn)
                action = RecoveryAction(rec.id, ACTION_RECONCILED, rec.state.value, proj.state.value, ev.id)

        metrics.record_event(ev.kind)
        self._log(rec, action)
        return action

    def _recover_rollback(self, update_id: int) -> Optional[Union[RecoveryAction, str]]:
        with self.db.transaction() as conn:
            rec = self.store.get(update_id, conn=conn)
            if rec.state not in ROLLBACK_SOURCES:
                return None
            last = self.event_log.last(update_id, kinds=EventKind.LIFECYCLE, conn=conn)
            if last is None or last.kind != EventKind.ROLLBACK_STARTED:
                return None

            meta = dict(rec.meta)
            outcome = dict(meta.get("rollback") or {})
            if owner_alive(outcome.get(OWNER_KEY)):
                return _IN_FLIGHT
            outcome.pop(OWNER_KEY, None)
            outcome.update(from_state=rec.state.value, outcome=INTERRUPTED)
            meta["rollback"] = outcome
            ev = self.event_log.append(
                EventKind.ROLLED_BACK,
                lifecycle_payload(rec.id, rec.name, rec.version, meta, recovered=True),
                conn=conn,
            )
            self.store.set_state(rec.id, UpdateState.ROLLED_BACK, meta, expected=[rec.state], conn=conn)
            action = RecoveryAction(
                rec.id, ACTION_INTERRUPTED_ROLLBACK, rec.state.value, UpdateState.ROLLED_BACK.value, ev.id
            )

        metrics.record_event(ev.kind)
        self._log(rec, action)
        return action

    def _log(self, rec: UpdateRecord, action: RecoveryAction) -> None:
        log = get_logger(__name__, trace_id=rec.identity, update_id=rec.id, event_id=action.event_id)
        log.warning(
            "Recovery moved update %s from %s to %s (%s)",
            rec.id,
            action.from_state,
            action.to_state,
            action.action,
        )
