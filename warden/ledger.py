"""
Ledger: the shared handles wired together.

Everything that touches the database receives it explicitly; this class
only saves callers from building the same four objects by hand.
"""

from dataclasses import dataclass

from .applier import Applier
from .machine import UpdateStateMachine
from .recovery import Recovery
from .store.database import Database
from .store.event_log import EventLog
from .store.update_store import UpdateStore


@dataclass
class Ledger:
    db: Database
    event_log: EventLog
    store: UpdateStore

    @classmethod
    def open(cls, db_path: str, busy_timeout: float = 30.0, clock=None) -> "Ledger":
        """Open the database at db_path and create the schema if missing."""
        db = Database.open(db_path, busy_timeout=busy_timeout)
        db.create_schema()
        return cls(db=db, event_log=EventLog(db, clock=clock), store=UpdateStore(db, clock=clock))

    def machine(self, applier: Applier) -> UpdateStateMachine:
        return UpdateStateMachine(self.db, self.event_log, self.store, applier)

    def recovery(self) -> Recovery:
        return Recovery(self.db, self.event_log, self.store)

    def close(self) -> None:
        self.db.dispose()
