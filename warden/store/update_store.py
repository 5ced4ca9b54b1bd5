"""
Update record store backed by the updates table.

The store only enforces that ids exist and that at most one attempt per
(name, version) is pending. Legality of transitions belongs to the state
machine; set_state offers an optional compare-and-swap on the current
state so concurrent transitions of the same id cannot both win.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from ..core.canonical import dump_column, load_column
from ..core.clock import SystemClock
from ..core.errors import ConflictError, InvalidTransitionError, NotFoundError, StorageError
from ..core.state import INITIAL_STATE, UpdateRecord, UpdateState
from .database import Database, from_db_time, to_db_time
from .schema import updates

logger = logging.getLogger(__name__)


def _row_to_record(row) -> UpdateRecord:
    if row.state is None:
        raise StorageError(f"update {row.id} has no state")
    return UpdateRecord(
        id=row.id,
        name=row.name,
        version=row.version,
        state=UpdateState(row.state),
        meta=load_column(row.meta) or {},
        created_at=from_db_time(row.created_at),
    )


def _identity_clause(name: str, version: Optional[str]):
    # Same key as uq_updates_pending_identity: no version equals ""
    return (updates.c.name == name) & (func.coalesce(updates.c.version, "") == (version or ""))


class UpdateStore:
    """
    Store of UpdateRecord rows.

    Usage:
        store = UpdateStore(db)
        rec = store.create("agent", "2.3")
        store.set_state(rec.id, UpdateState.APPLIED, {}, expected=[UpdateState.PENDING])
    """

    def __init__(self, db: Database, clock=None) -> None:
        self.db = db
        self.clock = clock or SystemClock()

    def create(
        self,
        name: str,
        version: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
        conn: Optional[Connection] = None,
    ) -> UpdateRecord:
        """
        Insert a new record in state pending.

        The uniqueness check and the insert are a single statement backed by
        a partial unique index, so two racing callers cannot both succeed.

        Raises:
            ValueError: If name is empty
            ConflictError: If (name, version) already has a pending record
        """
        if not name:
            raise ValueError("update name must be non-empty")
        ts = to_db_time(self.clock.now())
        with self.db.scope(conn) as c:
            try:
                result = c.execute(
                    insert(updates).values(
                        name=name,
                        version=version,
                        state=INITIAL_STATE.value,
                        meta=dump_column(meta),
                        created_at=ts,
                    )
                )
            except IntegrityError as ex:
                ident = f"{name}@{version}" if version is not None else name
                raise ConflictError(f"update {ident} already has a pending attempt") from ex
            record_id = result.inserted_primary_key[0]
            row = c.execute(select(updates).where(updates.c.id == record_id)).one()
        return _row_to_record(row)

    def get(self, update_id: int, conn: Optional[Connection] = None) -> UpdateRecord:
        """
        Raises:
            NotFoundError: If no record has this id
        """
        with self.db.scope(conn, write=False) as c:
            row = c.execute(select(updates).where(updates.c.id == update_id)).first()
        if row is None:
            raise NotFoundError(f"update {update_id} not found")
        return _row_to_record(row)

    def set_state(
        self,
        update_id: int,
        new_state: UpdateState,
        meta: Optional[Dict[str, Any]] = None,
        expected: Optional[Iterable[UpdateState]] = None,
        conn: Optional[Connection] = None,
    ) -> UpdateRecord:
        """
        Overwrite state and meta.

        Args:
            expected: If given, only write when the current state is one of
                these (compare-and-swap)

        Raises:
            NotFoundError: If no record has this id
            InvalidTransitionError: If the current state is not in expected
        """
        stmt = update(updates).where(updates.c.id == update_id)
        expected_values = None
        if expected is not None:
            expected_values = sorted(UpdateState(s).value for s in expected)
            stmt = stmt.where(updates.c.state.in_(expected_values))
        stmt = stmt.values(state=UpdateState(new_state).value, meta=dump_column(meta))

        with self.db.scope(conn) as c:
            result = c.execute(stmt)
            if result.rowcount == 0:
                row = c.execute(select(updates.c.state).where(updates.c.id == update_id)).first()
                if row is None:
                    raise NotFoundError(f"update {update_id} not found")
                raise InvalidTransitionError(
                    f"update {update_id} is {row.state}, expected one of {expected_values}"
                )
            row = c.execute(select(updates).where(updates.c.id == update_id)).one()
        return _row_to_record(row)

    def list_by_state(self, state: UpdateState, conn: Optional[Connection] = None) -> List[UpdateRecord]:
        stmt = select(updates).where(updates.c.state == UpdateState(state).value).order_by(updates.c.id)
        with self.db.scope(conn, write=False) as c:
            return [_row_to_record(r) for r in c.execute(stmt)]

    def list_all(self, conn: Optional[Connection] = None) -> List[UpdateRecord]:
        with self.db.scope(conn, write=False) as c:
            return [_row_to_record(r) for r in c.execute(select(updates).order_by(updates.c.id))]

    def find(
        self, name: str, version: Optional[str] = None, conn: Optional[Connection] = None
    ) -> List[UpdateRecord]:
        """All attempts for one identity, oldest first."""
        stmt = select(updates).where(_identity_clause(name, version)).order_by(updates.c.id)
        with self.db.scope(conn, write=False) as c:
            return [_row_to_record(r) for r in c.execute(stmt)]

    def count_attempts(
        self, name: str, version: Optional[str] = None, conn: Optional[Connection] = None
    ) -> int:
        stmt = select(func.count()).select_from(updates).where(_identity_clause(name, version))
        with self.db.scope(conn, write=False) as c:
            return int(c.execute(stmt).scalar() or 0)

    def count_by_state(self, conn: Optional[Connection] = None) -> Dict[str, int]:
        stmt = select(updates.c.state, func.count()).group_by(updates.c.state)
        with self.db.scope(conn, write=False) as c:
            return {state: int(n) for state, n in c.execute(stmt)}
