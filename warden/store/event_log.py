"""
Append-only event log backed by the events table.

Guarantees:
- Append-only (no updates, no deletes)
- Ids strictly increasing in append order
- created_at non-decreasing with id
- Each append is one atomic write; it either lands whole or not at all
"""

import logging
from typing import Any, Dict, Iterable, Iterator, Optional

from sqlalchemy import and_, insert, select
from sqlalchemy.engine import Connection

from ..core.canonical import dump_column, load_column
from ..core.clock import SystemClock
from ..core.errors import StorageError
from ..core.events import Event
from .. import metrics
from .database import Database, from_db_time, to_db_time
from .schema import UPDATE_REF, events

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 500


def _row_to_event(row) -> Event:
    return Event(
        id=row.id,
        kind=row.kind,
        payload=load_column(row.payload),
        created_at=from_db_time(row.created_at),
    )


class EventStream:
    """
    Lazy, finite, restartable view over the log.

    Every iteration starts from the beginning and pages through the table in
    id order. The upper bound is fixed when an iteration starts, so events
    appended meanwhile do not make it endless.
    """

    def __init__(
        self,
        log: "EventLog",
        update_id: Optional[int] = None,
        kind: Optional[str] = None,
        from_id: int = 0,
        conn: Optional[Connection] = None,
    ) -> None:
        self._log = log
        self._update_id = update_id
        self._kind = kind
        self._from_id = from_id
        self._conn = conn

    def _filters(self, after: int, upto: int):
        clauses = [events.c.id > after, events.c.id <= upto]
        if self._from_id:
            clauses.append(events.c.id >= self._from_id)
        if self._kind is not None:
            clauses.append(events.c.kind == self._kind)
        if self._update_id is not None:
            clauses.append(UPDATE_REF == self._update_id)
        return and_(*clauses)

    def __iter__(self) -> Iterator[Event]:
        page_size = self._log.page_size
        with self._log.db.scope(self._conn, write=False) as conn:
            upto = conn.execute(select(events.c.id).order_by(events.c.id.desc()).limit(1)).scalar()
        if upto is None:
            return
        after = 0
        while True:
            with self._log.db.scope(self._conn, write=False) as conn:
                rows = conn.execute(
                    select(events)
                    .where(self._filters(after, upto))
                    .order_by(events.c.id)
                    .limit(page_size)
                ).fetchall()
            for row in rows:
                yield _row_to_event(row)
            if len(rows) < page_size:
                return
            after = rows[-1].id

    def to_list(self):
        return list(self)


class EventLog:
    """
    Event log over the shared Database handle.

    Usage:
        log = EventLog(db)
        ev = log.append("update.started", {"update_id": 1})
        for ev in log.read_by_reference(1):
            ...
    """

    def __init__(self, db: Database, clock=None, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self.db = db
        self.clock = clock or SystemClock()
        self.page_size = page_size

    def append(
        self,
        kind: str,
        payload: Optional[Dict[str, Any]] = None,
        conn: Optional[Connection] = None,
    ) -> Event:
        """
        Append an event and return it with id and created_at assigned.

        When conn is given the write joins the caller's transaction and
        becomes visible only when that transaction commits; the caller then
        counts it with metrics.record_event() after the commit.

        Raises:
            ValueError: If kind is empty
            StorageError: If the write fails (nothing is written)
        """
        if not kind or not isinstance(kind, str):
            raise ValueError("event kind must be a non-empty string")
        raw_payload = dump_column(payload)

        with self.db.scope(conn) as c:
            last_ts = c.execute(
                select(events.c.created_at).order_by(events.c.id.desc()).limit(1)
            ).scalar()
            ts = to_db_time(self.clock.now())
            if last_ts is not None and ts < last_ts:
                ts = last_ts
            result = c.execute(insert(events).values(kind=kind, payload=raw_payload, created_at=ts))
            event_id = result.inserted_primary_key[0]
            if event_id is None:
                raise StorageError(f"append of {kind} returned no id")

        ev = Event(id=event_id, kind=kind, payload=load_column(raw_payload), created_at=from_db_time(ts))
        if conn is None:
            metrics.record_event(kind)
        logger.debug("Appended event %s (%s)", ev.id, kind)
        return ev

    def read_all(
        self,
        from_id: int = 0,
        kind: Optional[str] = None,
        conn: Optional[Connection] = None,
    ) -> EventStream:
        """All events in id order, optionally starting at from_id (inclusive) or filtered by kind."""
        return EventStream(self, kind=kind, from_id=from_id, conn=conn)

    def read_by_reference(self, update_id: int, conn: Optional[Connection] = None) -> EventStream:
        """Events whose payload references update_id, in append order."""
        return EventStream(self, update_id=int(update_id), conn=conn)

    def last(
        self,
        update_id: Optional[int] = None,
        kinds: Optional[Iterable[str]] = None,
        conn: Optional[Connection] = None,
    ) -> Optional[Event]:
        """Most recent event overall, or for one update, optionally limited to some kinds."""
        stmt = select(events).order_by(events.c.id.desc()).limit(1)
        if update_id is not None:
            stmt = stmt.where(UPDATE_REF == int(update_id))
        if kinds is not None:
            stmt = stmt.where(events.c.kind.in_(sorted(kinds)))
        with self.db.scope(conn, write=False) as c:
            row = c.execute(stmt).first()
        return _row_to_event(row) if row is not None else None
