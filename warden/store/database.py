"""
Database handle shared by the event log and the record store.

The handle is passed explicitly to every component; there is no module-level
connection. All writes run inside BEGIN IMMEDIATE transactions so concurrent
writers (threads or processes) queue on the SQLite write lock instead of
failing on lock upgrade.
"""

import logging
import os
from datetime import datetime, timezone
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ..core.errors import StorageError
from .schema import metadata

logger = logging.getLogger(__name__)

_READONLY = "warden_readonly"


def _install_sqlite_hooks(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _record):
        # Take over transaction control from the sqlite3 module
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=FULL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(_READONLY):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """
    SQLite database holding the events and updates tables.

    Usage:
        db = Database.open("./data/warden.sqlite")
        db.create_schema()
        with db.transaction() as conn:
            ...
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @classmethod
    def open(cls, path: str, busy_timeout: float = 30.0) -> "Database":
        """
        Open (or create) the database file at path.

        Args:
            path: Filesystem path of the SQLite file
            busy_timeout: Seconds to wait for the write lock before failing
        """
        if not path:
            raise StorageError("database path is empty")
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        engine = create_engine(
            f"sqlite:///{path}",
            connect_args={"timeout": busy_timeout, "check_same_thread": False},
        )
        _install_sqlite_hooks(engine)
        logger.debug("Opened database", extra={"db_path": path})
        return cls(engine)

    def create_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as ex:
            raise StorageError(f"schema creation failed: {ex}") from ex

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """
        Run a block inside one write transaction.

        Commits on normal exit, rolls back on any exception. Database errors
        surface as StorageError so nothing partially written survives.
        """
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as ex:
            logger.error("Transaction rolled back: %s", ex)
            raise StorageError(str(ex)) from ex

    @contextmanager
    def snapshot(self) -> Iterator[Connection]:
        """Run a block inside one read transaction (consistent view, no write lock)."""
        try:
            with self.engine.connect() as conn:
                conn.execution_options(**{_READONLY: True})
                with conn.begin():
                    yield conn
        except SQLAlchemyError as ex:
            raise StorageError(str(ex)) from ex

    @contextmanager
    def scope(self, conn: Optional[Connection] = None, write: bool = True) -> Iterator[Connection]:
        """Join the caller's connection if given, else open a fresh transaction."""
        if conn is not None:
            yield conn
            return
        ctx = self.transaction() if write else self.snapshot()
        with ctx as own:
            yield own

    def dispose(self) -> None:
        self.engine.dispose()


def to_db_time(ts: datetime) -> datetime:
    """SQLite DATETIME has no zone; timestamps are stored as naive UTC."""
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def from_db_time(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts
