"""
Database schema definitions using SQLAlchemy Core.

Tables:
    events: Append-only log of immutable facts
    updates: One row per update attempt, a cached projection of the log
"""

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    func,
    literal_column,
)

metadata = MetaData()

events = Table(
    "events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("kind", Text, nullable=False),
    # Serialized structured data, NULL when the event carries none
    Column("payload", Text, nullable=True),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    sqlite_autoincrement=True,
)

updates = Table(
    "updates",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("version", Text, nullable=True),
    # pending, applied, failed, rolled_back
    Column("state", Text, nullable=True),
    Column("meta", Text, nullable=True),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    sqlite_autoincrement=True,
)

# Literal path so the query expression matches the index expression
UPDATE_REF = func.json_extract(events.c.payload, literal_column("'$.update_id'"))

Index("ix_events_update_id", UPDATE_REF)
Index("ix_events_kind", events.c.kind)

# At most one pending attempt per (name, version). NULL versions collapse to ''
# so two unversioned attempts of the same name also collide.
Index(
    "uq_updates_pending_identity",
    updates.c.name,
    func.coalesce(updates.c.version, literal_column("''")),
    unique=True,
    sqlite_where=updates.c.state == literal_column("'pending'"),
)
Index("ix_updates_state", updates.c.state)
Index("ix_updates_identity", updates.c.name, updates.c.version)
