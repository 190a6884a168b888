"""SQLAlchemy metadata and engine helpers for the name index and progress tables."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import sqlalchemy as sa
from sqlalchemy import Engine
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import URL
from sqlalchemy.orm import sessionmaker

from dupflag.settings import Settings, get_settings

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")
TIMESTAMP = sa.DateTime(timezone=True)
RECORD_ID_TYPE = sa.String(length=64)
# Case-insensitive equality on the matching key, independent of normalization.
NAME_KEY_TYPE = sa.Text().with_variant(sa.Text(collation="NOCASE"), "sqlite").with_variant(postgresql.CITEXT(), "postgresql")

METADATA = sa.MetaData()

name_index = sa.Table(
    "name_index",
    METADATA,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("name", NAME_KEY_TYPE, nullable=False),
    sa.Column("record_id", RECORD_ID_TYPE, nullable=False),
    sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.UniqueConstraint("record_id", name="uq_name_index_record_id"),
)
sa.Index("idx_name_index_name", name_index.c.name)

scan_progress = sa.Table(
    "scan_progress",
    METADATA,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
    sa.Column("last_cursor", sa.Text(), nullable=True),
    sa.Column("total_indexed", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("started_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.Column("last_run_at", TIMESTAMP, nullable=True),
    sa.CheckConstraint("id = 1", name="ck_scan_progress_singleton"),
)

reconcile_checkpoint = sa.Table(
    "reconcile_checkpoint",
    METADATA,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
    sa.Column("phase", sa.Text(), nullable=False),
    sa.Column("cursor", sa.Text(), nullable=True),
    sa.Column("snapshot", JSON_TYPE, nullable=True),
    sa.Column("processed_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("counts", JSON_TYPE, nullable=True),
    sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.CheckConstraint("id = 1", name="ck_reconcile_checkpoint_singleton"),
)

reconcile_records = sa.Table(
    "reconcile_records",
    METADATA,
    sa.Column("seq", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("record_id", RECORD_ID_TYPE, nullable=False),
    sa.Column("name", sa.Text(), nullable=True),
    sa.Column("tagged", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.UniqueConstraint("record_id", name="uq_reconcile_records_record_id"),
)


def _resolve_database_url(settings: Settings | None = None) -> str:
    """Return the SQLAlchemy URL considering overrides and configured storage."""

    url_override = os.getenv("DUPFLAG_DATABASE_URL") or os.getenv("ALEMBIC_DATABASE_URL")
    if url_override:
        return url_override

    resolved = settings or get_settings()
    if resolved.storage.database_url:
        return resolved.storage.database_url

    sqlite_path = Path(resolved.storage.sqlite_path)
    sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    return URL.create("sqlite", database=sqlite_path.as_posix()).render_as_string(hide_password=False)


def build_engine(*, echo: bool = False, settings: Settings | None = None) -> Engine:
    """Instantiate a SQLAlchemy engine aligned with project settings."""

    url = _resolve_database_url(settings)
    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite:///"):
        connect_args["check_same_thread"] = False
    return sa.create_engine(url, echo=echo, future=True, pool_pre_ping=True, connect_args=connect_args)


def session_factory(*, settings: Settings | None = None) -> sessionmaker:
    """Return a configured sessionmaker bound to the active engine."""

    engine = build_engine(settings=settings)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
