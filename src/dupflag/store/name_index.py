"""Persistent canonical-name index used for duplicate lookups."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from dupflag.normalization import normalize_name
from dupflag.retry import NO_RETRY, RetryPolicy
from dupflag.store import sql as sql_schema
from dupflag.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NameIndexStore:
    """Map canonical names to the record ids that share them.

    A record id appears at most once (unique constraint); any number of ids may
    share a name, which is what makes them duplicates. Every call goes through
    the shared retry policy so busy-database errors are waited out.
    """

    def __init__(self, *, session_factory: sessionmaker | None = None, retry_policy: RetryPolicy | None = None) -> None:
        self._session_factory = session_factory or default_session_factory()
        self._retry = retry_policy or NO_RETRY

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ensure_schema(self) -> None:
        """Create the index table and its name lookup index when missing."""

        def _create() -> None:
            with self._session_scope() as session:
                sql_schema.METADATA.create_all(session.connection(), tables=[sql_schema.name_index])

        self._retry.call(_create)

    def lookup(self, key: str) -> List[str]:
        """Return record ids indexed under ``key`` in insertion order."""

        def _select() -> List[str]:
            with self._session_scope() as session:
                rows = session.execute(
                    sa.select(sql_schema.name_index.c.record_id)
                    .where(sql_schema.name_index.c.name == key)
                    .order_by(sql_schema.name_index.c.id.asc())
                ).fetchall()
            return [row.record_id for row in rows]

        return self._retry.call(_select)

    def insert(self, raw_name: str, record_id: str) -> bool:
        """Index ``record_id`` under the canonical form of ``raw_name``.

        Returns:
            True when a row was written, False when the record was already indexed.

        Raises:
            ValueError: If ``raw_name`` normalizes to an empty key.
        """

        key = normalize_name(raw_name)
        if not key:
            raise ValueError(f"cannot index record {record_id} under an empty name")

        def _insert() -> bool:
            try:
                with self._session_scope() as session:
                    session.execute(
                        sa.insert(sql_schema.name_index).values(name=key, record_id=record_id, created_at=_utcnow())
                    )
            except IntegrityError:
                LOGGER.debug("Record %s already indexed, skipping", record_id)
                return False
            return True

        inserted = self._retry.call(_insert)
        if inserted:
            LOGGER.debug("Indexed name=%r record_id=%s", key, record_id)
        return inserted

    def count(self) -> int:
        """Return the total number of indexed records."""

        def _count() -> int:
            with self._session_scope() as session:
                return int(session.execute(sa.select(sa.func.count()).select_from(sql_schema.name_index)).scalar_one())

        return self._retry.call(_count)


__all__ = ["NameIndexStore"]
