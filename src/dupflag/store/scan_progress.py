"""Single-row progress bookkeeping for the resumable index scan."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, Optional

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from dupflag.retry import NO_RETRY, RetryPolicy
from dupflag.store import sql as sql_schema
from dupflag.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)

PROGRESS_ROW_ID = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ScanProgress:
    """Where the index scan stands."""

    last_cursor: Optional[str]
    total_indexed: int
    completed: bool
    last_run_at: Optional[datetime] = None


class ScanProgressStore:
    """Read and write the ``scan_progress`` singleton row.

    Only the index scanner writes this row, and only one scanner runs at a
    time; there is no optimistic-concurrency guard.
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
        def _create() -> None:
            with self._session_scope() as session:
                sql_schema.METADATA.create_all(session.connection(), tables=[sql_schema.scan_progress])

        self._retry.call(_create)

    def _select(self, session: Session) -> Optional[ScanProgress]:
        row = session.execute(
            sa.select(sql_schema.scan_progress).where(sql_schema.scan_progress.c.id == PROGRESS_ROW_ID)
        ).one_or_none()
        if row is None:
            return None
        return ScanProgress(
            last_cursor=row.last_cursor,
            total_indexed=int(row.total_indexed or 0),
            completed=bool(row.completed),
            last_run_at=row.last_run_at,
        )

    def get_progress(self) -> ScanProgress:
        """Return the progress row, creating it on first use."""

        def _get() -> ScanProgress:
            with self._session_scope() as session:
                existing = self._select(session)
            if existing is not None:
                return existing
            try:
                with self._session_scope() as session:
                    session.execute(
                        sa.insert(sql_schema.scan_progress).values(
                            id=PROGRESS_ROW_ID,
                            last_cursor=None,
                            total_indexed=0,
                            completed=False,
                            started_at=_utcnow(),
                        )
                    )
                LOGGER.info("Initialised scan progress row")
            except IntegrityError:
                LOGGER.debug("Scan progress row created concurrently; re-reading")
            with self._session_scope() as session:
                created = self._select(session)
            if created is None:  # pragma: no cover - row was inserted above
                raise RuntimeError("scan progress row missing after initialisation")
            return created

        return self._retry.call(_get)

    def update_progress(self, *, last_cursor: Optional[str], total_indexed: int, completed: bool) -> ScanProgress:
        """Persist the scan position.

        ``total_indexed`` never decreases; a lower value is ignored with a warning.
        """

        def _update() -> ScanProgress:
            with self._session_scope() as session:
                current = self._select(session)
                total = total_indexed
                if current is not None and total < current.total_indexed:
                    LOGGER.warning(
                        "Ignoring decrease of total_indexed from %s to %s",
                        current.total_indexed,
                        total_indexed,
                    )
                    total = current.total_indexed
                timestamp = _utcnow()
                values = {
                    "last_cursor": last_cursor,
                    "total_indexed": total,
                    "completed": completed,
                    "last_run_at": timestamp,
                }
                if current is None:
                    session.execute(sa.insert(sql_schema.scan_progress).values(id=PROGRESS_ROW_ID, **values))
                else:
                    session.execute(
                        sa.update(sql_schema.scan_progress)
                        .where(sql_schema.scan_progress.c.id == PROGRESS_ROW_ID)
                        .values(**values)
                    )
            return ScanProgress(last_cursor=last_cursor, total_indexed=total, completed=completed, last_run_at=timestamp)

        return self._retry.call(_update)


__all__ = ["ScanProgress", "ScanProgressStore", "PROGRESS_ROW_ID"]
