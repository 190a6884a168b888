"""Persisted state that lets an interrupted reconciliation resume.

Two tables back a reconciliation: ``reconcile_records`` accumulates the
fetched record snapshots page by page, and the ``reconcile_checkpoint``
singleton row holds the phase, the fetch cursor, the running report counters
and, once fetching is done, the serialized work plan plus how far through it
the run has progressed.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Session, sessionmaker

from dupflag.records.models import Record
from dupflag.retry import NO_RETRY, RetryPolicy
from dupflag.store import sql as sql_schema
from dupflag.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)

CHECKPOINT_ROW_ID = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ReconcileCheckpoint:
    """Phase, fetch cursor and serialized work plan of a reconciliation."""

    phase: str
    cursor: Optional[str] = None
    snapshot: Dict[str, Any] = field(default_factory=dict)
    processed_count: int = 0
    counts: Dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class FetchedRecord:
    """Compact snapshot kept between fetch and grouping."""

    record_id: str
    name: Optional[str]
    tagged: bool


class ReconcileCheckpointStore:
    """CRUD helpers around the reconciliation checkpoint tables."""

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
                sql_schema.METADATA.create_all(
                    session.connection(),
                    tables=[sql_schema.reconcile_checkpoint, sql_schema.reconcile_records],
                )

        self._retry.call(_create)

    @staticmethod
    def _write_checkpoint(session: Session, checkpoint: ReconcileCheckpoint, *, include_snapshot: bool) -> None:
        table = sql_schema.reconcile_checkpoint
        values: Dict[str, Any] = {
            "phase": checkpoint.phase,
            "cursor": checkpoint.cursor,
            "processed_count": checkpoint.processed_count,
            "counts": checkpoint.counts,
            "updated_at": _utcnow(),
        }
        if include_snapshot:
            values["snapshot"] = checkpoint.snapshot
        updated = session.execute(sa.update(table).where(table.c.id == CHECKPOINT_ROW_ID).values(**values))
        if updated.rowcount == 0:
            values.setdefault("snapshot", checkpoint.snapshot)
            session.execute(sa.insert(table).values(id=CHECKPOINT_ROW_ID, **values))

    def load(self) -> Optional[ReconcileCheckpoint]:
        """Return the saved checkpoint or ``None`` when no run is in flight."""

        def _load() -> Optional[ReconcileCheckpoint]:
            table = sql_schema.reconcile_checkpoint
            with self._session_scope() as session:
                row = session.execute(sa.select(table).where(table.c.id == CHECKPOINT_ROW_ID)).one_or_none()
            if row is None:
                return None
            return ReconcileCheckpoint(
                phase=row.phase,
                cursor=row.cursor,
                snapshot=row.snapshot or {},
                processed_count=int(row.processed_count or 0),
                counts=row.counts or {},
            )

        return self._retry.call(_load)

    def save(self, checkpoint: ReconcileCheckpoint, *, include_snapshot: bool = True) -> None:
        """Persist ``checkpoint``.

        Phase, cursor, progress and counters are always written; the work plan
        only when ``include_snapshot`` is set.
        """

        def _save() -> None:
            with self._session_scope() as session:
                self._write_checkpoint(session, checkpoint, include_snapshot=include_snapshot)

        self._retry.call(_save)
        LOGGER.debug("Saved reconcile checkpoint phase=%s processed=%s", checkpoint.phase, checkpoint.processed_count)

    def append_page(self, records: Iterable[Record], checkpoint: ReconcileCheckpoint) -> int:
        """Store one fetched page and advance the cursor in a single transaction.

        ``checkpoint.processed_count`` is advanced by the number of newly stored
        records once the transaction commits.

        Returns:
            Number of records newly stored (records already stored are skipped).
        """

        page = list(records)

        def _append() -> int:
            table = sql_schema.reconcile_records
            with self._session_scope() as session:
                ids = [record.record_id for record in page]
                existing = set()
                if ids:
                    existing = {
                        row.record_id
                        for row in session.execute(sa.select(table.c.record_id).where(table.c.record_id.in_(ids)))
                    }
                rows = []
                for record in page:
                    if record.record_id in existing:
                        continue
                    existing.add(record.record_id)
                    rows.append(
                        {
                            "record_id": record.record_id,
                            "name": record.name,
                            "tagged": record.tag.has_duplicate_marker(),
                        }
                    )
                if rows:
                    session.execute(sa.insert(table), rows)
                advanced = replace(checkpoint, processed_count=checkpoint.processed_count + len(rows))
                self._write_checkpoint(session, advanced, include_snapshot=False)
            return len(rows)

        added = self._retry.call(_append)
        checkpoint.processed_count += added
        return added

    def load_records(self) -> List[FetchedRecord]:
        """Return every fetched record in fetch order."""

        def _load() -> List[FetchedRecord]:
            table = sql_schema.reconcile_records
            with self._session_scope() as session:
                rows = session.execute(sa.select(table).order_by(table.c.seq.asc())).fetchall()
            return [FetchedRecord(record_id=row.record_id, name=row.name, tagged=bool(row.tagged)) for row in rows]

        return self._retry.call(_load)

    def clear(self) -> None:
        """Drop the checkpoint row and all fetched records."""

        def _clear() -> None:
            with self._session_scope() as session:
                session.execute(sa.delete(sql_schema.reconcile_records))
                session.execute(
                    sa.delete(sql_schema.reconcile_checkpoint).where(
                        sql_schema.reconcile_checkpoint.c.id == CHECKPOINT_ROW_ID
                    )
                )

        self._retry.call(_clear)


__all__ = ["ReconcileCheckpoint", "ReconcileCheckpointStore", "FetchedRecord", "CHECKPOINT_ROW_ID"]
