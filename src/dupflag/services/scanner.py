"""Resumable, time-budgeted scan that fills the name index from the record API.

Each invocation walks pages from the persisted cursor, indexes every named
record and checkpoints after each page. Before the host's execution budget
runs out it returns ``PAUSED``; the next invocation picks up at the stored
cursor. Re-indexing a page after a crash is harmless because inserts of an
already indexed record are no-ops that do not count towards the total.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from dupflag.observability import Observability
from dupflag.records.tagging import RecordSource
from dupflag.store.name_index import NameIndexStore
from dupflag.store.scan_progress import ScanProgress, ScanProgressStore

LOGGER = logging.getLogger(__name__)


class ScanState(str, enum.Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass(slots=True)
class ScanResult:
    """Outcome of one scanner invocation."""

    state: ScanState
    total_indexed: int
    indexed_this_run: int = 0
    pages_processed: int = 0
    skipped_unnamed: int = 0
    last_cursor: Optional[str] = None
    elapsed_seconds: float = 0.0

    @property
    def message(self) -> str:
        if self.state is ScanState.COMPLETED:
            return f"Index building complete. Total indexed: {self.total_indexed}"
        return f"Index building paused. Total indexed so far: {self.total_indexed}"


class IndexScanner:
    """Drive cursor pagination over the record set into the name index."""

    def __init__(
        self,
        *,
        source: RecordSource,
        index_store: NameIndexStore,
        progress_store: ScanProgressStore,
        page_size: int = 100,
        time_budget_seconds: float = 45.0,
        budget_fraction: float = 0.85,
        clock: Callable[[], float] = time.monotonic,
        observability: Observability | None = None,
    ) -> None:
        self._source = source
        self._index = index_store
        self._progress = progress_store
        self._page_size = page_size
        self._time_budget = time_budget_seconds
        self._budget_fraction = budget_fraction
        self._clock = clock
        self._obs = observability

    def _emit(self, event: str, **fields) -> None:
        if self._obs:
            self._obs.emit_event(event, **fields)

    def status(self) -> tuple[ScanState, ScanProgress]:
        """Reconstruct the scan state from the persisted progress row."""

        self._progress.ensure_schema()
        progress = self._progress.get_progress()
        if progress.completed:
            return ScanState.COMPLETED, progress
        if progress.last_cursor is None and progress.last_run_at is None:
            return ScanState.NOT_STARTED, progress
        return ScanState.PAUSED, progress

    def _bootstrap(self, progress: ScanProgress) -> ScanProgress:
        # Rows written by the real-time detector before the first scan.
        if progress.completed or progress.total_indexed != 0:
            return progress
        existing = self._index.count()
        if existing <= 0:
            return progress
        LOGGER.info("Adopting %s pre-existing index rows as starting total", existing)
        return self._progress.update_progress(
            last_cursor=progress.last_cursor,
            total_indexed=existing,
            completed=False,
        )

    def _complete(self, total: int) -> int:
        # Records indexed before a mid-page crash are never re-counted by insert().
        reconciled = max(total, self._index.count())
        self._progress.update_progress(last_cursor=None, total_indexed=reconciled, completed=True)
        return reconciled

    def _index_page(self, records) -> tuple[int, int]:
        inserted = 0
        skipped = 0
        for record in records:
            if not record.name or not record.name.strip():
                LOGGER.info("Skipping record %s - no name", record.record_id)
                skipped += 1
                continue
            if self._index.insert(record.name, record.record_id):
                inserted += 1
        return inserted, skipped

    def run(self) -> ScanResult:
        """Run one invocation until completion or the time budget nears its end."""

        started = self._clock()
        self._index.ensure_schema()
        self._progress.ensure_schema()

        progress = self._bootstrap(self._progress.get_progress())
        if progress.completed:
            LOGGER.info("Index building already completed; total indexed: %s", progress.total_indexed)
            return ScanResult(state=ScanState.COMPLETED, total_indexed=progress.total_indexed)

        if progress.last_cursor:
            LOGGER.info(
                "Resuming scan from cursor %s... with %s already indexed",
                progress.last_cursor[:20],
                progress.total_indexed,
            )
        else:
            LOGGER.info("Starting scan from the beginning; %s already indexed", progress.total_indexed)

        cursor = progress.last_cursor
        total = progress.total_indexed
        result = ScanResult(state=ScanState.RUNNING, total_indexed=total, last_cursor=cursor)

        while True:
            page = self._source.query_records(cursor, self._page_size)
            result.pages_processed += 1

            if not page.records:
                total = self._complete(total)
                result.state = ScanState.COMPLETED
                result.last_cursor = None
                LOGGER.info("Empty page returned; index building complete")
                break

            inserted, skipped = self._index_page(page.records)
            total += inserted
            cursor = page.next_cursor
            completed = not page.has_more or cursor is None
            if completed:
                total = self._complete(total)
            else:
                self._progress.update_progress(last_cursor=cursor, total_indexed=total, completed=False)

            result.indexed_this_run += inserted
            result.skipped_unnamed += skipped
            result.total_indexed = total
            result.last_cursor = None if completed else cursor
            elapsed = self._clock() - started
            self._emit(
                "scan.page",
                page=result.pages_processed,
                fetched=len(page.records),
                indexed=inserted,
                already_indexed=len(page.records) - inserted - skipped,
                total_indexed=total,
                elapsed_seconds=round(elapsed, 2),
            )

            if completed:
                result.state = ScanState.COMPLETED
                LOGGER.info("Index building complete; all records indexed")
                break

            if elapsed > self._time_budget * self._budget_fraction:
                result.state = ScanState.PAUSED
                LOGGER.info(
                    "Approaching time budget after %s page(s) (%.2fs); pausing until next invocation",
                    result.pages_processed,
                    elapsed,
                )
                break

        result.total_indexed = total
        result.elapsed_seconds = self._clock() - started
        if self._obs:
            self._obs.increment("scan.indexed", value=result.indexed_this_run)
            self._obs.record_timing("scan.duration", result.elapsed_seconds * 1000)
        self._emit(
            "scan.finished",
            state=result.state.value,
            total_indexed=result.total_indexed,
            indexed_this_run=result.indexed_this_run,
            pages=result.pages_processed,
        )
        return result


__all__ = ["IndexScanner", "ScanResult", "ScanState"]
