"""Bulk duplicate reconciliation over the whole record set.

The reconciler is the catch-up tool for records that predate the real-time
detector, and the only component allowed to remove duplicate markers. A run
has three phases, each resumable from the persisted checkpoint:

1. ``fetch``: page through every record, storing snapshots page by page. The
   last page moves the checkpoint to ``fetched`` in the same transaction.
2. ``clean``: group by canonical name; records that carry the marker but have
   no namesake lose it.
3. ``tag``: every member of a group with two or more records gets the marker.
   Each member is re-read first, so the fetch snapshot never decides a write.

Dry runs keep everything in memory and only log the marker changes they would
make.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from dupflag.normalization import normalize_name
from dupflag.observability import Observability
from dupflag.records.tagging import RecordSource, tag_as_duplicate, untag_duplicate
from dupflag.store.reconcile_checkpoint import FetchedRecord, ReconcileCheckpoint, ReconcileCheckpointStore

LOGGER = logging.getLogger(__name__)

PHASE_FETCH = "fetch"
PHASE_FETCHED = "fetched"
PHASE_CLEAN = "clean"
PHASE_TAG = "tag"

DuplicateMap = Dict[str, List[FetchedRecord]]

COUNTER_FIELDS = (
    "scanned",
    "skipped_unnamed",
    "duplicate_groups",
    "duplicate_records",
    "tagged",
    "already_tagged",
    "untagged",
    "failed",
)


@dataclass(slots=True)
class ReconcileReport:
    """Counters reported at the end of a reconciliation."""

    scanned: int = 0
    skipped_unnamed: int = 0
    duplicate_groups: int = 0
    duplicate_records: int = 0
    tagged: int = 0
    already_tagged: int = 0
    untagged: int = 0
    failed: int = 0
    dry_run: bool = False
    resumed_from: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_duplicate_map(records: Iterable[FetchedRecord]) -> Tuple[DuplicateMap, int]:
    """Group records by canonical name.

    Returns:
        The name -> records map (all groups, including singletons) and the
        number of records skipped for lacking a name.
    """

    name_map: DuplicateMap = {}
    skipped = 0
    for record in records:
        if not record.name or not record.name.strip():
            LOGGER.info("Skipping record %s - no name", record.record_id)
            skipped += 1
            continue
        name_map.setdefault(normalize_name(record.name), []).append(record)
    return name_map, skipped


def _plan(name_map: DuplicateMap) -> Tuple[List[str], List[List[Any]]]:
    false_positives = [
        members[0].record_id for members in name_map.values() if len(members) == 1 and members[0].tagged
    ]
    groups = [
        [key, [member.record_id for member in members]]
        for key, members in name_map.items()
        if len(members) > 1
    ]
    return false_positives, groups


class Reconciler:
    """Fetch, clean and tag the full record set with resumable checkpoints."""

    def __init__(
        self,
        *,
        source: RecordSource,
        checkpoint_store: ReconcileCheckpointStore | None = None,
        page_size: int = 100,
        checkpoint_interval: int = 50,
        request_delay_seconds: float = 0.1,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        observability: Observability | None = None,
    ) -> None:
        self._source = source
        self._checkpoints = checkpoint_store
        self._page_size = page_size
        self._checkpoint_interval = max(checkpoint_interval, 1)
        self._delay = max(request_delay_seconds, 0.0)
        self._dry_run = dry_run
        self._sleep = sleep
        self._obs = observability

    def _emit(self, event: str, **fields) -> None:
        if self._obs:
            self._obs.emit_event(event, **fields)

    def _pause(self) -> None:
        if self._delay:
            self._sleep(self._delay)

    # ------------------------------------------------------------------
    # Phase 1: fetch
    # ------------------------------------------------------------------

    def _fetch(self, checkpoint: ReconcileCheckpoint | None) -> List[FetchedRecord]:
        if checkpoint is not None and checkpoint.phase == PHASE_FETCHED:
            LOGGER.info("Fetch already complete; loading %s stored records", checkpoint.processed_count)
            return self._checkpoints.load_records()

        LOGGER.info("Fetching all records from the record source")
        in_memory: List[FetchedRecord] = []
        cursor = checkpoint.cursor if checkpoint else None
        pages = 0
        while True:
            page = self._source.query_records(cursor, self._page_size)
            pages += 1
            cursor = page.next_cursor if page.has_more else None
            if checkpoint is not None:
                checkpoint.cursor = cursor
                if not cursor:
                    checkpoint.phase = PHASE_FETCHED
                self._checkpoints.append_page(page.records, checkpoint)
                fetched_total = checkpoint.processed_count
            else:
                in_memory.extend(
                    FetchedRecord(record_id=r.record_id, name=r.name, tagged=r.tag.has_duplicate_marker())
                    for r in page.records
                )
                fetched_total = len(in_memory)
            LOGGER.info("Fetched page %s: %s records (total: %s)", pages, len(page.records), fetched_total)
            if not cursor:
                break
            self._pause()

        if checkpoint is not None:
            return self._checkpoints.load_records()
        return in_memory

    # ------------------------------------------------------------------
    # Phase 2/3 helpers
    # ------------------------------------------------------------------

    def _maybe_checkpoint(
        self,
        checkpoint: ReconcileCheckpoint | None,
        report: ReconcileReport,
        *,
        force: bool = False,
        include_snapshot: bool = False,
    ) -> None:
        if checkpoint is None:
            return
        if not force and checkpoint.processed_count % self._checkpoint_interval:
            return
        checkpoint.counts = {name: getattr(report, name) for name in COUNTER_FIELDS}
        self._checkpoints.save(checkpoint, include_snapshot=include_snapshot)

    def _clean(self, false_positives: List[str], checkpoint: ReconcileCheckpoint | None, report: ReconcileReport, dry_run: bool) -> None:
        start = checkpoint.processed_count if checkpoint else 0
        LOGGER.info("Removing markers from %s record(s) without namesakes", len(false_positives) - start)
        for position in range(start, len(false_positives)):
            record_id = false_positives[position]
            try:
                if untag_duplicate(self._source, record_id, dry_run=dry_run):
                    report.untagged += 1
            except Exception:
                report.failed += 1
                LOGGER.exception("Failed to remove duplicate marker from record %s", record_id)
            if checkpoint is not None:
                checkpoint.processed_count = position + 1
                self._maybe_checkpoint(checkpoint, report)
            self._pause()

    def _tag(self, groups: List[List[Any]], checkpoint: ReconcileCheckpoint | None, report: ReconcileReport, dry_run: bool) -> None:
        start = checkpoint.processed_count if checkpoint else 0
        position = 0
        for key, members in groups:
            LOGGER.info("Processing %r (%s duplicates)", key, len(members))
            for record_id in members:
                position += 1
                if position <= start:
                    continue
                try:
                    if tag_as_duplicate(self._source, record_id, dry_run=dry_run):
                        report.tagged += 1
                    else:
                        report.already_tagged += 1
                except Exception:
                    report.failed += 1
                    LOGGER.exception("Failed to tag record %s", record_id)
                self._pause()
                if checkpoint is not None:
                    checkpoint.processed_count = position
                    self._maybe_checkpoint(checkpoint, report)
                if position % 50 == 0:
                    LOGGER.info("Progress: %s/%s duplicate records processed", position, report.duplicate_records)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, dry_run: Optional[bool] = None) -> ReconcileReport:
        """Run (or resume) a full reconciliation.

        Args:
            dry_run: Override the configured dry-run flag for this run.
        """

        dry_run = self._dry_run if dry_run is None else dry_run
        started = time.monotonic()
        report = ReconcileReport(dry_run=dry_run)
        persist = self._checkpoints is not None and not dry_run

        checkpoint: ReconcileCheckpoint | None = None
        if persist:
            self._checkpoints.ensure_schema()
            checkpoint = self._checkpoints.load()
            if checkpoint is None:
                checkpoint = ReconcileCheckpoint(phase=PHASE_FETCH)
            else:
                report.resumed_from = checkpoint.phase
                LOGGER.info(
                    "Resuming reconciliation in phase=%s processed=%s",
                    checkpoint.phase,
                    checkpoint.processed_count,
                )
                for name in COUNTER_FIELDS:
                    setattr(report, name, int(checkpoint.counts.get(name, 0)))

        if checkpoint is None or checkpoint.phase in (PHASE_FETCH, PHASE_FETCHED):
            records = self._fetch(checkpoint)
            name_map, skipped = build_duplicate_map(records)
            false_positives, groups = _plan(name_map)
            report.scanned = len(records)
            report.skipped_unnamed = skipped
            report.duplicate_groups = len(groups)
            report.duplicate_records = sum(len(members) for _, members in groups)
            LOGGER.info(
                "Found %s duplicate names affecting %s records; %s marked record(s) without namesakes",
                report.duplicate_groups,
                report.duplicate_records,
                len(false_positives),
            )
            self._emit(
                "reconcile.plan",
                scanned=report.scanned,
                duplicate_groups=report.duplicate_groups,
                duplicate_records=report.duplicate_records,
                false_positives=len(false_positives),
                dry_run=dry_run,
            )
            if checkpoint is not None:
                checkpoint.phase = PHASE_CLEAN
                checkpoint.cursor = None
                checkpoint.processed_count = 0
                checkpoint.snapshot = {"false_positives": false_positives, "groups": groups}
                self._maybe_checkpoint(checkpoint, report, force=True, include_snapshot=True)
        else:
            false_positives = list(checkpoint.snapshot.get("false_positives") or [])
            groups = list(checkpoint.snapshot.get("groups") or [])

        if checkpoint is None or checkpoint.phase == PHASE_CLEAN:
            self._clean(false_positives, checkpoint, report, dry_run)
            if checkpoint is not None:
                checkpoint.phase = PHASE_TAG
                checkpoint.processed_count = 0
                self._maybe_checkpoint(checkpoint, report, force=True)

        self._tag(groups, checkpoint, report, dry_run)

        if checkpoint is not None:
            self._checkpoints.clear()

        elapsed = time.monotonic() - started
        LOGGER.info(
            "Reconciliation complete: scanned=%s duplicates=%s tagged=%s already_tagged=%s untagged=%s failed=%s dry_run=%s",
            report.scanned,
            report.duplicate_records,
            report.tagged,
            report.already_tagged,
            report.untagged,
            report.failed,
            dry_run,
        )
        if self._obs:
            self._obs.increment("reconcile.tagged", value=report.tagged)
            self._obs.increment("reconcile.untagged", value=report.untagged)
            self._obs.record_timing("reconcile.duration", elapsed * 1000)
        self._emit("reconcile.finished", **report.to_dict())
        return report


__all__ = ["Reconciler", "ReconcileReport", "build_duplicate_map", "PHASE_FETCH", "PHASE_FETCHED", "PHASE_CLEAN", "PHASE_TAG"]
