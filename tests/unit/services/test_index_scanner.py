"""Tests for the resumable, time-budgeted index scanner."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from dupflag.records.errors import RecordApiError
from dupflag.services.scanner import IndexScanner, ScanState
from dupflag.store.name_index import NameIndexStore
from dupflag.store.scan_progress import ScanProgressStore


class _FakeClock:
    """Advance by ``step`` seconds every time the scanner reads the time."""

    def __init__(self, step: float = 0.0) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


def _scanner(source, session_factory, *, page_size=2, clock=None, budget=45.0, observability=None):
    return IndexScanner(
        source=source,
        index_store=NameIndexStore(session_factory=session_factory),
        progress_store=ScanProgressStore(session_factory=session_factory),
        page_size=page_size,
        time_budget_seconds=budget,
        clock=clock or _FakeClock(),
        observability=observability,
    )


def _seed(source, count: int) -> None:
    for idx in range(count):
        source.add(f"r{idx}", f"Name {idx % 3}")


def test_single_invocation_indexes_everything_within_budget(record_source, session_factory):
    _seed(record_source, 5)
    scanner = _scanner(record_source, session_factory)

    result = scanner.run()

    assert result.state is ScanState.COMPLETED
    assert result.total_indexed == 5
    assert result.indexed_this_run == 5
    assert result.pages_processed == 3
    assert scanner.status()[0] is ScanState.COMPLETED
    assert NameIndexStore(session_factory=session_factory).lookup("name 0") == ["r0", "r3"]


def test_pauses_near_budget_and_resumes_from_cursor(record_source, session_factory):
    _seed(record_source, 5)
    # Every clock read advances 20s of a 45s budget: the 85% threshold trips after page two.
    scanner = _scanner(record_source, session_factory, clock=_FakeClock(step=20.0))

    first = scanner.run()

    assert first.state is ScanState.PAUSED
    assert first.total_indexed == 4
    assert first.last_cursor == "4"
    assert "paused" in first.message
    state, progress = scanner.status()
    assert state is ScanState.PAUSED
    assert progress.last_cursor == "4"

    second = _scanner(record_source, session_factory).run()

    assert record_source.query_calls[-1] == "4"
    assert second.state is ScanState.COMPLETED
    assert second.total_indexed == 5
    assert second.indexed_this_run == 1


def test_completed_scan_does_not_query_again(record_source, session_factory):
    _seed(record_source, 3)
    _scanner(record_source, session_factory).run()
    calls_after_first = len(record_source.query_calls)

    again = _scanner(record_source, session_factory).run()

    assert again.state is ScanState.COMPLETED
    assert again.total_indexed == 3
    assert len(record_source.query_calls) == calls_after_first


def test_crash_mid_run_does_not_under_or_double_count(record_source, session_factory):
    _seed(record_source, 6)
    record_source.fail_queries_after = 2

    with pytest.raises(RecordApiError):
        _scanner(record_source, session_factory).run()

    progress = ScanProgressStore(session_factory=session_factory).get_progress()
    assert progress.last_cursor == "4"
    assert progress.total_indexed == 4

    record_source.fail_queries_after = None
    result = _scanner(record_source, session_factory).run()

    assert result.state is ScanState.COMPLETED
    assert result.total_indexed == 6


def test_reprocessed_page_after_partial_write_is_not_double_counted(record_source, session_factory):
    _seed(record_source, 4)
    index = NameIndexStore(session_factory=session_factory)
    index.ensure_schema()
    # Simulate a crash after part of the first page was indexed but before progress was saved.
    index.insert("Name 0", "r0")
    progress = ScanProgressStore(session_factory=session_factory)
    progress.ensure_schema()
    progress.update_progress(last_cursor=None, total_indexed=0, completed=False)

    result = _scanner(record_source, session_factory).run()

    assert result.total_indexed == 4
    assert index.count() == 4


def test_bootstrap_adopts_rows_written_by_detector(record_source, session_factory):
    _seed(record_source, 4)
    index = NameIndexStore(session_factory=session_factory)
    index.ensure_schema()
    index.insert("Name 1", "r1")
    index.insert("Late arrival", "webhook-only")

    result = _scanner(record_source, session_factory, page_size=100).run()

    assert result.indexed_this_run == 3
    assert result.total_indexed == 5


def test_unnamed_records_are_skipped(record_source, session_factory):
    record_source.add("named", "Acme")
    record_source.add("blank", "   ")
    record_source.add("missing", None)

    result = _scanner(record_source, session_factory, page_size=10).run()

    assert result.total_indexed == 1
    assert result.skipped_unnamed == 2


def test_empty_source_completes_immediately(record_source, session_factory):
    scanner = _scanner(record_source, session_factory)
    assert scanner.status()[0] is ScanState.NOT_STARTED

    result = scanner.run()

    assert result.state is ScanState.COMPLETED
    assert result.total_indexed == 0
    assert record_source.query_calls == [None]


def test_emits_page_and_finish_events(record_source, session_factory):
    _seed(record_source, 3)
    observability = MagicMock()

    _scanner(record_source, session_factory, observability=observability).run()

    events = [call.args[0] for call in observability.emit_event.call_args_list]
    assert events == ["scan.page", "scan.page", "scan.finished"]
    observability.increment.assert_called_once_with("scan.indexed", value=3)
