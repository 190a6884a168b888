"""Unit tests for the scan progress singleton row."""

from __future__ import annotations

import sqlalchemy as sa

from dupflag.store import sql as sql_schema
from dupflag.store.scan_progress import ScanProgressStore


def _store(session_factory) -> ScanProgressStore:
    store = ScanProgressStore(session_factory=session_factory)
    store.ensure_schema()
    return store


def test_get_progress_initialises_single_row(session_factory):
    store = _store(session_factory)

    first = store.get_progress()
    second = store.get_progress()

    assert first.last_cursor is None
    assert first.total_indexed == 0
    assert first.completed is False
    assert second == first
    with session_factory() as session:
        assert session.execute(sa.select(sa.func.count()).select_from(sql_schema.scan_progress)).scalar_one() == 1


def test_update_progress_round_trips(session_factory):
    store = _store(session_factory)
    store.get_progress()

    store.update_progress(last_cursor="cursor-3", total_indexed=250, completed=False)
    progress = store.get_progress()

    assert progress.last_cursor == "cursor-3"
    assert progress.total_indexed == 250
    assert progress.completed is False
    assert progress.last_run_at is not None


def test_update_progress_never_decreases_total(session_factory):
    store = _store(session_factory)
    store.update_progress(last_cursor="c1", total_indexed=100, completed=False)

    result = store.update_progress(last_cursor="c2", total_indexed=40, completed=False)

    assert result.total_indexed == 100
    assert store.get_progress().total_indexed == 100
    assert store.get_progress().last_cursor == "c2"


def test_update_without_existing_row_creates_it(session_factory):
    store = _store(session_factory)

    store.update_progress(last_cursor=None, total_indexed=7, completed=True)

    progress = store.get_progress()
    assert progress.completed is True
    assert progress.total_indexed == 7
