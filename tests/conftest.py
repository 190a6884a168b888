"""Shared fixtures: SQLite session factories and an in-memory record source."""

from __future__ import annotations

from typing import Dict, List, Optional

import pytest
import sqlalchemy as sa
from sqlalchemy.orm import sessionmaker

from dupflag.records.errors import RecordApiError
from dupflag.records.models import MultiSelectTag, Record, RecordPage, SelectTag, TagState


class FakeRecordSource:
    """In-memory stand-in for :class:`~dupflag.records.client.RecordApiClient`.

    Cursors are stringified offsets. ``fail_updates`` holds record ids whose
    update raises a 500, ``fail_queries_after`` makes the n-th query raise.
    """

    def __init__(self, *, tag_kind: str = "select") -> None:
        self.tag_kind = tag_kind
        self._records: Dict[str, Record] = {}
        self.query_calls: List[Optional[str]] = []
        self.fetch_calls: List[str] = []
        self.update_calls: List[tuple[str, TagState]] = []
        self.fail_updates: set[str] = set()
        self.fail_queries_after: int | None = None

    def _empty_tag(self) -> TagState:
        return MultiSelectTag() if self.tag_kind == "multi_select" else SelectTag()

    def add(self, record_id: str, name: Optional[str], *, tagged: bool = False) -> Record:
        tag = self._empty_tag()
        if tagged:
            tag = tag.with_duplicate_marker_added()
        record = Record(record_id=record_id, name=name, tag=tag)
        self._records[record_id] = record
        return record

    def is_tagged(self, record_id: str) -> bool:
        return self._records[record_id].tag.has_duplicate_marker()

    def tagged_ids(self) -> set[str]:
        return {record_id for record_id, record in self._records.items() if record.tag.has_duplicate_marker()}

    def query_records(self, cursor: Optional[str] = None, page_size: int = 100) -> RecordPage:
        if self.fail_queries_after is not None and len(self.query_calls) >= self.fail_queries_after:
            raise RecordApiError(500, "query failed")
        self.query_calls.append(cursor)
        ordered = list(self._records.values())
        start = int(cursor or 0)
        end = start + page_size
        has_more = end < len(ordered)
        return RecordPage(
            records=list(ordered[start:end]),
            next_cursor=str(end) if has_more else None,
            has_more=has_more,
        )

    def fetch_record(self, record_id: str) -> Record:
        self.fetch_calls.append(record_id)
        if record_id not in self._records:
            raise RecordApiError(404, f"record {record_id} not found")
        return self._records[record_id]

    def update_tag(self, record_id: str, tag: TagState) -> None:
        if record_id in self.fail_updates:
            raise RecordApiError(500, f"update of {record_id} failed")
        self.update_calls.append((record_id, tag))
        current = self._records[record_id]
        self._records[record_id] = Record(record_id=record_id, name=current.name, tag=tag)


@pytest.fixture
def record_source() -> FakeRecordSource:
    return FakeRecordSource()


@pytest.fixture
def session_factory(tmp_path) -> sessionmaker:
    engine = sa.create_engine(f"sqlite:///{tmp_path / 'dupflag.db'}", future=True)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def make_record_source():
    return FakeRecordSource
