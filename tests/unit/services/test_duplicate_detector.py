"""Tests for the real-time duplicate detector."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from dupflag.services.detector import DuplicateDetector
from dupflag.store.name_index import NameIndexStore


@pytest.fixture
def index_store(session_factory) -> NameIndexStore:
    store = NameIndexStore(session_factory=session_factory)
    store.ensure_schema()
    return store


def _detector(source, index_store, observability=None) -> DuplicateDetector:
    return DuplicateDetector(source=source, index_store=index_store, observability=observability)


def test_unique_then_case_variant_tags_both(record_source, index_store):
    record_source.add("1", "Acme")
    record_source.add("2", "acme")
    detector = _detector(record_source, index_store)

    first = detector.handle("1", "Acme")
    second = detector.handle("2", "acme")

    assert first.success is True
    assert first.duplicate is False
    assert first.message == "New unique name indexed"
    assert second.duplicate is True
    assert second.duplicate_count == 1
    assert sorted(second.tagged_ids) == ["1", "2"]
    assert record_source.tagged_ids() == {"1", "2"}
    assert index_store.lookup("acme") == ["1", "2"]


def test_three_sequential_namesakes_are_all_tagged(record_source, index_store):
    detector = _detector(record_source, index_store)
    for record_id in ("1", "2", "3"):
        record_source.add(record_id, "Acme")
        detector.handle(record_id, "Acme")

    assert record_source.tagged_ids() == {"1", "2", "3"}
    assert index_store.lookup("acme") == ["1", "2", "3"]


@pytest.mark.parametrize("raw_name", ["", "   ", None])
def test_blank_name_is_skipped_without_index_change(record_source, index_store, raw_name):
    result = _detector(record_source, index_store).handle("1", raw_name)

    assert result.success is False
    assert result.skipped is True
    assert result.reason
    assert index_store.count() == 0
    assert record_source.fetch_calls == []


def test_redelivered_event_is_idempotent(record_source, index_store):
    record_source.add("1", "Acme")
    record_source.add("2", "Acme")
    detector = _detector(record_source, index_store)
    detector.handle("1", "Acme")
    detector.handle("2", "Acme")
    updates = len(record_source.update_calls)

    again = detector.handle("2", "Acme")

    assert again.duplicate is True
    assert again.duplicate_count == 1
    assert again.tagged_ids == []
    assert len(record_source.update_calls) == updates
    assert index_store.count() == 2


def test_single_event_redelivery_never_matches_itself(record_source, index_store):
    record_source.add("1", "Acme")
    detector = _detector(record_source, index_store)

    detector.handle("1", "Acme")
    again = detector.handle("1", "Acme")

    assert again.duplicate is False
    assert record_source.tagged_ids() == set()


def test_partial_tag_failure_still_tags_others_and_indexes(record_source, index_store):
    for record_id in ("1", "2", "3"):
        record_source.add(record_id, "Acme")
    index_store.insert("Acme", "1")
    index_store.insert("Acme", "2")
    record_source.fail_updates.add("1")

    result = _detector(record_source, index_store).handle("3", "Acme")

    assert result.success is True
    assert result.failed_ids == ["1"]
    assert sorted(result.tagged_ids) == ["2", "3"]
    assert "failed to tag 1" in result.message
    assert index_store.lookup("acme") == ["1", "2", "3"]


def test_missing_existing_record_does_not_block_indexing(record_source, index_store):
    record_source.add("2", "Acme")
    index_store.insert("Acme", "deleted-page")

    result = _detector(record_source, index_store).handle("2", "Acme")

    assert result.failed_ids == ["deleted-page"]
    assert result.tagged_ids == ["2"]
    assert index_store.lookup("acme") == ["deleted-page", "2"]


def test_to_dict_omits_unset_reason(record_source, index_store):
    record_source.add("1", "Acme")
    payload = _detector(record_source, index_store).handle("1", "Acme").to_dict()

    assert payload["success"] is True
    assert "reason" not in payload


def test_emits_detection_event(record_source, index_store):
    record_source.add("1", "Acme")
    observability = MagicMock()

    _detector(record_source, index_store, observability).handle("1", "Acme")

    observability.emit_event.assert_called_once_with(
        "detector.record", record_id="1", name="acme", duplicate=False, matches=0
    )
