"""Tests for the idempotent tag/untag helpers."""

from __future__ import annotations

from dupflag.records.tagging import tag_as_duplicate, untag_duplicate


def test_tagging_refetches_and_skips_already_tagged(record_source):
    record_source.add("a", "Acme", tagged=True)
    record_source.add("b", "Acme")

    assert tag_as_duplicate(record_source, "a") is False
    assert tag_as_duplicate(record_source, "b") is True
    assert tag_as_duplicate(record_source, "b") is False

    assert record_source.fetch_calls == ["a", "b", "b"]
    assert [record_id for record_id, _ in record_source.update_calls] == ["b"]
    assert record_source.tagged_ids() == {"a", "b"}


def test_dry_run_never_mutates(record_source):
    record_source.add("a", "Acme")
    record_source.add("b", "Acme", tagged=True)

    assert tag_as_duplicate(record_source, "a", dry_run=True) is True
    assert untag_duplicate(record_source, "b", dry_run=True) is True

    assert record_source.update_calls == []
    assert record_source.tagged_ids() == {"b"}


def test_untag_removes_marker_only_when_present(record_source):
    record_source.add("a", "Acme", tagged=True)
    record_source.add("b", "Globex")

    assert untag_duplicate(record_source, "a") is True
    assert untag_duplicate(record_source, "b") is False
    assert record_source.tagged_ids() == set()


def test_multi_select_tagging_preserves_other_options(make_record_source):
    source = make_record_source(tag_kind="multi_select")
    source.add("a", "Acme")

    tag_as_duplicate(source, "a")

    _, tag = source.update_calls[0]
    assert tag.to_property() == {"multi_select": [{"name": "Duplicate"}]}
