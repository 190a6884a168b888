"""Idempotent duplicate-marker writes shared by the detector and reconciler."""

from __future__ import annotations

import logging
from typing import Protocol

from dupflag.records.models import Record, RecordPage, TagState

LOGGER = logging.getLogger(__name__)


class RecordSource(Protocol):
    """Subset of :class:`~dupflag.records.client.RecordApiClient` the services use."""

    def query_records(self, cursor: str | None = None, page_size: int = 100) -> RecordPage: ...

    def fetch_record(self, record_id: str) -> Record: ...

    def update_tag(self, record_id: str, tag: TagState) -> None: ...


def tag_as_duplicate(source: RecordSource, record_id: str, *, dry_run: bool = False) -> bool:
    """Mark ``record_id`` as a duplicate unless its current state already is.

    The record is re-fetched first so decisions never rely on a stale snapshot.

    Returns:
        True when a marker was (or, in dry-run mode, would have been) added;
        False when the record already carried it.
    """

    current = source.fetch_record(record_id)
    if current.tag.has_duplicate_marker():
        LOGGER.debug("Record %s already marked duplicate, skipping update", record_id)
        return False
    if dry_run:
        LOGGER.info("[dry run] Would mark record %s as duplicate", record_id)
        return True
    source.update_tag(record_id, current.tag.with_duplicate_marker_added())
    LOGGER.info("Marked record %s as duplicate", record_id)
    return True


def untag_duplicate(source: RecordSource, record_id: str, *, dry_run: bool = False) -> bool:
    """Remove the duplicate marker from ``record_id`` if it is currently present."""

    current = source.fetch_record(record_id)
    if not current.tag.has_duplicate_marker():
        return False
    if dry_run:
        LOGGER.info("[dry run] Would remove duplicate marker from record %s", record_id)
        return True
    source.update_tag(record_id, current.tag.without_duplicate_marker())
    LOGGER.info("Removed duplicate marker from record %s", record_id)
    return True


__all__ = ["RecordSource", "tag_as_duplicate", "untag_duplicate"]
