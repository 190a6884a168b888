"""Real-time duplicate detection for single record events."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from dupflag.normalization import normalize_name
from dupflag.observability import Observability
from dupflag.records.tagging import RecordSource, tag_as_duplicate
from dupflag.store.name_index import NameIndexStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class DetectionResult:
    """Outcome of handling one record event; serialized as the webhook body."""

    success: bool
    message: str
    skipped: bool = False
    duplicate: bool = False
    duplicate_count: int = 0
    tagged_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        return {key: value for key, value in payload.items() if value is not None}


class DuplicateDetector:
    """Check a new record against the name index, tag namesakes and index it."""

    def __init__(
        self,
        *,
        source: RecordSource,
        index_store: NameIndexStore,
        observability: Observability | None = None,
    ) -> None:
        self._source = source
        self._index = index_store
        self._obs = observability

    def _tag(self, record_id: str, result: DetectionResult) -> None:
        try:
            if tag_as_duplicate(self._source, record_id):
                result.tagged_ids.append(record_id)
        except Exception:
            result.failed_ids.append(record_id)
            LOGGER.exception("Failed to tag record %s as duplicate", record_id)

    def handle(self, record_id: str, raw_name: Optional[str]) -> DetectionResult:
        """Process one created/updated record.

        Redelivery of the same event is a no-op: the record is already indexed
        and tagging is skipped for records that already carry the marker.
        """

        if not raw_name or not raw_name.strip():
            LOGGER.info("Skipping record %s - no name", record_id)
            return DetectionResult(success=False, skipped=True, reason="No name", message="Record has no name")

        key = normalize_name(raw_name)
        others = [match for match in self._index.lookup(key) if match != record_id]

        if not others:
            self._index.insert(raw_name, record_id)
            LOGGER.info("Name %r is unique; indexed record %s", key, record_id)
            self._emit(record_id, key, duplicate=False, matches=0)
            return DetectionResult(success=True, message="New unique name indexed")

        LOGGER.info("Found %s existing record(s) named %r for record %s", len(others), key, record_id)
        result = DetectionResult(
            success=True,
            duplicate=True,
            duplicate_count=len(others),
            message=f"Tagged {len(others) + 1} records as duplicates",
        )
        try:
            self._tag(record_id, result)
            for other in others:
                self._tag(other, result)
        finally:
            self._index.insert(raw_name, record_id)

        if result.failed_ids:
            result.message = f"Found {len(others)} duplicate(s); failed to tag {len(result.failed_ids)} record(s)"
        self._emit(record_id, key, duplicate=True, matches=len(others), failed=len(result.failed_ids))
        return result

    def _emit(self, record_id: str, key: str, **fields: Any) -> None:
        if self._obs is None:
            return
        self._obs.emit_event("detector.record", record_id=record_id, name=key, **fields)
        if fields.get("duplicate"):
            self._obs.increment("detector.duplicates")


__all__ = ["DetectionResult", "DuplicateDetector"]
