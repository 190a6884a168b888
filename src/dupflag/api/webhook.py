"""Inbound record webhook.

Automations that deliver record events disable themselves after repeated
non-2xx answers, so every outcome (malformed body, missing fields, internal
failure) is acknowledged with HTTP 200 and described in the JSON body.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool

from dupflag.records.models import extract_title
from dupflag.services.detector import DetectionResult, DuplicateDetector
from dupflag.services.factories import build_detector
from dupflag.settings import get_settings

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@lru_cache(maxsize=1)
def _shared_detector() -> DuplicateDetector:
    return build_detector()


def get_detector_factory() -> Callable[[], DuplicateDetector]:
    """Return a callable producing the process-wide detector."""

    return _shared_detector


def get_name_property() -> str:
    return get_settings().records.name_property


def _skipped(reason: str) -> Dict[str, Any]:
    return {"success": False, "skipped": True, "reason": reason}


def _handle(detector_factory: Callable[[], DuplicateDetector], record_id: str, name: str) -> DetectionResult:
    return detector_factory().handle(record_id, name)


def _unwrap(body: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(body, dict):
        return None
    data = body.get("data")
    return data if isinstance(data, dict) else body


@router.post("/records", summary="Check a created or updated record for duplicates")
async def receive_record(
    request: Request,
    detector_factory: Callable[[], DuplicateDetector] = Depends(get_detector_factory),
    name_property: str = Depends(get_name_property),
):
    try:
        raw = await request.body()
        body = json.loads(raw or b"null")
    except (ValueError, UnicodeDecodeError):
        LOGGER.warning("Skipping webhook delivery with invalid JSON body")
        return _skipped("Invalid JSON in request body")

    record = _unwrap(body)
    if not record or not record.get("id"):
        LOGGER.warning("Skipping webhook delivery without 'id'")
        return _skipped("Missing 'id' field in webhook body")

    record_id = str(record["id"])
    properties = record.get("properties")
    name = extract_title(properties, name_property) if isinstance(properties, dict) else None
    if not name:
        LOGGER.warning("Skipping record %s: missing or invalid '%s' property", record_id, name_property)
        return _skipped(f"Missing or invalid '{name_property}' property")

    LOGGER.info("Processing record %s with name %r", record_id, name)
    try:
        result = await run_in_threadpool(_handle, detector_factory, record_id, name)
    except Exception as exc:
        LOGGER.exception("Error processing webhook for record %s", record_id)
        return {"success": False, "error": "Internal server error", "message": str(exc)}
    return result.to_dict()


__all__ = ["router", "get_detector_factory", "get_name_property"]
