"""Routes that drive and inspect the resumable index scan."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict

from fastapi import APIRouter, Depends

from dupflag.services.factories import build_index_scanner
from dupflag.services.scanner import IndexScanner

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/scan", tags=["scan"])


def get_scanner_factory() -> Callable[[], IndexScanner]:
    return build_index_scanner


@router.post("/run", summary="Run one time-budgeted index scan invocation")
def run_scan(scanner_factory: Callable[[], IndexScanner] = Depends(get_scanner_factory)) -> Dict[str, Any]:
    """Advance the scan; schedulers call this repeatedly until it reports completion.

    Always answers 200 so timer-driven callers keep firing after a failed run.
    """

    run_id = uuid.uuid4().hex[:8]
    LOGGER.info("Index scan run %s starting", run_id)
    try:
        result = scanner_factory().run()
    except Exception as exc:
        LOGGER.exception("Error during index building (run %s)", run_id)
        return {"run_id": run_id, "success": False, "message": f"Error during index building: {exc}"}

    return {
        "run_id": run_id,
        "success": True,
        "state": result.state.value,
        "total_indexed": result.total_indexed,
        "indexed_this_run": result.indexed_this_run,
        "pages_processed": result.pages_processed,
        "message": result.message,
    }


@router.get("/progress", summary="Report persisted scan progress")
def get_progress(scanner_factory: Callable[[], IndexScanner] = Depends(get_scanner_factory)) -> Dict[str, Any]:
    state, progress = scanner_factory().status()
    return {
        "state": state.value,
        "total_indexed": progress.total_indexed,
        "completed": progress.completed,
        "last_cursor": progress.last_cursor,
        "last_run_at": progress.last_run_at.isoformat() if progress.last_run_at else None,
    }


__all__ = ["router", "get_scanner_factory"]
