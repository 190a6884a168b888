"""Scheduled job entrypoint for the resumable index scan."""

from __future__ import annotations

import logging
import os
import sys

from dupflag.services.factories import build_index_scanner
from dupflag.services.scanner import IndexScanner, ScanResult, ScanState

LOGGER = logging.getLogger("dupflag.worker.jobs.scan")
_BOOL_TRUE = {"1", "true", "yes", "on"}


def _configure_logging() -> None:
    level_name = os.getenv("DUPFLAG_RUNTIME__LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _BOOL_TRUE


def _build_scanner() -> IndexScanner:
    return build_index_scanner()


def _log_result_summary(result: ScanResult) -> None:
    LOGGER.info(
        "Scan invocation finished: state=%s indexed_this_run=%s skipped_unnamed=%s pages=%s elapsed=%.2fs",
        result.state.value,
        result.indexed_this_run,
        result.skipped_unnamed,
        result.pages_processed,
        result.elapsed_seconds,
    )
    LOGGER.info(result.message)


def main() -> int:
    """Run one scan invocation, or keep invoking until done with ``DUPFLAG_SCAN_JOB__UNTIL_COMPLETE``."""

    _configure_logging()

    try:
        scanner = _build_scanner()
    except Exception:
        LOGGER.exception("Unable to initialise the index scanner")
        return 1

    until_complete = _env_bool("DUPFLAG_SCAN_JOB__UNTIL_COMPLETE", False)
    while True:
        try:
            result = scanner.run()
        except Exception:
            LOGGER.exception("Index scan failed; progress is saved up to the last completed page")
            return 1
        _log_result_summary(result)
        if result.state is ScanState.COMPLETED or not until_complete:
            return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
