"""Job entrypoint for the bulk duplicate reconciliation.

Run with ``DUPFLAG_RECONCILER__DRY_RUN=true`` first on production data; a dry
run reports what would change without touching any record.
"""

from __future__ import annotations

import logging
import os
import sys

from dupflag.services.factories import build_reconciler
from dupflag.services.reconciler import Reconciler, ReconcileReport

LOGGER = logging.getLogger("dupflag.worker.jobs.reconcile")


def _configure_logging() -> None:
    level_name = os.getenv("DUPFLAG_RUNTIME__LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def _build_reconciler() -> Reconciler:
    return build_reconciler()


def _log_report(report: ReconcileReport) -> None:
    LOGGER.info("Records scanned: %s (skipped without name: %s)", report.scanned, report.skipped_unnamed)
    LOGGER.info("Duplicate groups: %s covering %s records", report.duplicate_groups, report.duplicate_records)
    LOGGER.info(
        "Tagged: %s, already tagged: %s, markers removed: %s, failed: %s",
        report.tagged,
        report.already_tagged,
        report.untagged,
        report.failed,
    )
    if report.dry_run:
        LOGGER.info("Dry run: no records were modified")


def main() -> int:
    """Run a full reconciliation, resuming an interrupted one when a checkpoint exists."""

    _configure_logging()

    try:
        reconciler = _build_reconciler()
    except Exception:
        LOGGER.exception("Unable to initialise the reconciler")
        return 1

    try:
        report = reconciler.run()
    except Exception:
        LOGGER.exception("Reconciliation failed; rerun to resume from the last checkpoint")
        return 1

    _log_report(report)
    return 1 if report.failed else 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
