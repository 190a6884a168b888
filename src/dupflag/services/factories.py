"""Factory helpers that instantiate services based on configuration.

These helpers centralize how :mod:`dupflag.settings` is turned into concrete
record clients, stores and services so the API routes and job entrypoints
share one wiring.
"""

from __future__ import annotations

from sqlalchemy.orm import sessionmaker

from dupflag.observability import get_observability
from dupflag.records.client import RecordApiClient
from dupflag.retry import RetryPolicy
from dupflag.services.detector import DuplicateDetector
from dupflag.services.reconciler import Reconciler
from dupflag.services.scanner import IndexScanner
from dupflag.settings import Settings, get_settings
from dupflag.store.name_index import NameIndexStore
from dupflag.store.reconcile_checkpoint import ReconcileCheckpointStore
from dupflag.store.scan_progress import ScanProgressStore
from dupflag.store.sql import session_factory as build_sql_session_factory


def build_retry_policy(*, settings: Settings | None = None, retry_server_errors: bool | None = None) -> RetryPolicy:
    """Return the shared backoff policy.

    Args:
        settings: Optional settings override.
        retry_server_errors: Force 5xx retries on or off regardless of config.
    """

    resolved = settings or get_settings()
    server_errors = resolved.retry.retry_server_errors if retry_server_errors is None else retry_server_errors
    return RetryPolicy(
        max_attempts=resolved.retry.max_attempts,
        initial_delay=resolved.retry.initial_delay_seconds,
        retry_server_errors=server_errors,
    )


def build_record_client(
    *,
    settings: Settings | None = None,
    retry_policy: RetryPolicy | None = None,
) -> RecordApiClient:
    """Instantiate a :class:`RecordApiClient` for the configured database.

    Raises:
        ValueError: If the API token or database id is not configured.
    """

    resolved = settings or get_settings()
    records = resolved.records
    return RecordApiClient(
        token=records.token or "",
        database_id=records.database_id or "",
        api_base=records.api_base,
        api_version=records.api_version,
        name_property=records.name_property,
        tag_property=records.tag_property,
        tag_kind=records.tag_kind,
        tag_label=records.tag_value,
        timeout_seconds=records.timeout_seconds,
        retry_policy=retry_policy or build_retry_policy(settings=resolved),
    )


def build_name_index_store(
    *, settings: Settings | None = None, session_factory: sessionmaker | None = None
) -> NameIndexStore:
    resolved = settings or get_settings()
    return NameIndexStore(
        session_factory=session_factory or build_sql_session_factory(settings=resolved),
        retry_policy=build_retry_policy(settings=resolved),
    )


def build_scan_progress_store(
    *, settings: Settings | None = None, session_factory: sessionmaker | None = None
) -> ScanProgressStore:
    resolved = settings or get_settings()
    return ScanProgressStore(
        session_factory=session_factory or build_sql_session_factory(settings=resolved),
        retry_policy=build_retry_policy(settings=resolved),
    )


def build_reconcile_checkpoint_store(
    *, settings: Settings | None = None, session_factory: sessionmaker | None = None
) -> ReconcileCheckpointStore:
    resolved = settings or get_settings()
    return ReconcileCheckpointStore(
        session_factory=session_factory or build_sql_session_factory(settings=resolved),
        retry_policy=build_retry_policy(settings=resolved),
    )


def build_index_scanner(*, settings: Settings | None = None, source=None) -> IndexScanner:
    """Wire an :class:`IndexScanner` against the configured record API and database."""

    resolved = settings or get_settings()
    factory = build_sql_session_factory(settings=resolved)
    return IndexScanner(
        source=source or build_record_client(settings=resolved),
        index_store=build_name_index_store(settings=resolved, session_factory=factory),
        progress_store=build_scan_progress_store(settings=resolved, session_factory=factory),
        page_size=resolved.records.page_size,
        time_budget_seconds=resolved.scanner.time_budget_seconds,
        budget_fraction=resolved.scanner.budget_fraction,
        observability=get_observability(component="scanner", settings=resolved),
    )


def build_reconciler(*, settings: Settings | None = None, source=None) -> Reconciler:
    """Wire a :class:`Reconciler`; its record client also retries 5xx answers."""

    resolved = settings or get_settings()
    if source is None:
        source = build_record_client(
            settings=resolved,
            retry_policy=build_retry_policy(settings=resolved, retry_server_errors=True),
        )
    return Reconciler(
        source=source,
        checkpoint_store=build_reconcile_checkpoint_store(settings=resolved),
        page_size=resolved.records.page_size,
        checkpoint_interval=resolved.reconciler.checkpoint_interval,
        request_delay_seconds=resolved.reconciler.request_delay_seconds,
        dry_run=resolved.reconciler.dry_run,
        observability=get_observability(component="reconciler", settings=resolved),
    )


def build_detector(*, settings: Settings | None = None, source=None) -> DuplicateDetector:
    """Wire a :class:`DuplicateDetector` for the webhook surface."""

    resolved = settings or get_settings()
    index_store = build_name_index_store(settings=resolved)
    index_store.ensure_schema()
    return DuplicateDetector(
        source=source or build_record_client(settings=resolved),
        index_store=index_store,
        observability=get_observability(component="detector", settings=resolved),
    )


__all__ = [
    "build_retry_policy",
    "build_record_client",
    "build_name_index_store",
    "build_scan_progress_store",
    "build_reconcile_checkpoint_store",
    "build_index_scanner",
    "build_reconciler",
    "build_detector",
]
