"""Tests for settings-driven service wiring."""

from __future__ import annotations

import pytest

from dupflag.records.client import RecordApiClient
from dupflag.services import factories
from dupflag.services.detector import DuplicateDetector
from dupflag.services.reconciler import Reconciler
from dupflag.services.scanner import IndexScanner
from dupflag.settings.config import reload_settings


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.setenv("DUPFLAG_DATABASE_URL", f"sqlite:///{tmp_path / 'factories.db'}")
    monkeypatch.setenv("DUPFLAG_RECORDS__TOKEN", "secret")
    monkeypatch.setenv("DUPFLAG_RECORDS__DATABASE_ID", "db-1")
    monkeypatch.setenv("DUPFLAG_RETRY__MAX_ATTEMPTS", "4")
    monkeypatch.delenv("DUPFLAG_SETTINGS_FILE", raising=False)
    resolved = reload_settings(env="dev")
    yield resolved
    monkeypatch.undo()
    reload_settings()


def test_retry_policy_follows_settings(settings):
    policy = factories.build_retry_policy(settings=settings)
    assert policy.max_attempts == 4
    assert policy.retry_server_errors is False
    assert factories.build_retry_policy(settings=settings, retry_server_errors=True).retry_server_errors is True


def test_record_client_requires_credentials(settings):
    client = factories.build_record_client(settings=settings)
    assert isinstance(client, RecordApiClient)
    assert client.tag_property == "Duplicate Flag"
    client.close()

    missing = settings.model_copy(update={"records": settings.records.model_copy(update={"token": None})})
    with pytest.raises(ValueError):
        factories.build_record_client(settings=missing)


def test_services_are_wired_with_injected_source(settings, record_source):
    scanner = factories.build_index_scanner(settings=settings, source=record_source)
    reconciler = factories.build_reconciler(settings=settings, source=record_source)
    detector = factories.build_detector(settings=settings, source=record_source)

    assert isinstance(scanner, IndexScanner)
    assert isinstance(reconciler, Reconciler)
    assert isinstance(detector, DuplicateDetector)

    record_source.add("1", "Acme")
    assert detector.handle("1", "Acme").success is True
    assert scanner.run().total_indexed == 1
