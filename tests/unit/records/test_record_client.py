"""Tests for the httpx-backed record API client."""

from __future__ import annotations

import json

import httpx
import pytest

from dupflag.records.client import RecordApiClient
from dupflag.records.errors import RecordApiError
from dupflag.records.models import SelectTag
from dupflag.retry import RetryPolicy


def _page_payload(record_id: str, name: str, flag: str | None = None) -> dict:
    return {
        "id": record_id,
        "properties": {
            "Name": {"title": [{"plain_text": name}]},
            "Duplicate Flag": {"select": {"name": flag} if flag else None},
        },
    }


def _client(handler, **kwargs) -> RecordApiClient:
    return RecordApiClient(
        token="secret-token",
        database_id="db-1",
        api_base="https://records.test/v1",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_query_records_sends_cursor_and_parses_page():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "results": [_page_payload("p1", "Acme"), _page_payload("p2", "Globex", "Duplicate")],
                "next_cursor": "cursor-2",
                "has_more": True,
            },
        )

    with _client(handler) as client:
        page = client.query_records("cursor-1", page_size=50)

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/v1/databases/db-1/query"
    assert request.headers["Authorization"] == "Bearer secret-token"
    assert request.headers["Notion-Version"] == "2022-06-28"
    assert json.loads(request.content) == {"page_size": 50, "start_cursor": "cursor-1"}
    assert [record.record_id for record in page.records] == ["p1", "p2"]
    assert page.records[1].tag.has_duplicate_marker()
    assert page.next_cursor == "cursor-2"
    assert page.has_more is True


def test_first_query_omits_start_cursor():
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"results": [], "next_cursor": None, "has_more": False})

    with _client(handler) as client:
        page = client.query_records(None)

    assert bodies == [{"page_size": 100}]
    assert page.records == []
    assert page.has_more is False


def test_update_tag_patches_only_the_marker_property():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_page_payload("p1", "Acme", "Duplicate"))

    with _client(handler) as client:
        client.update_tag("p1", SelectTag(value="Duplicate"))

    assert seen[0].method == "PATCH"
    assert seen[0].url.path == "/v1/pages/p1"
    assert json.loads(seen[0].content) == {"properties": {"Duplicate Flag": {"select": {"name": "Duplicate"}}}}


def test_rate_limited_requests_are_retried():
    statuses = [429, 429, 200]
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        status = statuses.pop(0)
        if status == 429:
            return httpx.Response(429, json={"message": "Rate limited"})
        return httpx.Response(200, json=_page_payload("p1", "Acme"))

    policy = RetryPolicy(max_attempts=3, initial_delay=0.25, sleep=sleeps.append)
    with _client(handler, retry_policy=policy) as client:
        record = client.fetch_record("p1")

    assert record.name == "Acme"
    assert sleeps == [0.25, 0.5]


def test_structural_errors_surface_without_retry():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(404, json={"message": "Could not find page"})

    policy = RetryPolicy(max_attempts=3, initial_delay=0, sleep=lambda _: None)
    with _client(handler, retry_policy=policy) as client:
        with pytest.raises(RecordApiError) as excinfo:
            client.fetch_record("missing")

    assert excinfo.value.status_code == 404
    assert calls["count"] == 1


def test_missing_credentials_are_rejected():
    with pytest.raises(ValueError):
        RecordApiClient(token="", database_id="db-1")
    with pytest.raises(ValueError):
        RecordApiClient(token="t", database_id="")
