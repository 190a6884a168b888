"""httpx client for the paginated record API (Notion database shape)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from dupflag.records.errors import RecordApiError
from dupflag.records.models import DEFAULT_MARKER, Record, RecordPage, TagKind, TagState
from dupflag.retry import NO_RETRY, RetryPolicy

LOGGER = logging.getLogger(__name__)


class RecordApiClient:
    """Query, fetch and tag records in one database of the record API."""

    def __init__(
        self,
        *,
        token: str,
        database_id: str,
        api_base: str = "https://api.notion.com/v1",
        api_version: str = "2022-06-28",
        name_property: str = "Name",
        tag_property: str = "Duplicate Flag",
        tag_kind: TagKind = "select",
        tag_label: str = DEFAULT_MARKER,
        timeout_seconds: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not token:
            raise ValueError("RecordApiClient requires an API token")
        if not database_id:
            raise ValueError("RecordApiClient requires a database id")

        self.database_id = database_id
        self.name_property = name_property
        self.tag_property = tag_property
        self.tag_kind = tag_kind
        self.tag_label = tag_label
        self._retry = retry_policy or NO_RETRY
        self._client = httpx.Client(
            base_url=api_base.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Notion-Version": api_version,
                "Content-Type": "application/json",
            },
            timeout=timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "RecordApiClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(self, method: str, path: str, *, context: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        def _send() -> Dict[str, Any]:
            response = self._client.request(method, path, json=json)
            if response.is_error:
                raise RecordApiError(response.status_code, f"Failed to {context}: {response.text}")
            return response.json()

        return self._retry.call(_send)

    def _to_record(self, payload: Dict[str, Any]) -> Record:
        return Record.from_payload(
            payload,
            name_property=self.name_property,
            tag_property=self.tag_property,
            tag_kind=self.tag_kind,
            tag_label=self.tag_label,
        )

    def query_records(self, cursor: Optional[str] = None, page_size: int = 100) -> RecordPage:
        """Return one page of records starting at ``cursor``."""

        body: Dict[str, Any] = {"page_size": page_size}
        if cursor:
            body["start_cursor"] = cursor
        data = self._request(
            "POST",
            f"/databases/{self.database_id}/query",
            json=body,
            context="query record database",
        )
        records = [self._to_record(item) for item in data.get("results") or []]
        return RecordPage(
            records=records,
            next_cursor=data.get("next_cursor"),
            has_more=bool(data.get("has_more")),
        )

    def fetch_record(self, record_id: str) -> Record:
        """Return the current state of a single record."""

        data = self._request("GET", f"/pages/{record_id}", context=f"fetch record {record_id}")
        return self._to_record(data)

    def update_tag(self, record_id: str, tag: TagState) -> None:
        """Replace the duplicate marker property of ``record_id`` with ``tag``."""

        self._request(
            "PATCH",
            f"/pages/{record_id}",
            json={"properties": {self.tag_property: tag.to_property()}},
            context=f"update record {record_id}",
        )


__all__ = ["RecordApiClient"]
