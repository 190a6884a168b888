"""Exceptions raised while talking to the record API."""

from __future__ import annotations

SERVER_ERROR_CODES = frozenset({500, 502, 503, 504})


class RecordApiError(RuntimeError):
    """Raised when the record API answers with a non-success status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"{message}: {status_code}")
        self.status_code = status_code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def is_server_error(self) -> bool:
        return self.status_code in SERVER_ERROR_CODES


class RecordParseError(ValueError):
    """Raised when a record payload lacks the fields the engine relies on."""


__all__ = ["RecordApiError", "RecordParseError", "SERVER_ERROR_CODES"]
