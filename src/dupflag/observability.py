"""Structured run events and StatsD counters for the scanner, reconciler and detector."""

from __future__ import annotations

import json
import logging
import socket
import threading
from datetime import datetime, timezone
from typing import Any

from dupflag.settings import Settings, get_settings

_LOGGER = logging.getLogger("dupflag.observability")
_STATSD_LOCK = threading.Lock()
_SHARED_STATSD: "StatsdClient | None" = None


class StatsdClient:
    """Fire-and-forget StatsD sender over UDP."""

    def __init__(self, host: str, port: int, prefix: str = "") -> None:
        self._address = (host, port)
        self._prefix = prefix
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    def send(self, metric: str, value: float, metric_type: str) -> None:
        scoped = f"{self._prefix}.{metric}" if self._prefix else metric
        payload = f"{scoped}:{_format_number(value)}|{metric_type}"
        try:
            self._socket.sendto(payload.encode("utf-8"), self._address)
        except OSError:  # pragma: no cover
            _LOGGER.debug("StatsD send failed for metric %s", metric, exc_info=True)


class Observability:
    """Emit one log line per run event and forward counters to StatsD when configured."""

    def __init__(
        self,
        *,
        component: str = "core",
        structured_logging: bool = True,
        statsd: StatsdClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.component = component
        self._structured = structured_logging
        self._statsd = statsd
        self._logger = logger or _LOGGER

    def emit_event(self, event: str, **fields: Any) -> None:
        payload = {
            "event": event,
            "component": self.component,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **fields,
        }
        if self._structured:
            self._logger.info(json.dumps(payload, default=str))
        else:
            self._logger.info("%s | %s", event, payload)

    def increment(self, metric: str, *, value: float = 1.0) -> None:
        if self._statsd is not None:
            self._statsd.send(metric, value, "c")

    def record_timing(self, metric: str, value_ms: float) -> None:
        if self._statsd is not None:
            self._statsd.send(metric, value_ms, "ms")


def get_observability(*, component: str, settings: Settings | None = None) -> Observability:
    """Return an :class:`Observability` for ``component`` sharing one StatsD socket per process."""

    resolved = settings or get_settings()
    return Observability(
        component=component,
        structured_logging=bool(resolved.observability.structured_logging),
        statsd=_shared_statsd(resolved),
    )


def reset_observability_cache() -> None:
    global _SHARED_STATSD
    with _STATSD_LOCK:
        _SHARED_STATSD = None


def _shared_statsd(settings: Settings) -> StatsdClient | None:
    global _SHARED_STATSD
    with _STATSD_LOCK:
        if _SHARED_STATSD is None and settings.observability.statsd_host:
            _SHARED_STATSD = StatsdClient(
                settings.observability.statsd_host,
                settings.observability.statsd_port,
                settings.observability.statsd_prefix,
            )
        return _SHARED_STATSD


def _format_number(value: float) -> str:
    formatted = f"{value:.6f}".rstrip("0").rstrip(".")
    return formatted or "0"


__all__ = ["Observability", "StatsdClient", "get_observability", "reset_observability_cache"]
