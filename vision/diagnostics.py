"""Diagnostics routines for the vision proxy connection."""

from __future__ import annotations

import socket
import time
from typing import Any, Callable
from urllib.parse import urlsplit

from config import ConfigController
from diagnostics.models import DiagnosticResult, DiagnosticStatus
from vision.client import build_vision_client

Connector = Callable[[tuple[str, int], float], Any]


def probe(
    config: dict[str, Any] | None = None,
    provider: str | None = None,
    timeout_s: float = 2.0,
    connector: Connector | None = None,
) -> DiagnosticResult:
    """Check the configured proxy URL and that its port accepts connections.

    Args:
        config: Optional configuration dict; defaults to the loaded config.
        provider: Optional provider override (``openai`` or ``gemini``).
        timeout_s: Connection timeout in seconds.
        connector: Optional ``socket.create_connection`` replacement for tests.

    Returns:
        Diagnostic result indicating proxy reachability.
    """

    name = "vision"
    if config is None:
        config = ConfigController.get_instance().get_config()

    try:
        client = build_vision_client(config, provider)
    except ValueError as exc:
        return DiagnosticResult(name=name, status=DiagnosticStatus.FAIL, details=str(exc))

    url = getattr(client, "url", "")
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Invalid proxy URL: {url!r}",
        )
    port = parts.port or (443 if parts.scheme == "https" else 80)

    connect = connector or socket.create_connection
    start = time.monotonic()
    try:
        with connect((parts.hostname, port), timeout_s):
            latency_ms = int((time.monotonic() - start) * 1000)
    except OSError as exc:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"Proxy not reachable at {parts.hostname}:{port} ({exc})",
        )
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=f"Proxy reachable at {url} ({latency_ms} ms)",
    )
