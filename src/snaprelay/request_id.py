# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Request id middleware: tag every HTTP request and response with ``X-Request-ID``.

Standalone leaf module with zero dependency on server.py.

- **Pure ASGI**: no BaseHTTPMiddleware (avoids body buffering).
- The id lives in ``scope["state"]["request_id"]``; handlers read it from
  ``request.state`` and pass it explicitly into the workflow.
- A well-formed incoming ``X-Request-ID`` is honoured, anything else replaced.
"""

from __future__ import annotations

import logging
import re
import time

from .context import new_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = b"x-request-id"

_VALID_ID_RE = re.compile(r"^[A-Za-z0-9._-]{8,64}$")


def _incoming_request_id(scope: dict) -> str | None:
    for name, value in scope.get("headers", []):
        if name.lower() == REQUEST_ID_HEADER:
            candidate = value.decode("latin-1").strip()
            if _VALID_ID_RE.match(candidate):
                return candidate
            return None
    return None


class RequestIdMiddleware:
    """Pure ASGI middleware assigning a request id and logging request start/finish."""

    def __init__(self, app) -> None:
        self.app = app

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = _incoming_request_id(scope) or new_request_id()
        scope.setdefault("state", {})
        scope["state"]["request_id"] = request_id

        method = scope.get("method", "")
        path = scope.get("path", "")
        started = time.monotonic()
        status_code = 500
        logger.info("[%s] %s started (request_id=%s)", method, path, request_id)

        async def _send_with_request_id(message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                headers = [h for h in message.get("headers", []) if h[0].lower() != REQUEST_ID_HEADER]
                headers.append((REQUEST_ID_HEADER, request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, _send_with_request_id)
        finally:
            logger.info(
                "[%s] %s finished [%d] in %.0fms (request_id=%s)",
                method,
                path,
                status_code,
                (time.monotonic() - started) * 1000,
                request_id,
            )
