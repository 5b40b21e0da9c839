# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""HTTP front door: accept a base64 image, run one visual search, return JSON.

Routes:

- ``GET  /health``            liveness
- ``GET  /ready``             attaches to the remote browser once (503 if unreachable)
- ``POST /api/upload-image``  ``{imageBase64, url?}`` → ``{success, data?, error?}``
"""

from __future__ import annotations

import argparse
import functools
import json
import logging
import os
import sys
from collections.abc import Callable
from contextlib import suppress
from dataclasses import replace
from datetime import UTC, datetime
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from .config import Settings, load_settings
from .errors import ErrorKind, InvalidImageError
from .image_data import looks_like_image_base64
from .orchestrator import VisualSearchWorkflow
from .remote_session import probe_endpoint, redact_endpoint
from .request_id import RequestIdMiddleware
from .upload import UploadRequest

# Logging configured in main() via logging_config.configure()
logger = logging.getLogger("snaprelay.server")

ALLOWED_URL_SCHEMES = {"http", "https"}
READY_PROBE_TIMEOUT_SECONDS = 5.0

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.CONNECT_FAILED: 502,
    ErrorKind.PAGE_CREATE_FAILED: 502,
    ErrorKind.CONTROL_NOT_FOUND: 502,
    ErrorKind.CONTROL_TIMEOUT: 504,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.PAYLOAD_MALFORMED: 502,
    ErrorKind.UNKNOWN: 500,
}


class UploadImageBody(BaseModel):
    """Inbound request body."""

    model_config = ConfigDict(populate_by_name=True)

    image_base64: str = Field(..., alias="imageBase64", min_length=1, description="Base64 image, data URL allowed")
    url: str | None = Field(None, description="Visual-search page URL (defaults to the configured target)")


def _bad_request(error: str, **extra) -> JSONResponse:
    return JSONResponse({"success": False, "error": error, **extra}, status_code=400)


def _validate_target_url(url: str) -> str | None:
    """Return an error message for unusable target URLs, else None."""
    parsed = urlparse(url)
    if parsed.scheme not in ALLOWED_URL_SCHEMES:
        return f"Unsupported URL scheme: {parsed.scheme or '(none)'}"
    if not parsed.hostname:
        return "URL has no host"
    return None


# ── Handlers ─────────────────────────────────────────────────────────


async def health(request: Request) -> JSONResponse:
    return JSONResponse(
        {
            "success": True,
            "message": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
        }
    )


async def ready(request: Request) -> JSONResponse:
    settings: Settings = request.app.state.settings
    ok = await probe_endpoint(settings.browser_endpoint, timeout=READY_PROBE_TIMEOUT_SECONDS)
    return JSONResponse(
        {"status": "ready" if ok else "not_ready", "browser_connected": ok},
        status_code=200 if ok else 503,
    )


async def upload_image(request: Request) -> JSONResponse:
    settings: Settings = request.app.state.settings
    workflow_factory: Callable[..., VisualSearchWorkflow] = request.app.state.workflow_factory
    request_id = getattr(request.state, "request_id", None)

    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _bad_request("Request body must be JSON")
    try:
        body = UploadImageBody.model_validate(raw)
    except ValidationError as exc:
        return _bad_request(
            "Request validation failed",
            details=exc.errors(include_url=False, include_context=False, include_input=False),
        )

    target_url = body.url or settings.target_url
    if url_error := _validate_target_url(target_url):
        return _bad_request(url_error)

    if not looks_like_image_base64(body.image_base64):
        return _bad_request("Invalid base64 image format")

    try:
        upload = UploadRequest.from_base64(
            body.image_base64,
            target_url=target_url,
            deadline=settings.timeouts.total,
        )
    except InvalidImageError as exc:
        return _bad_request(str(exc))

    logger.info(
        "Image search request (request_id=%s, image_bytes=%d, target=%s)",
        request_id,
        upload.size,
        target_url,
    )
    workflow = workflow_factory(settings, request_id=request_id)
    result = await workflow.run(upload)

    if result.success:
        logger.info(
            "Image search succeeded (request_id=%s, results=%d)",
            request_id,
            len(result.payload.search_results),
        )
        return JSONResponse(result.to_dict())

    logger.error("Image search failed (request_id=%s, error=%s)", request_id, result.error)
    return JSONResponse(result.to_dict(), status_code=_STATUS_BY_KIND.get(result.kind, 500))


# ── App factory ──────────────────────────────────────────────────────


def create_app(
    settings: Settings | None = None,
    *,
    workflow_factory: Callable[..., VisualSearchWorkflow] = VisualSearchWorkflow,
) -> Starlette:
    """Build the ASGI app. One workflow instance per request, nothing shared between them."""
    settings = settings or load_settings()

    middleware = []
    if settings.cors_origins:
        middleware.append(
            Middleware(
                CORSMiddleware,
                allow_origins=list(settings.cors_origins),
                allow_methods=["GET", "POST", "OPTIONS"],
                allow_headers=["Content-Type", "Authorization"],
                expose_headers=["X-Request-ID"],
            )
        )
    middleware.append(Middleware(RequestIdMiddleware))

    app = Starlette(
        routes=[
            Route("/health", health, methods=["GET"]),
            Route("/ready", ready, methods=["GET"]),
            Route("/api/upload-image", upload_image, methods=["POST"]),
        ],
        middleware=middleware,
    )
    app.state.settings = settings
    app.state.workflow_factory = workflow_factory
    return app


# ── Entry point ──────────────────────────────────────────────────────


def _parse_server_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI args. Unset options fall back to the environment (see config.py)."""
    parser = argparse.ArgumentParser(description="snaprelay visual-search HTTP server")
    parser.add_argument("--host", default=None, help="HTTP listen host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="HTTP listen port (default: 8000)")
    parser.add_argument("--endpoint", default=None, help="Remote browser CDP WebSocket URL")
    parser.add_argument(
        "--cors-origin",
        action="append",
        default=None,
        help="Allowed CORS origin (repeatable)",
    )
    parser.add_argument("--log-json", action="store_true", default=False, help="Emit JSON log lines")
    args, _ = parser.parse_known_args(argv)
    return args


def _settings_from_args(args: argparse.Namespace, settings: Settings) -> Settings:
    overrides: dict = {}
    if args.host:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.endpoint:
        overrides["browser_endpoint"] = args.endpoint
    if args.cors_origin:
        overrides["cors_origins"] = tuple(args.cors_origin)
    if args.log_json:
        overrides["log_json"] = True
    return replace(settings, **overrides) if overrides else settings


async def _serve(app: Starlette, settings: Settings) -> None:
    import uvicorn

    config = uvicorn.Config(app, host=settings.host, port=settings.port, log_level="info")
    server = uvicorn.Server(config)
    await server.serve()


def main(argv: list[str] | None = None) -> None:
    """Entry point for the HTTP server."""
    args = _parse_server_args(argv if argv is not None else sys.argv[1:])
    settings = _settings_from_args(args, load_settings(os.environ))

    # Configure structlog BEFORE any log output
    from .logging_config import configure as configure_logging

    configure_logging(json_output=settings.log_json, level=settings.log_level)

    if "*" in settings.cors_origins:
        logger.warning("CORS allows any origin ('*'); restrict SNAPRELAY_CORS_ORIGIN outside development")

    logger.info(
        "Starting snaprelay server (host=%s, port=%d, endpoint=%s)",
        settings.host,
        settings.port,
        redact_endpoint(settings.browser_endpoint),
    )
    logger.info("Health check: http://%s:%d/health", settings.host, settings.port)
    logger.info("Image search: http://%s:%d/api/upload-image", settings.host, settings.port)

    import anyio

    app = create_app(settings)
    with suppress(KeyboardInterrupt):
        anyio.run(functools.partial(_serve, app, settings))


if __name__ == "__main__":
    main()
