# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Remote browser session for one workflow invocation.

Attaches to an already-running Chromium over CDP, opens one context and one
page, and owns every temporary artifact created while the workflow runs.
The browser process itself is never launched or killed here; ``close()``
only tears down what this session created and drops the connection.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable
from contextlib import suppress
from pathlib import Path

from playwright.async_api import Browser, BrowserContext, Page, Playwright, Route, async_playwright

from .context import WorkflowContext
from .errors import ConnectFailed, PageCreateFailed, StageTimeout, sanitize_detail

# Heavy subresources aborted when resource blocking is on. Documents, scripts,
# XHR/fetch (the upload and the result exchange) always go through.
BLOCKED_RESOURCE_TYPES = frozenset({"image", "font", "media"})

_CREDENTIALS_RE = re.compile(r"://[^@/\s]+@")


def redact_endpoint(endpoint: str) -> str:
    """Hide ``user:password@`` in a control endpoint URL."""
    return _CREDENTIALS_RE.sub("://<redacted>@", endpoint)


async def block_heavy_resources(route: Route) -> None:
    """Route handler: abort images, fonts and media; continue everything else."""
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort("blockedbyclient")
        return
    await route.continue_()


class RemoteSession:
    """One CDP attachment plus one page, owned by a single invocation."""

    def __init__(
        self,
        endpoint: str,
        *,
        ctx: WorkflowContext,
        connect_timeout: float = 30.0,
        close_timeout: float = 10.0,
        block_resources: bool = True,
        playwright_factory: Callable | None = None,
    ) -> None:
        self.endpoint = endpoint
        self._ctx = ctx
        self._log = ctx.child(__name__)
        self._connect_timeout = connect_timeout
        self._close_timeout = close_timeout
        self._block_resources = block_resources
        self._playwright_factory = playwright_factory or async_playwright

        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._artifacts: list[Path] = []
        self._orphan_stops: set[asyncio.Task] = set()
        self._closed = False

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Remote session has no open page. Call open_page() first.")
        return self._page

    @property
    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def artifacts(self) -> list[Path]:
        return list(self._artifacts)

    def add_artifact(self, path: str | Path) -> None:
        """Register a temporary file to delete when the session closes."""
        self._artifacts.append(Path(path))

    # ── Lifecycle ────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Attach to the remote browser.

        Raises:
            ConnectFailed: endpoint refused, unreachable or rejected the handshake.
            StageTimeout: attach did not finish within ``connect_timeout``.
        """
        if self._closed:
            raise ConnectFailed("Session already closed")
        self._log.info("Connecting to remote browser", endpoint=redact_endpoint(self.endpoint))
        try:
            async with asyncio.timeout(self._connect_timeout):
                await self._start_driver()
                self._browser = await self._playwright.chromium.connect_over_cdp(
                    self.endpoint,
                    timeout=self._connect_timeout * 1000,
                )
        except TimeoutError as exc:
            await self._stop_driver()
            raise StageTimeout("connect", self._connect_timeout) from exc
        except Exception as exc:
            await self._stop_driver()
            raise ConnectFailed(sanitize_detail(f"Could not connect to remote browser: {exc}")) from exc
        self._log.info("Connected to remote browser")

    async def open_page(self) -> Page:
        """Open a fresh context and page on the attached browser.

        Raises:
            PageCreateFailed: context/page creation or route install failed.
        """
        if self._browser is None:
            raise PageCreateFailed("Not connected to a remote browser")
        try:
            self._context = await self._browser.new_context()
            self._page = await self._context.new_page()
            if self._block_resources:
                await self._page.route("**/*", block_heavy_resources)
        except Exception as exc:
            raise PageCreateFailed(sanitize_detail(f"Could not open page: {exc}")) from exc
        self._log.info("New page created", block_resources=self._block_resources)
        return self._page

    async def close(self) -> None:
        """Release the page, context and connection, then delete artifacts.

        Idempotent. Never raises: every step is bounded by ``close_timeout``
        and failures are logged.
        """
        if self._closed:
            return
        self._closed = True

        if self._context is not None:
            await self._bounded("context.close", self._context.close)
            self._context = None
        self._page = None

        if self._browser is not None:
            await self._bounded("browser.close", self._browser.close)
            self._browser = None

        await self._stop_driver()
        self._delete_artifacts()
        self._log.info("Remote session closed")

    async def __aenter__(self) -> RemoteSession:
        await self.connect()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    # ── Internal ─────────────────────────────────────────────────────

    async def _bounded(self, what: str, fn: Callable) -> None:
        try:
            async with asyncio.timeout(self._close_timeout):
                await fn()
        except TimeoutError:
            self._log.warning("Cleanup step timed out", step=what, timeout=self._close_timeout)
        except Exception as exc:
            self._log.warning("Cleanup step failed", step=what, error=sanitize_detail(str(exc)))

    async def _start_driver(self) -> None:
        starting = asyncio.ensure_future(self._playwright_factory().start())
        try:
            self._playwright = await asyncio.shield(starting)
        except BaseException:
            # Abandoned mid-start: the driver may still come up after we stop waiting.
            starting.add_done_callback(self._stop_orphaned_driver)
            raise

    def _stop_orphaned_driver(self, starting: asyncio.Future) -> None:
        if starting.cancelled() or starting.exception() is not None:
            return
        self._log.info("Stopping driver that started after connect was abandoned")
        task = asyncio.ensure_future(self._bounded("playwright.stop", starting.result().stop))
        self._orphan_stops.add(task)
        task.add_done_callback(self._orphan_stops.discard)

    async def _stop_driver(self) -> None:
        if self._playwright is not None:
            playwright, self._playwright = self._playwright, None
            await self._bounded("playwright.stop", playwright.stop)

    def _delete_artifacts(self) -> None:
        for path in self._artifacts:
            try:
                path.unlink(missing_ok=True)
                self._log.info("Deleted temporary artifact", path=str(path))
            except OSError as exc:
                self._log.warning("Failed to delete temporary artifact", path=str(path), error=str(exc))
        self._artifacts.clear()


async def probe_endpoint(endpoint: str, *, timeout: float = 5.0) -> bool:
    """Attach and detach once. Used by readiness checks."""
    with suppress(Exception):
        async with async_playwright() as pw:
            browser = await pw.chromium.connect_over_cdp(endpoint, timeout=timeout * 1000)
            await browser.close()
            return True
    return False
