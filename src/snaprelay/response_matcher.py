# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Passive observer that recognizes the one network exchange carrying the result.

The listener must be installed before the action that triggers the exchange
(the upload); a response that completes before ``install()`` is never seen.

Usage::

    task = watch(page, MatchCriterion("stylesnapToken"), deadline=300, ctx=ctx)
    await submit(page, request, ...)   # may trigger the exchange
    match = await task                 # NetworkMatch or StageTimeout/PayloadMalformed
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

from playwright.async_api import Page, Response

from .context import WorkflowContext
from .errors import PayloadMalformed, StageTimeout, sanitize_detail


@dataclass(frozen=True, slots=True)
class MatchCriterion:
    """URL substring + success status. Stateless, safe to evaluate repeatedly."""

    url_substring: str

    def matches(self, response: Response) -> bool:
        return self.url_substring in response.request.url and response.ok


@dataclass(frozen=True, slots=True)
class NetworkMatch:
    """The network completion signal: the matched exchange and its parsed body."""

    url: str
    status: int
    body: Any


class ResponseMatcher:
    """First-match-wins response listener for one page."""

    def __init__(self, page: Page, criterion: MatchCriterion, *, ctx: WorkflowContext) -> None:
        self._page = page
        self._criterion = criterion
        self._log = ctx.child(__name__)
        self._future: asyncio.Future[NetworkMatch] | None = None
        self._capture_task: asyncio.Task | None = None
        self._matched = False
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    def install(self) -> asyncio.Future[NetworkMatch]:
        """Start listening. Returns the future resolved by the first match."""
        if self._future is not None:
            return self._future
        self._future = asyncio.get_running_loop().create_future()
        self._page.on("response", self._on_response)
        self._installed = True
        self._log.debug("Response matcher installed", keyword=self._criterion.url_substring)
        return self._future

    def uninstall(self) -> None:
        """Stop listening and abandon an in-flight body read."""
        if self._installed:
            with suppress(Exception):
                self._page.remove_listener("response", self._on_response)
            self._installed = False
        if self._capture_task is not None and not self._capture_task.done():
            self._capture_task.cancel()
        if self._future is not None and not self._future.done():
            self._future.cancel()

    def _on_response(self, response: Response) -> None:
        # Event callback: decide synchronously, never block the page's dispatch.
        try:
            hit = self._criterion.matches(response)
        except Exception:
            self._log.debug("Criterion evaluation failed", exc_info=True)
            return
        if not hit:
            return
        if self._matched:
            self._log.debug("Ignoring later matching response", url=response.url)
            return
        self._matched = True
        self._log.info("Matched result response", url=response.url, status=response.status)
        self._capture_task = asyncio.ensure_future(self._capture(response))

    async def _capture(self, response: Response) -> None:
        future = self._future
        try:
            body = await response.json()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if future is not None and not future.done():
                future.set_exception(
                    PayloadMalformed(sanitize_detail(f"Result response body is not JSON: {exc}"), stage="network")
                )
        else:
            if future is not None and not future.done():
                future.set_result(NetworkMatch(url=response.url, status=response.status, body=body))
        finally:
            with suppress(Exception):
                self._page.remove_listener("response", self._on_response)
            self._installed = False


def watch(
    page: Page,
    criterion: MatchCriterion,
    deadline: float,
    *,
    ctx: WorkflowContext,
) -> asyncio.Task[NetworkMatch]:
    """Install a matcher now and return a task awaiting its match within *deadline* seconds.

    The listener is attached before this function returns, so the caller may
    trigger the exchange immediately afterwards.
    """
    matcher = ResponseMatcher(page, criterion, ctx=ctx)
    future = matcher.install()

    async def _await_match() -> NetworkMatch:
        try:
            async with asyncio.timeout(deadline):
                return await future
        except TimeoutError as exc:
            raise StageTimeout("network", deadline) from exc
        finally:
            matcher.uninstall()

    return asyncio.ensure_future(_await_match())
