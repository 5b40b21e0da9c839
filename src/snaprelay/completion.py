# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Completion race: the network payload and the visible results region, both required.

Trusting only the network signal risks acting on a response the page never
renders. Trusting only the UI risks missing the authoritative payload, since
the region can render a partial or default state. The race therefore waits
for both, under their own bounds and a shared overall deadline, and reports
which one was missing when it gives up.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress

from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from pydantic import ValidationError

from .context import WorkflowContext
from .errors import PayloadMalformed, StageTimeout
from .response_matcher import NetworkMatch
from .schemas import ImageSearchResults

NETWORK = "network"
UI = "ui"


async def wait_for_results_region(page: Page, selector: str, timeout: float) -> None:
    """UI signal: *selector* visible within *timeout* seconds, else ``StageTimeout("ui")``."""
    try:
        await page.wait_for_selector(selector, state="visible", timeout=timeout * 1000)
    except PlaywrightTimeoutError as exc:
        raise StageTimeout(UI, timeout) from exc


def parse_payload(body: object) -> ImageSearchResults:
    """Validate the matched response body against the result schema."""
    if not isinstance(body, dict):
        raise PayloadMalformed(f"Result payload must be a JSON object, got {type(body).__name__}", stage=NETWORK)
    try:
        return ImageSearchResults.model_validate(body)
    except ValidationError as exc:
        raise PayloadMalformed(
            f"Result payload failed validation ({exc.error_count()} errors): {exc.errors()[0]['loc']}",
            stage=NETWORK,
        ) from exc


async def _cancel_all(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        if not task.done():
            task.cancel()
    for task in tasks:
        with suppress(asyncio.CancelledError, Exception):
            await task


async def await_result(
    page: Page,
    matcher_task: asyncio.Task[NetworkMatch],
    *,
    selector: str,
    ui_timeout: float,
    total_timeout: float,
    ctx: WorkflowContext,
) -> ImageSearchResults:
    """Wait for the network match and the results region, then validate the payload.

    Raises:
        StageTimeout: a signal missed its own bound, or the overall deadline
            elapsed; ``stage`` is ``network``, ``ui`` or ``network+ui``.
        PayloadMalformed: the matched body is not a valid result payload.
    """
    log = ctx.child(__name__)
    ui_task = asyncio.ensure_future(wait_for_results_region(page, selector, ui_timeout))
    signals: dict[str, asyncio.Task] = {NETWORK: matcher_task, UI: ui_task}
    log.info("Waiting for result response and results region concurrently")

    loop = asyncio.get_running_loop()
    deadline = loop.time() + total_timeout
    try:
        pending = set(signals.values())
        while pending:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            done, pending = await asyncio.wait(pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task.cancelled():
                    name = NETWORK if task is matcher_task else UI
                    raise StageTimeout(name)
                exc = task.exception()
                if exc is not None:
                    raise exc

        missing = [name for name, task in signals.items() if not task.done()]
        if missing:
            stage = "+".join(missing)
            log.warning("Completion deadline elapsed", missing=stage, total_timeout=total_timeout)
            raise StageTimeout(stage, total_timeout)
    finally:
        await _cancel_all(list(signals.values()))

    match = matcher_task.result()
    log.info("Result response received and results region visible", url=match.url, status=match.status)
    payload = parse_payload(match.body)
    log.info(
        "Parsed result payload",
        query_id=payload.query_id,
        results=len(payload.search_results),
        asins=payload.asin_count,
    )
    return payload
