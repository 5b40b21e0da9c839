# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Best-effort screenshots at workflow checkpoints.

Failures here never become workflow errors: a closed page, a full disk or
a hung screenshot is logged and dropped. Each orchestrator invocation owns
its own ``DiagnosticsCapture`` so sequence numbers never interleave across
concurrent requests.
"""

from __future__ import annotations

import asyncio
import itertools
import re
import time
from contextlib import suppress
from pathlib import Path

from playwright.async_api import Page

from .context import WorkflowContext

_LABEL_RE = re.compile(r"[^A-Za-z0-9_.-]+")


class DiagnosticsCapture:
    """Per-invocation screenshot sink with a monotonically increasing sequence."""

    def __init__(
        self,
        directory: str | Path,
        *,
        ctx: WorkflowContext,
        enabled: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.directory = Path(directory)
        self.enabled = enabled
        self.timeout = timeout
        self._ctx = ctx
        self._log = ctx.child(__name__)
        self._counter = itertools.count(1)
        self._pending: set[asyncio.Task] = set()
        self.captured: list[Path] = []

    def _path_for(self, seq: int, label: str) -> Path:
        stamp = time.time_ns() // 1_000_000
        safe = _LABEL_RE.sub("-", label).strip("-") or "screenshot"
        return self.directory / f"screenshot-{stamp}-{seq}-{safe}.png"

    async def capture(self, page: Page | None, label: str) -> Path | None:
        """Screenshot *page* tagged with the next sequence number.

        Returns the written path, or None when disabled or the capture failed.
        """
        seq = next(self._counter)
        self._log.info("Diagnostics checkpoint", seq=seq, checkpoint=label)
        if not self.enabled or page is None:
            return None
        path = self._path_for(seq, label)
        try:
            if page.is_closed():
                self._log.debug("Skipping screenshot, page closed", checkpoint=label)
                return None
            await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
            async with asyncio.timeout(self.timeout):
                await page.screenshot(path=str(path), type="png")
        except TimeoutError:
            self._log.warning("Screenshot timed out", checkpoint=label, timeout=self.timeout)
            return None
        except Exception as exc:
            self._log.warning("Screenshot failed", checkpoint=label, error=str(exc).split("\n", 1)[0])
            return None
        self.captured.append(path)
        return path

    def capture_nowait(self, page: Page | None, label: str) -> asyncio.Task:
        """Schedule a capture without waiting for it."""
        task = asyncio.ensure_future(self.capture(page, label))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for scheduled captures, cancelling any still running after *timeout*."""
        if not self._pending:
            return
        pending = set(self._pending)
        _done, still_running = await asyncio.wait(pending, timeout=timeout if timeout is not None else self.timeout)
        for task in still_running:
            task.cancel()
        for task in still_running:
            with suppress(asyncio.CancelledError):
                await task
