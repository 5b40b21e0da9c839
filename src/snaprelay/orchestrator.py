# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""VisualSearchWorkflow: one remote session, one upload, one result.

State machine::

    idle → connecting → navigating_in → awaiting_nav_result
         → installing_matcher → uploading → racing_completion
         → succeeded | failed → closing → done

Navigation timing out is downgraded to a warning. Every other stage error
becomes a ``Failure`` carrying its ``ErrorKind``. ``closing`` runs from every
exit path, cancellation included, and never replaces the workflow's own
outcome with a cleanup error.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from playwright.async_api import Page

from .completion import await_result
from .config import Settings
from .context import WorkflowContext
from .diagnostics import DiagnosticsCapture
from .errors import ErrorKind, StageTimeout, WorkflowError, sanitize_detail
from .remote_session import RemoteSession
from .response_matcher import MatchCriterion, NetworkMatch, watch
from .schemas import ImageSearchResults
from .stage_timer import StageTimer
from .upload import UploadRequest, submit


class WorkflowState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    NAVIGATING_IN = "navigating_in"
    AWAITING_NAV_RESULT = "awaiting_nav_result"
    INSTALLING_MATCHER = "installing_matcher"
    UPLOADING = "uploading"
    RACING_COMPLETION = "racing_completion"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CLOSING = "closing"
    DONE = "done"


# ---------------------------------------------------------------------------
# WorkflowResult
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Success:
    payload: ImageSearchResults
    request_id: str = ""

    success = True

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "data": self.payload.to_json_dict()}


@dataclass(frozen=True, slots=True)
class Failure:
    kind: ErrorKind
    stage: str | None = None
    detail: str = ""
    request_id: str = ""

    success = False

    @property
    def error(self) -> str:
        return self.kind.value

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": False, "error": self.kind.value}
        if self.stage:
            d["stage"] = self.stage
        if self.detail:
            d["detail"] = self.detail
        return d

    @classmethod
    def from_exception(cls, exc: BaseException, *, request_id: str = "") -> Failure:
        if isinstance(exc, WorkflowError):
            return cls(kind=exc.kind, stage=exc.stage, detail=sanitize_detail(str(exc)), request_id=request_id)
        return cls(kind=ErrorKind.UNKNOWN, detail=sanitize_detail(str(exc) or type(exc).__name__), request_id=request_id)


WorkflowResult = Success | Failure


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class VisualSearchWorkflow:
    """Runs exactly one visual-search invocation. Create a new instance per request."""

    def __init__(
        self,
        settings: Settings,
        *,
        session_factory: Callable[..., RemoteSession] = RemoteSession,
        request_id: str | None = None,
    ) -> None:
        self.settings = settings
        self.ctx = WorkflowContext.create(request_id)
        self._session_factory = session_factory
        self.state = WorkflowState.IDLE
        self.history: list[WorkflowState] = [WorkflowState.IDLE]
        self.timer = StageTimer()
        self.diagnostics = DiagnosticsCapture(
            settings.diagnostics_dir,
            ctx=self.ctx,
            enabled=settings.diagnostics_enabled,
            timeout=settings.timeouts.screenshot,
        )
        self._ran = False

    @property
    def request_id(self) -> str:
        return self.ctx.request_id

    def _transition(self, state: WorkflowState) -> None:
        self.state = state
        self.history.append(state)
        self.timer.stage(state.value)
        self.ctx.log.debug("Workflow state", state=state.value)

    async def run(self, request: UploadRequest) -> WorkflowResult:
        """Execute the workflow once. Always returns a result; cancellation propagates after cleanup."""
        if self._ran:
            raise RuntimeError("VisualSearchWorkflow instances are single-use")
        self._ran = True

        log = self.ctx.log
        settings = self.settings
        session: RemoteSession | None = None
        page: Page | None = None
        matcher_task: asyncio.Task[NetworkMatch] | None = None
        result: WorkflowResult | None = None

        log.info("Visual search started", target_url=request.target_url, image_bytes=request.size)
        try:
            try:
                self._transition(WorkflowState.CONNECTING)
                session = self._session_factory(
                    settings.browser_endpoint,
                    ctx=self.ctx,
                    connect_timeout=settings.timeouts.connect,
                    close_timeout=settings.timeouts.close,
                    block_resources=settings.block_resources,
                )
                await session.connect()
                page = await session.open_page()

                self._transition(WorkflowState.NAVIGATING_IN)
                await self._navigate(page, request.target_url)

                self._transition(WorkflowState.INSTALLING_MATCHER)
                matcher_task = watch(
                    page,
                    MatchCriterion(settings.page.response_keyword),
                    request.deadline,
                    ctx=self.ctx,
                )

                self._transition(WorkflowState.UPLOADING)
                await submit(
                    page,
                    request,
                    selector=settings.page.file_input,
                    timeout=settings.timeouts.control,
                    ctx=self.ctx,
                    mode=settings.upload_mode,
                    session=session,
                )

                self._transition(WorkflowState.RACING_COMPLETION)
                payload = await await_result(
                    page,
                    matcher_task,
                    selector=settings.page.results_container,
                    ui_timeout=settings.timeouts.results,
                    total_timeout=request.deadline,
                    ctx=self.ctx,
                )
            except WorkflowError as exc:
                result = self._fail(exc, page)
            except Exception as exc:
                log.error("Unexpected workflow error", error=sanitize_detail(str(exc)), exc_info=True)
                result = self._fail(exc, page)
            else:
                self._transition(WorkflowState.SUCCEEDED)
                self.diagnostics.capture_nowait(page, "results-loaded")
                result = Success(payload=payload, request_id=self.request_id)
        finally:
            await self._close(session, matcher_task)

        log.info(
            "Visual search finished",
            success=result.success,
            error=None if result.success else result.error,
            stages_ms=self.timer.elapsed_per_stage(),
            total_ms=self.timer.total_ms(),
        )
        return result

    async def _navigate(self, page: Page, url: str) -> None:
        """Navigate; a timeout or load error is logged and the workflow carries on."""
        log = self.ctx.log
        log.info("Navigating", url=url)
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self.settings.timeouts.navigation * 1000)
        except Exception as exc:
            self._transition(WorkflowState.AWAITING_NAV_RESULT)
            log.warning(
                "Navigation did not complete, continuing as the page might be usable",
                error=sanitize_detail(str(exc)),
            )
            await self.diagnostics.capture(page, "nav-timeout")
            return
        self._transition(WorkflowState.AWAITING_NAV_RESULT)
        await self.diagnostics.capture(page, "nav-success")

    def _fail(self, exc: BaseException, page: Page | None) -> Failure:
        self._transition(WorkflowState.FAILED)
        failure = Failure.from_exception(exc, request_id=self.request_id)
        if isinstance(exc, StageTimeout):
            self.ctx.log.warning("Workflow timed out", **self.timer.timeout_report(exc.stage))
        else:
            self.ctx.log.warning("Workflow failed", error=failure.error, detail=failure.detail)
        self.diagnostics.capture_nowait(page, f"failed-{failure.error}")
        return failure

    async def _close(self, session: RemoteSession | None, matcher_task: asyncio.Task | None) -> None:
        self._transition(WorkflowState.CLOSING)
        try:
            if matcher_task is not None and not matcher_task.done():
                matcher_task.cancel()
                # asyncio.wait leaves a cancellation aimed at run() to propagate.
                await asyncio.wait([matcher_task])
            await self.diagnostics.drain()
        except Exception as exc:
            self.ctx.log.warning("Cleanup failed", error=sanitize_detail(str(exc)))
        finally:
            try:
                if session is not None:
                    # A second cancellation must not abandon a half-closed session.
                    await asyncio.shield(session.close())
            except Exception as exc:
                self.ctx.log.warning("Cleanup failed", error=sanitize_detail(str(exc)))
            finally:
                self._transition(WorkflowState.DONE)
                self.timer.finalize()


async def run_visual_search(
    settings: Settings,
    request: UploadRequest,
    *,
    request_id: str | None = None,
) -> WorkflowResult:
    """Convenience wrapper: fresh orchestrator, one run."""
    return await VisualSearchWorkflow(settings, request_id=request_id).run(request)
