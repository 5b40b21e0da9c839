# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""WorkflowContext: leaf module with minimal dependencies.

Created once per workflow invocation by the orchestrator and passed
explicitly to every component it drives (session, matcher, upload, race,
diagnostics). Nothing looks up a "current" request from ambient state.
"""

from __future__ import annotations

import dataclasses
import uuid

import structlog


def new_request_id() -> str:
    return uuid.uuid4().hex


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class WorkflowContext:
    """Per-invocation handle threaded through the workflow call chain."""

    request_id: str
    log: structlog.stdlib.BoundLogger = dataclasses.field(repr=False)

    @classmethod
    def create(cls, request_id: str | None = None, *, logger_name: str = "snaprelay.workflow") -> WorkflowContext:
        rid = request_id or new_request_id()
        log = structlog.stdlib.get_logger(logger_name).bind(request_id=rid)
        return cls(request_id=rid, log=log)

    def child(self, logger_name: str) -> structlog.stdlib.BoundLogger:
        """Bound logger for a component, carrying this invocation's request id."""
        return structlog.stdlib.get_logger(logger_name).bind(request_id=self.request_id)
