# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""snaprelay exception hierarchy and failure taxonomy.

Every stage-local failure raised inside the workflow is a ``WorkflowError``
subclass carrying an ``ErrorKind``. The orchestrator catches these at its
boundary and turns them into a ``Failure`` result; nothing here is meant to
escape ``VisualSearchWorkflow.run()``.
"""

from __future__ import annotations

import re
from enum import StrEnum

MAX_DETAIL_LENGTH = 200


class ErrorKind(StrEnum):
    """Failure reasons reported to callers (``WorkflowResult.error``)."""

    CONNECT_FAILED = "ConnectFailed"
    PAGE_CREATE_FAILED = "PageCreateFailed"
    CONTROL_NOT_FOUND = "ControlNotFound"
    CONTROL_TIMEOUT = "ControlTimeout"
    TIMEOUT = "Timeout"
    PAYLOAD_MALFORMED = "PayloadMalformed"
    UNKNOWN = "Unknown"


class SnapRelayError(Exception):
    """Base exception for all snaprelay errors."""


class InvalidImageError(SnapRelayError, ValueError):
    """Input image could not be decoded (empty, bad base64, not an image)."""


class WorkflowError(SnapRelayError):
    """A stage of the visual-search workflow failed."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str = "", *, stage: str | None = None) -> None:
        super().__init__(message or self.kind.value)
        self.stage = stage


class ConnectFailed(WorkflowError):
    """Could not attach to the remote browser endpoint."""

    kind = ErrorKind.CONNECT_FAILED


class PageCreateFailed(WorkflowError):
    """Attached, but could not open a context/page on the remote browser."""

    kind = ErrorKind.PAGE_CREATE_FAILED


class ControlNotFound(WorkflowError):
    """Upload control is missing or does not accept files."""

    kind = ErrorKind.CONTROL_NOT_FOUND


class ControlTimeout(WorkflowError):
    """Upload control did not appear within its bound."""

    kind = ErrorKind.CONTROL_TIMEOUT


class StageTimeout(WorkflowError):
    """A suspension point exceeded its bound.

    ``stage`` names what was being waited for: ``connect``, ``network``,
    ``ui`` or ``network+ui`` when both completion signals were missing.
    """

    kind = ErrorKind.TIMEOUT

    def __init__(self, stage: str, timeout: float | None = None) -> None:
        if timeout is None:
            message = f"Timed out waiting for {stage}"
        else:
            message = f"Timed out waiting for {stage} after {timeout:g}s"
        super().__init__(message, stage=stage)
        self.timeout = timeout


class PayloadMalformed(WorkflowError):
    """Matched response body is not JSON or fails schema validation."""

    kind = ErrorKind.PAYLOAD_MALFORMED


# ── Detail sanitization ─────────────────────────────────────────────

_SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"://[^@\s/]+@"), "://<redacted>@"),
    (re.compile(r"Bearer\s+\S+"), "Bearer <redacted>"),
    (
        re.compile(r"(?:API_KEY|SECRET|TOKEN|PASSWORD|CREDENTIAL)\s*[=:]\s*\S+", re.IGNORECASE),
        "<redacted>",
    ),
]


def sanitize_detail(text: str) -> str:
    """Scrub credentials from *text* and truncate to ``MAX_DETAIL_LENGTH``."""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    # Playwright appends multi-line call logs; keep the headline only.
    text = text.strip().split("\n", 1)[0]
    if len(text) > MAX_DETAIL_LENGTH:
        text = text[:MAX_DETAIL_LENGTH] + "..."
    return text
