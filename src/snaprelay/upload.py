# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Upload trigger: deliver image bytes into the page's file control.

The browser may run on another machine than this process, so the default
path hands Playwright an in-memory payload (name, MIME type, bytes) instead
of a filesystem path.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import FilePayload, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .config import UploadMode
from .context import WorkflowContext
from .errors import ControlNotFound, ControlTimeout, sanitize_detail
from .image_data import DEFAULT_MIME_TYPE, decode_base64_image, detect_mime_type, extension_for_mime
from .remote_session import RemoteSession


@dataclass(frozen=True, slots=True)
class UploadRequest:
    """Immutable input of one workflow invocation."""

    target_url: str
    image: bytes = field(repr=False)
    mime_type: str = DEFAULT_MIME_TYPE
    deadline: float = 300.0  # seconds, bounds the completion race
    created_ms: int = field(default_factory=lambda: time.time_ns() // 1_000_000)

    def __post_init__(self) -> None:
        if not self.image:
            raise ValueError("No images provided")
        if not self.target_url:
            raise ValueError("target_url is required")
        if self.deadline <= 0:
            raise ValueError("deadline must be positive")

    @classmethod
    def from_base64(cls, data: str, *, target_url: str, deadline: float = 300.0) -> UploadRequest:
        """Build from a (possibly data-URL) base64 string.

        Raises:
            InvalidImageError: empty or undecodable input.
        """
        return cls(
            target_url=target_url,
            image=decode_base64_image(data),
            mime_type=detect_mime_type(data),
            deadline=deadline,
        )

    @property
    def extension(self) -> str:
        return extension_for_mime(self.mime_type)

    @property
    def filename(self) -> str:
        return f"image-{self.created_ms}{self.extension}"

    @property
    def size(self) -> int:
        return len(self.image)


@dataclass(frozen=True, slots=True)
class UploadAck:
    filename: str
    mime_type: str
    size: int
    mode: UploadMode


def _write_temp_file(request: UploadRequest) -> Path:
    fd, name = tempfile.mkstemp(prefix="snaprelay-", suffix=request.extension)
    with os.fdopen(fd, "wb") as fh:
        fh.write(request.image)
    return Path(name)


async def submit(
    page: Page,
    request: UploadRequest,
    *,
    selector: str,
    timeout: float,
    ctx: WorkflowContext,
    mode: UploadMode = UploadMode.BYTES,
    session: RemoteSession | None = None,
) -> UploadAck:
    """Wait for the upload control, then set the image on it in one call.

    Raises:
        ControlTimeout: the control did not attach within *timeout* seconds.
        ControlNotFound: the control vanished or refused the file.
    """
    log = ctx.child(__name__)
    if mode is UploadMode.TEMP_FILE and session is None:
        raise ValueError("temp_file uploads need a session to own the temporary file")
    try:
        handle = await page.wait_for_selector(selector, state="attached", timeout=timeout * 1000)
    except PlaywrightTimeoutError as exc:
        raise ControlTimeout(f"Upload control {selector!r} did not appear within {timeout:g}s") from exc
    except PlaywrightError as exc:
        raise ControlNotFound(sanitize_detail(f"Upload control {selector!r} lookup failed: {exc}")) from exc
    if handle is None:
        raise ControlNotFound(f"Upload control {selector!r} not found")

    if mode is UploadMode.TEMP_FILE:
        path = await asyncio.to_thread(_write_temp_file, request)
        session.add_artifact(path)
        files: Path | FilePayload = path
        log.info("Created temporary upload file", path=str(path))
    else:
        files = FilePayload(name=request.filename, mimeType=request.mime_type, buffer=request.image)

    try:
        await handle.set_input_files(files, timeout=timeout * 1000)
    except PlaywrightTimeoutError as exc:
        raise ControlTimeout(f"Upload control {selector!r} did not accept the file within {timeout:g}s") from exc
    except PlaywrightError as exc:
        raise ControlNotFound(sanitize_detail(f"Upload control {selector!r} rejected the file: {exc}")) from exc

    log.info(
        "Uploaded image",
        filename=request.filename,
        mime_type=request.mime_type,
        size=request.size,
        mode=str(mode),
    )
    return UploadAck(filename=request.filename, mime_type=request.mime_type, size=request.size, mode=mode)
