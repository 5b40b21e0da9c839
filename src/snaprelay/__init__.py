# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""snaprelay: run a visual search on a remote browser and harvest the result payload.

Attaches to an already-running Chromium over CDP, uploads an image to a
visual-search page, and returns the product-match JSON once both the
network response and the on-page results region have arrived.
"""

from __future__ import annotations

from .config import Settings, load_settings
from .errors import ErrorKind, WorkflowError
from .orchestrator import Failure, Success, VisualSearchWorkflow, WorkflowResult, run_visual_search
from .schemas import ImageSearchResults
from .upload import UploadRequest

__all__ = [
    "ErrorKind",
    "Failure",
    "ImageSearchResults",
    "Settings",
    "Success",
    "UploadRequest",
    "VisualSearchWorkflow",
    "WorkflowError",
    "WorkflowResult",
    "load_settings",
    "run_visual_search",
]
