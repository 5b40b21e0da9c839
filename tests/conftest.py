# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import snaprelay  # noqa: F401
except ImportError:
    raise ImportError("snaprelay is not installed. Run: pip install -e '.[dev]'") from None

import pytest

from snaprelay.context import WorkflowContext
from tests._fake_browser import FakePage, fast_settings


@pytest.fixture(autouse=True)
def _block_real_playwright(request, monkeypatch):
    """Safety net: prevent real browser attachments in unit tests.

    Tests drive ``RemoteSession`` through an injected ``playwright_factory``.
    Anything that falls through to the real ``async_playwright`` gets a clear
    error instead of trying to reach a CDP endpoint.
    """

    def _no_real_playwright():
        raise RuntimeError("Test tried to start real Playwright. Pass playwright_factory= in your test.")

    monkeypatch.setattr("snaprelay.remote_session.async_playwright", _no_real_playwright)


@pytest.fixture
def ctx():
    return WorkflowContext.create("test-request-0001")


@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def settings(tmp_path):
    return fast_settings(tmp_path)
