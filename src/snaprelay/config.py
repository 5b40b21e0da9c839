# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Environment-driven configuration.

Every setting is optional. Malformed numeric values are ignored and the
default is kept, so a typo in the environment never stops the server.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field, replace
from enum import StrEnum

DEFAULT_BROWSER_ENDPOINT = "ws://127.0.0.1:9222"
DEFAULT_TARGET_URL = "https://www.amazon.com/stylesnap"
DEFAULT_DIAGNOSTICS_DIR = "./temp/screenshot"

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off")


class UploadMode(StrEnum):
    """How image bytes reach the page's file control."""

    BYTES = "bytes"  # in-memory payload, no filesystem on either side
    TEMP_FILE = "temp_file"  # local temp file, streamed by Playwright


@dataclass(frozen=True, slots=True)
class StageTimeouts:
    """Per-suspension-point bounds, in seconds."""

    connect: float = 30.0
    navigation: float = 40.0
    control: float = 30.0
    results: float = 60.0
    total: float = 300.0
    close: float = 10.0
    screenshot: float = 10.0


@dataclass(frozen=True, slots=True)
class PageContract:
    """Identifiers owned by the third-party page. They break without notice."""

    file_input: str = "#file"
    results_container: str = "#product_grid_container > div > section.tab-content"
    response_keyword: str = "stylesnapToken"


@dataclass(frozen=True, slots=True)
class Settings:
    browser_endpoint: str = DEFAULT_BROWSER_ENDPOINT
    target_url: str = DEFAULT_TARGET_URL
    host: str = "0.0.0.0"  # nosec B104
    port: int = 8000
    timeouts: StageTimeouts = field(default_factory=StageTimeouts)
    page: PageContract = field(default_factory=PageContract)
    block_resources: bool = True
    upload_mode: UploadMode = UploadMode.BYTES
    diagnostics_enabled: bool = True
    diagnostics_dir: str = DEFAULT_DIAGNOSTICS_DIR
    cors_origins: tuple[str, ...] = ()
    log_json: bool = False
    log_level: str = "INFO"


def _get(env: Mapping[str, str], *names: str) -> str:
    for name in names:
        value = env.get(name, "").strip()
        if value:
            return value
    return ""


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = _get(env, name).lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    return default


def _seconds(env: Mapping[str, str], name: str, default: float) -> float:
    value = _get(env, name)
    if value:
        with suppress(ValueError):
            parsed = float(value)
            if parsed > 0:
                return parsed
    return default


def _load_timeouts(env: Mapping[str, str]) -> StageTimeouts:
    d = StageTimeouts()
    return StageTimeouts(
        connect=_seconds(env, "SNAPRELAY_CONNECT_TIMEOUT", d.connect),
        navigation=_seconds(env, "SNAPRELAY_NAVIGATION_TIMEOUT", d.navigation),
        control=_seconds(env, "SNAPRELAY_CONTROL_TIMEOUT", d.control),
        results=_seconds(env, "SNAPRELAY_RESULTS_TIMEOUT", d.results),
        total=_seconds(env, "SNAPRELAY_TOTAL_TIMEOUT", d.total),
        close=_seconds(env, "SNAPRELAY_CLOSE_TIMEOUT", d.close),
        screenshot=_seconds(env, "SNAPRELAY_SCREENSHOT_TIMEOUT", d.screenshot),
    )


def _load_page_contract(env: Mapping[str, str]) -> PageContract:
    d = PageContract()
    return PageContract(
        file_input=_get(env, "SNAPRELAY_FILE_INPUT_SELECTOR") or d.file_input,
        results_container=_get(env, "SNAPRELAY_RESULTS_SELECTOR") or d.results_container,
        response_keyword=_get(env, "SNAPRELAY_RESPONSE_KEYWORD") or d.response_keyword,
    )


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build ``Settings`` from *env* (defaults to ``os.environ``)."""
    if env is None:
        env = os.environ
    settings = Settings(
        timeouts=_load_timeouts(env),
        page=_load_page_contract(env),
        block_resources=_flag(env, "SNAPRELAY_BLOCK_RESOURCES", True),
        diagnostics_enabled=_flag(env, "SNAPRELAY_DIAGNOSTICS", True),
        log_json=_flag(env, "SNAPRELAY_LOG_JSON", False),
    )

    overrides: dict = {}
    if endpoint := _get(env, "SNAPRELAY_BROWSER_ENDPOINT"):
        overrides["browser_endpoint"] = endpoint
    if target := _get(env, "SNAPRELAY_TARGET_URL"):
        overrides["target_url"] = target
    if host := _get(env, "SNAPRELAY_HOST", "HOST"):
        overrides["host"] = host
    if port := _get(env, "SNAPRELAY_PORT", "PORT"):
        with suppress(ValueError):
            overrides["port"] = int(port)
    if mode := _get(env, "SNAPRELAY_UPLOAD_MODE").lower():
        with suppress(ValueError):
            overrides["upload_mode"] = UploadMode(mode)
    if diag_dir := _get(env, "SNAPRELAY_DIAGNOSTICS_DIR"):
        overrides["diagnostics_dir"] = diag_dir
    if cors := _get(env, "SNAPRELAY_CORS_ORIGIN"):
        overrides["cors_origins"] = tuple(o.strip() for o in cors.split(",") if o.strip())
    if level := _get(env, "SNAPRELAY_LOG_LEVEL"):
        overrides["log_level"] = level.upper()

    return replace(settings, **overrides) if overrides else settings
