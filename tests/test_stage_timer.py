# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for StageTimer."""

from __future__ import annotations

from snaprelay.stage_timer import StageTimer


class TestStageTimer:
    def test_stage_tracking(self):
        timer = StageTimer()
        timer.stage("connecting")
        timer.stage("uploading")
        timer.stage("racing_completion")
        timer.finalize()

        stages = timer.elapsed_per_stage()
        assert list(stages.keys()) == ["connecting", "uploading", "racing_completion"]
        assert all(isinstance(v, float) for v in stages.values())

    def test_current_stage(self):
        timer = StageTimer()
        assert timer.current_stage is None

        timer.stage("connecting")
        assert timer.current_stage == "connecting"

        timer.finalize()
        assert timer.current_stage is None

    def test_elapsed_includes_running_stage(self):
        timer = StageTimer()
        timer.stage("uploading")
        assert "uploading" in timer.elapsed_per_stage()

    def test_finalize_twice_is_harmless(self):
        timer = StageTimer()
        timer.stage("done")
        timer.finalize()
        timer.finalize()
        assert list(timer.elapsed_per_stage()) == ["done"]

    def test_timeout_report_structure(self):
        timer = StageTimer()
        timer.stage("uploading")
        timer.stage("racing_completion")

        report = timer.timeout_report("network")
        assert report["error"] == "timeout"
        assert report["timed_out_at"] == "racing_completion"
        assert report["timed_out_signal"] == "network"
        assert report["completed_stages"] == [{"stage": "uploading", "ms": report["completed_stages"][0]["ms"]}]
        assert isinstance(report["total_ms"], float)
        assert "response" in report["hint"]

    def test_timeout_report_defaults_to_current_stage(self):
        timer = StageTimer()
        timer.stage("connecting")
        report = timer.timeout_report()
        assert report["timed_out_signal"] == "connecting"

    def test_timeout_report_no_stages(self):
        report = StageTimer().timeout_report()
        assert report["timed_out_at"] == "unknown"
        assert report["completed_stages"] == []

    def test_hint_for_known_stages(self):
        assert "unreachable" in StageTimer.hint_for_stage("connect")
        assert "response" in StageTimer.hint_for_stage("network")
        assert "layout" in StageTimer.hint_for_stage("ui")
        assert "Neither" in StageTimer.hint_for_stage("network+ui")

    def test_hint_for_unknown_stage(self):
        assert "'closing'" in StageTimer.hint_for_stage("closing")
