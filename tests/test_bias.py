# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""Tests for the hybrid autoscroll bias controller."""

import math

import pytest

from cuesync.bias import AutoscrollDriver, BiasController
from cuesync.tuning import PidParams


class TestBiasController:
    """PD control from marker error to speed bias."""

    def test_first_update_clamps_to_max_bias(self):
        controller = BiasController()
        bias = controller.update(y_match=300, y_marker=240, confidence=0.9, now=16)
        assert bias == pytest.approx(0.12)
        assert controller.mode == "LOCK_SEEK"
        assert controller.telemetry.near_clamp_count == 1

    def test_bias_holds_at_clamp_once_locked(self):
        controller = BiasController()
        controller.update(245, 240, 1.0, now=16)
        assert controller.mode == "LOCKED"
        bias = controller.update(1000, 240, 1.0, now=32)
        assert bias == pytest.approx(0.12)

    def test_speaker_behind_marker_slows_scroll(self):
        controller = BiasController()
        bias = controller.update(y_match=180, y_marker=240, confidence=0.9, now=16)
        assert bias == pytest.approx(-0.12)

    def test_small_error_is_locked(self):
        controller = BiasController()
        controller.update(y_match=245, y_marker=240, confidence=1.0, now=16)
        assert controller.mode == "LOCKED"

    def test_error_at_locked_boundary_seeks(self):
        controller = BiasController()
        controller.update(y_match=300, y_marker=240, confidence=1.0, now=16)
        assert controller.filtered_error == pytest.approx(12.0)
        assert controller.mode == "LOCK_SEEK"

    def test_end_taper(self):
        controller = BiasController()
        bias = controller.update(300, 240, 0.9, now=16, progress=0.9)
        assert bias == pytest.approx(0.12 * 0.6)

    def test_low_confidence_decays(self):
        controller = BiasController()
        controller.bias_percent = 0.1
        controller.last_update = 0
        bias = controller.update(300, 240, 0.1, now=550)
        assert bias == pytest.approx(0.1 * math.exp(-1))
        assert controller.mode == "LOST"

    def test_negative_bias_decays_toward_zero(self):
        controller = BiasController()
        controller.bias_percent = -0.1
        controller.last_update = 0
        bias = controller.update(180, 240, 0.1, now=100)
        assert bias == pytest.approx(-0.1 * math.exp(-100 / 550))
        assert bias == pytest.approx(-0.0834, abs=1e-4)

    def test_coast_without_observation(self):
        controller = BiasController()
        controller.update(1000, 240, 1.0, now=0)
        controller.coast(now=500)
        assert controller.mode == "COAST"
        assert controller.bias_percent == pytest.approx(0.12 * math.exp(-500 / 550))
        controller.coast(now=2500)
        assert controller.mode == "LOST"
        assert controller.telemetry.samples == 3
        assert controller.telemetry.time_lost == pytest.approx(2000)

    def test_coast_decays_negative_bias(self):
        controller = BiasController()
        controller.update(0, 240, 1.0, now=0)
        assert controller.bias_percent == pytest.approx(-0.12)
        for now in range(250, 10001, 250):
            controller.coast(now)
        assert -0.001 < controller.bias_percent <= 0.0
        assert controller.mode == "LOST"

    def test_recent_confidence_coasts(self):
        controller = BiasController()
        controller.update(245, 240, 1.0, now=0)
        controller.update(245, 240, 0.1, now=500)
        assert controller.mode == "COAST"
        controller.update(245, 240, 0.1, now=2500)
        assert controller.mode == "LOST"

    def test_pause_speeds_up_decay(self):
        controller = BiasController()
        controller.on_pause(now=0)
        assert controller.decay_ms(100) == 400
        assert controller.decay_ms(2500) == 550

    def test_effective_speed(self):
        controller = BiasController()
        controller.bias_percent = 0.1
        assert controller.effective_speed(40) == pytest.approx(44)

    def test_custom_params(self):
        controller = BiasController(PidParams(max_bias=0.05))
        bias = controller.update(300, 240, 0.9, now=16)
        assert bias == pytest.approx(0.05)

    def test_telemetry(self):
        controller = BiasController()
        controller.update(245, 240, 1.0, now=16)
        controller.update(245, 240, 1.0, now=32)
        assert controller.telemetry.samples == 2
        assert controller.telemetry.time_locked == pytest.approx(32)

    def test_reset(self):
        controller = BiasController()
        controller.update(300, 240, 0.9, now=16)
        controller.reset()
        assert controller.bias_percent == 0.0
        assert controller.mode == "LOST"
        assert controller.telemetry.samples == 0


class TestAutoscrollDriver:
    """Whole-pixel steps with fractional carry."""

    def test_not_running(self):
        driver = AutoscrollDriver(BiasController())
        assert driver.frame_delta(1000) == 0

    def test_base_speed(self):
        driver = AutoscrollDriver(BiasController(), base_speed_px_s=40)
        driver.start(0)
        assert driver.frame_delta(500) == 20

    def test_fractions_carry(self):
        driver = AutoscrollDriver(BiasController(), base_speed_px_s=40)
        driver.start(0)
        assert driver.frame_delta(10) == 0
        assert driver.frame_delta(30) == 1

    def test_bias_changes_speed(self):
        controller = BiasController()
        controller.bias_percent = 0.1
        driver = AutoscrollDriver(controller, base_speed_px_s=40)
        driver.start(0)
        assert driver.frame_delta(1000) == 44

    def test_stop(self):
        driver = AutoscrollDriver(BiasController())
        driver.start(0)
        driver.stop()
        assert driver.frame_delta(1000) == 0
