"""Tests for application settings."""

from unittest.mock import patch

import pytest

from closedloop.config import Settings, settings, validate_settings
from closedloop.core.constants import MIN_GLUCOSE_SAMPLES


class TestSettings:
    def test_defaults(self):
        config = Settings()

        assert config.closed_loop is False
        assert config.unsuspend_if_no_temp is False
        assert config.min_glucose_samples == MIN_GLUCOSE_SAMPLES == 36
        assert config.loop_interval_minutes == 5

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("CLOSEDLOOP_CLOSED_LOOP", "true")
        monkeypatch.setenv("CLOSEDLOOP_LOOP_INTERVAL_MINUTES", "10")

        config = Settings()

        assert config.closed_loop is True
        assert config.loop_interval_minutes == 10


class TestValidateSettings:
    def test_valid_settings_pass(self):
        validate_settings()

    @pytest.mark.parametrize(
        "field, value",
        [
            ("min_glucose_samples", 0),
            ("loop_interval_minutes", 0),
            ("autotune_hour", 24),
        ],
    )
    def test_invalid_values_exit(self, field, value):
        with patch.object(settings, field, value), pytest.raises(SystemExit):
            validate_settings()

    def test_closed_loop_without_driver_warns(self, capsys):
        with (
            patch.object(settings, "closed_loop", True),
            patch.object(settings, "pump_driver_factory", ""),
        ):
            validate_settings()

        assert "no pump driver factory" in capsys.readouterr().err
