"""Tests for the environment presets."""

from __future__ import annotations

import logging

import pytest

from app.core import config


@pytest.mark.parametrize("environment", ["development", "staging", "production"])
def test_presets_keep_security_warnings_visible(environment: str) -> None:
    level = logging.getLevelName(config.ENVIRONMENT_PRESETS[environment]["log_level"])

    assert level <= logging.WARNING


def test_production_preset_enables_throttling() -> None:
    preset = config.ENVIRONMENT_PRESETS["production"]

    assert preset["rate_limit_enabled"] is True
    assert preset["log_level"] == "WARNING"


def test_default_rate_limit_storage_is_in_process() -> None:
    assert config.RATE_LIMIT_STORAGE_URI == "memory://"
