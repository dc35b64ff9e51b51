"""Tests for environment configuration and scheduler constants."""

import pytest
from pydantic import ValidationError

from marsverse.config import Config, SchedulerConfig
from marsverse.errors import ConfigurationError


def test_scheduler_defaults():
    config = SchedulerConfig()

    assert config.pulse_length == 0.01
    assert config.max_mtbf == 669.0
    assert config.mtbf_field_weight == 0.25
    assert config.mtbf_nominal_weight == 0.75
    assert config.extrovert_range == 2.0
    assert config.task_probability_gate is False


def test_scheduler_config_is_frozen():
    config = SchedulerConfig()

    with pytest.raises(ValidationError):
        config.max_mtbf = 10.0


def test_build_wraps_validation_errors():
    with pytest.raises(ConfigurationError):
        SchedulerConfig.build(pulse_length=0)
    with pytest.raises(ConfigurationError):
        SchedulerConfig.build(min_mtbf=700.0)

    assert SchedulerConfig.build(max_blocked_pulses=3).max_blocked_pulses == 3


def test_from_env_uses_config_values(monkeypatch):
    monkeypatch.setattr(Config, "PULSE_LENGTH_SOLS", 0.02)
    monkeypatch.setattr(Config, "CACHE_BUCKET_SOLS", 0.1)
    monkeypatch.setattr(Config, "RANDOM_SEED", 99)

    config = SchedulerConfig.from_env(max_blocked_pulses=5)

    assert config.pulse_length == 0.02
    assert config.bucket_length == 0.1
    assert config.random_seed == 99
    assert config.max_blocked_pulses == 5


def test_config_validate_rejects_bad_pulse(monkeypatch):
    monkeypatch.setattr(Config, "PULSE_LENGTH_SOLS", 0.0)

    with pytest.raises(ValueError):
        Config.validate()


def test_config_display_lists_settings():
    text = Config.display()

    assert text.startswith("Marsverse Configuration:")
    assert "Pulse Length" in text
    assert "Cache Bucket" in text
