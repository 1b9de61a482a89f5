from unittest.mock import patch

import pytest

from studyjobs.config.settings import AuthMode, GeneratorType, Settings, get_settings


def test_default_settings():
    """Test default settings values."""
    settings = Settings(_env_file=None)

    assert settings.app_name == "Study Jobs"
    assert settings.version == "1.0.0"
    assert settings.environment == "development"
    assert settings.auth_mode == AuthMode.NONE
    assert settings.generator == GeneratorType.BASIC_RULES


def test_job_queue_defaults():
    """Test the queue tuning defaults."""
    settings = Settings(_env_file=None)

    assert settings.job_max_attempts == 3
    assert settings.job_backoff_base_ms == 1000
    assert settings.job_rate_limit_max == 20
    assert settings.job_rate_limit_window_minutes == 60
    assert settings.job_default_max_cards == 5
    assert settings.job_enqueue_distractors is True
    assert settings.job_handler_timeout_s < settings.job_stale_after_s


def test_production_validation_blocks_none_auth():
    """Test that production environment blocks AUTH_MODE=none."""
    with pytest.raises(ValueError, match="AUTH_MODE=none is not allowed in production"):
        Settings(_env_file=None, environment="production", auth_mode=AuthMode.NONE)


def test_production_allows_dev_auth():
    """Test that production environment allows header auth behind a gateway."""
    settings = Settings(_env_file=None, environment="production", auth_mode=AuthMode.DEV)
    assert settings.environment == "production"
    assert settings.auth_mode == AuthMode.DEV


def test_development_allows_all_auth_modes():
    """Test that development environment allows all auth modes."""
    for auth_mode in AuthMode:
        settings = Settings(_env_file=None, environment="development", auth_mode=auth_mode)
        assert settings.auth_mode == auth_mode


def test_handler_timeout_must_be_below_stale_threshold():
    """Test that a running handler can never be mistaken for a stale job."""
    with pytest.raises(ValueError, match="JOB_HANDLER_TIMEOUT_S"):
        Settings(_env_file=None, job_handler_timeout_s=300, job_stale_after_s=300)


def test_invalid_queue_values_rejected():
    """Test field constraints on queue settings."""
    with pytest.raises(ValueError):
        Settings(_env_file=None, job_max_attempts=0)
    with pytest.raises(ValueError):
        Settings(_env_file=None, job_rate_limit_max=0)


def test_settings_dependency_injection():
    """Test the get_settings dependency function."""
    settings = get_settings()
    assert isinstance(settings, Settings)


@patch.dict(
    "os.environ",
    {
        "AUTH_MODE": "dev",
        "ENVIRONMENT": "production",
        "JOB_RATE_LIMIT_MAX": "50",
        "JOB_BACKOFF_BASE_MS": "250",
    },
)
def test_env_var_loading():
    """Test that environment variables are loaded correctly."""
    settings = Settings(_env_file=None)
    assert settings.auth_mode == AuthMode.DEV
    assert settings.environment == "production"
    assert settings.job_rate_limit_max == 50
    assert settings.job_backoff_base_ms == 250
