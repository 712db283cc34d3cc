"""Tests for steprun.core.config settings.

Covers:
- Defaults
- Environment variable override (flat and nested)
- Validation
- Cached factory
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from steprun.core.config import (
    Images,
    StepRunSettings,
    clear_settings_cache,
    get_settings,
)


class TestStepRunSettingsDefaults:
    def test_default_timeout(self, settings):
        assert settings.default_timeout == timedelta(minutes=60)

    def test_default_service_account(self, settings):
        assert settings.default_service_account == "default"

    def test_pinning_off(self, settings):
        assert settings.pin_image_digests is False

    def test_notification_attempts(self, settings):
        assert settings.notification_max_attempts == 3
        assert settings.notification_retry_seconds == 30.0

    def test_helper_images(self, settings):
        images = settings.helper_images()
        assert isinstance(images, Images)
        assert images.shell == "busybox"
        assert "git-init" in images.git


class TestStepRunSettingsEnvOverride:
    def test_timeout_from_env(self, monkeypatch):
        monkeypatch.setenv("STEPRUN_DEFAULT_TIMEOUT_MINUTES", "5")
        s = StepRunSettings(_env_file=None)
        assert s.default_timeout == timedelta(minutes=5)

    def test_zero_timeout_allowed(self, monkeypatch):
        monkeypatch.setenv("STEPRUN_DEFAULT_TIMEOUT_MINUTES", "0")
        assert StepRunSettings(_env_file=None).default_timeout == timedelta(0)

    def test_nested_image_from_env(self, monkeypatch):
        monkeypatch.setenv("STEPRUN_IMAGES__SHELL", "alpine:3.19")
        assert StepRunSettings(_env_file=None).helper_images().shell == "alpine:3.19"


class TestStepRunSettingsValidation:
    def test_negative_timeout_rejected(self):
        with pytest.raises(ValidationError):
            StepRunSettings(_env_file=None, default_timeout_minutes=-1)

    def test_zero_workers_rejected(self):
        with pytest.raises(ValidationError):
            StepRunSettings(_env_file=None, workers=0)

    def test_blank_image_rejected(self):
        with pytest.raises(ValidationError):
            StepRunSettings(_env_file=None, images={"git": "  "})


class TestGetSettings:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_clear_cache(self):
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first

    def test_force_reload(self):
        first = get_settings()
        assert get_settings(_force_reload=True) is not first
