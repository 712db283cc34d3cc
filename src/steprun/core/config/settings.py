"""
Centralized settings for steprun.

Manifesto:
    One validated, cached settings object holds every knob the controller
    reads: helper images, default run timeout, worker count, backoff and
    delivery limits.  Nothing else in the package parses the environment.

All fields can be set via ``STEPRUN_*`` environment variables (e.g.
``STEPRUN_DEFAULT_TIMEOUT_MINUTES=30``) or a ``.env`` file.  Nested image
overrides use ``__`` (``STEPRUN_IMAGES__GIT=...``).

Tags:
    steprun, configuration, settings, pydantic, caching, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class Images:
    """Helper images injected into every pod.

    ``entrypoint`` provides the sequencing binary copied by the
    ``place-tools`` init container; the rest back resource helpers.
    """

    entrypoint: str
    git: str
    shell: str
    gsutil: str
    image_digest_exporter: str


class ImageSettings(BaseModel):
    """Image overrides, validated as part of :class:`StepRunSettings`."""

    entrypoint: str = Field(default="gcr.io/tekton-releases/entrypoint:latest")
    git: str = Field(default="gcr.io/tekton-releases/git-init:latest")
    shell: str = Field(default="busybox")
    gsutil: str = Field(default="google/cloud-sdk")
    image_digest_exporter: str = Field(default="gcr.io/tekton-releases/imagedigestexporter:latest")

    @field_validator("*")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("image reference must not be blank")
        return value


class StepRunSettings(BaseSettings):
    """Steprun controller configuration."""

    model_config = SettingsConfigDict(
        env_prefix="STEPRUN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # ── Runs ─────────────────────────────────────────────────────
    default_timeout_minutes: float = Field(default=60, ge=0, description="0 disables the timeout")
    default_service_account: str = Field(default="default")
    release: str = Field(default="devel", description="Stamped on pods as the release annotation")

    # ── Images ───────────────────────────────────────────────────
    images: ImageSettings = Field(default_factory=ImageSettings)
    pin_image_digests: bool = Field(
        default=False,
        description="Also pin images of steps with an explicit command to their digest",
    )

    # ── Workers / queue ──────────────────────────────────────────
    workers: int = Field(default=2, ge=1)
    requeue_base_delay_seconds: float = Field(default=0.005, gt=0)
    requeue_max_delay_seconds: float = Field(default=1000.0, gt=0)
    quota_requeue_seconds: float = Field(default=60.0, gt=0)
    store_call_timeout_seconds: float = Field(default=30.0, gt=0)

    # ── Notifications ────────────────────────────────────────────
    notification_max_attempts: int = Field(default=3, ge=1)
    notification_retry_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Delay before a terminal run with undelivered notifications is reconciled again",
    )
    notification_timeout_seconds: float = Field(default=10.0, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    # ── Derived properties ───────────────────────────────────────

    @property
    def default_timeout(self) -> timedelta:
        return timedelta(minutes=self.default_timeout_minutes)

    def helper_images(self) -> Images:
        """Freeze the image settings into the value the pod builder takes."""
        return Images(
            entrypoint=self.images.entrypoint,
            git=self.images.git,
            shell=self.images.shell,
            gsutil=self.images.gsutil,
            image_digest_exporter=self.images.image_digest_exporter,
        )


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, StepRunSettings] = {}


def get_settings(*, _force_reload: bool = False) -> StepRunSettings:
    """Load, validate, and cache a :class:`StepRunSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = StepRunSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
