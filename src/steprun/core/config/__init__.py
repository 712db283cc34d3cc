"""Controller configuration.

Quick start::

    from steprun.core.config import get_settings

    settings = get_settings()
    settings.default_timeout        # timedelta(minutes=60)
    settings.helper_images().git    # "gcr.io/tekton-releases/git-init:latest"
"""

from .settings import (
    Images,
    ImageSettings,
    StepRunSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "Images",
    "ImageSettings",
    "StepRunSettings",
    "clear_settings_cache",
    "get_settings",
]
