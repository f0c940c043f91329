"""Validated, environment-driven configuration.

Quick start::

    from prcanary.core.config import get_settings

    settings = get_settings()
    print(settings.poll_interval_seconds)
"""

from .settings import CanarySettings, RegistryBackend, StableRoute, get_settings

__all__ = [
    "CanarySettings",
    "RegistryBackend",
    "StableRoute",
    "get_settings",
]
