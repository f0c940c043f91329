"""
Shared pytest fixtures for prcanary tests.
"""

from __future__ import annotations

import pytest

from prcanary.core.config import get_settings
from prcanary.core.events import InMemoryEventBus
from tests._support.builders import build_controller, fast_settings


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    return fast_settings()


@pytest.fixture
def bus():
    return InMemoryEventBus(history_size=500)


@pytest.fixture
def control(bus):
    """(controller, registry, applier, publisher) wired to an event bus."""
    return build_controller(bus=bus)
