"""
Pytest configuration and fixtures for proxy tests.
"""

import pytest

from shiptracker.core.config import Settings
from tests.fakes import FakeFeed


@pytest.fixture
def feed():
    """Fake AISstream connection factory."""
    return FakeFeed()


@pytest.fixture
def make_settings():
    """Build Settings without reading .env or the process environment defaults for Redis."""

    def _make(**overrides):
        values = {
            "AIS_API_KEY": "test-key",
            "REDIS_URL": "",
            "RECONNECT_DELAY_SEC": 5.0,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make
