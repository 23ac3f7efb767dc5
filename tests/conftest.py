"""
tests/conftest.py

Shared fixtures for the image relay test suite. Nothing here talks to a real
database, storage bucket or HTTP endpoint.
"""

from __future__ import annotations

import os
from typing import Any, Callable
from unittest.mock import patch

import pytest

from image_relay.core_config import Settings, load_settings, reset_settings
from image_relay.logging_setup import clear_context
from tests.helpers import minimal_env


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache and logging context around each test."""
    reset_settings()
    clear_context()
    yield
    reset_settings()
    clear_context()


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Build Settings from minimal_env() plus overrides, ignoring the real env and .env files."""

    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {**minimal_env(), **overrides}
        with patch.dict(os.environ, {}, clear=True):
            return load_settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()
