"""
Test Configuration
==================

Pytest fixtures for classification tests.
"""

import os
from collections.abc import Generator

import pytest

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["CLASSIFICATION_SNAPSHOT_BACKEND"] = "memory"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest.fixture
def clean_settings_cache() -> Generator[None, None, None]:
    """Rebuild settings from the environment inside a test."""
    from shared.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
