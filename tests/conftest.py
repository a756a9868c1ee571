"""Pytest configuration and shared fixtures for the fastbind test suite."""

import logging
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from fastbind import Settings  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    """Default settings independent of the process environment."""
    return Settings()


@pytest.fixture(autouse=True)
def _propagate_logs():
    """Let caplog see records from the ``fastbind`` logger."""
    logger = logging.getLogger("fastbind")
    previous = logger.propagate
    logger.propagate = True
    yield
    logger.propagate = previous
