"""
Pytest configuration and shared fixtures.

This module provides central pytest configuration, custom markers,
and shared fixtures for the procsup test suite.
"""

import os
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

# =============================================================================
# Plugin Registration
# =============================================================================

pytest_plugins = [
    "tests.fixtures.logging",
    "tests.fixtures.signals",
]


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, isolated, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (spawn real processes)"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests (full system integration)"
    )
    config.addinivalue_line("markers", "slow: Tests that take >1 second to run")
    config.addinivalue_line("markers", "posix: Tests that need fork and signals")


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Provide a temporary directory that is cleaned up after the test.

    Yields:
        Path: Temporary directory path
    """
    temp_path = Path(tempfile.mkdtemp(prefix="procsup-test-"))
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def sample_config_dict() -> dict:
    """Provide a sample configuration dictionary for testing."""
    return {
        "supervisor": {
            "worker_count": 3,
            "title": "test-pool",
            "stop_signal": "TERM",
            "stop_timeout": 2.0,
        },
        "logging": {
            "level": "debug",
            "colors": False,
        },
    }


# =============================================================================
# Test Collection Hooks
# =============================================================================


def pytest_collection_modifyitems(config, items):
    """
    Add the unit marker to unmarked tests and skip POSIX-only tests elsewhere.

    Args:
        config: Pytest config object
        items: List of collected test items
    """
    skip_posix = pytest.mark.skip(reason="requires fork and POSIX signals")
    for item in items:
        if not any(
            mark.name in ["integration", "e2e"] for mark in item.iter_markers()
        ):
            item.add_marker(pytest.mark.unit)
        if os.name != "posix" and item.get_closest_marker("posix"):
            item.add_marker(skip_posix)
