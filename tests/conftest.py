"""
Shared pytest fixtures and configuration for fanmap tests.

This module provides:
- Settings cache isolation (FANMAP_* environment never leaks between tests)
- Log context cleanup
- Backend availability markers

Usage:
    Fixtures are auto-discovered by pytest.  Process-backed tests use the
    ``requires_fork`` marker or the ``backend`` fixture.
"""

from __future__ import annotations

import pytest

from fanmap.core.logging import clear_context
from fanmap.core.settings import clear_settings_cache

from tests._support.platform import requires_fork


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without explicit markers as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch):
    """Every test starts from default settings with no FANMAP_* leakage."""
    import os

    for key in list(os.environ):
        if key.startswith("FANMAP_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def _clean_log_context():
    yield
    clear_context()


# =============================================================================
# Backend Fixtures
# =============================================================================


@pytest.fixture(
    params=[
        pytest.param("fork", marks=[requires_fork, pytest.mark.integration]),
        pytest.param("isolated", marks=[pytest.mark.integration, pytest.mark.slow]),
        pytest.param("sequential", marks=pytest.mark.integration),
    ]
)
def backend(request: pytest.FixtureRequest) -> str:
    """Each real backend in turn."""
    return request.param


@pytest.fixture(autouse=True)
def _restore_logging():
    """Undo configure_logging() calls (CLI tests make them) after each test."""
    import logging

    import structlog

    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.reset_defaults()
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)
