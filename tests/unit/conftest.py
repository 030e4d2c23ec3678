"""Unit test fixtures - auto-clear caches between tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from task_engagement_service.config import clear_settings_cache
from task_engagement_service.core.state import reset_app_state
from tests.helpers import Services, build_services

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


@pytest.fixture
def services(tmp_path: Path) -> Iterator[Services]:
    """Lifecycle services over a temp database with a mocked notifier."""
    wired = build_services(tmp_path)
    yield wired
    wired.close()
