"""Unit tests for AppState lifecycle helpers."""

from __future__ import annotations

import time
from unittest.mock import MagicMock

import pytest

from task_engagement_service.core.state import (
    AppState,
    get_app_state,
    init_app_state,
    reset_app_state,
)


@pytest.mark.unit
def test_app_state_init() -> None:
    """AppState initializes with empty dependency fields."""
    state = AppState()
    assert state.store is None
    assert state.escrow_ledger is None
    assert state.notifier is None
    assert state.booking_machine is None
    assert state.checklist_workflow is None
    assert state.email_client is None


@pytest.mark.unit
def test_app_state_uptime() -> None:
    """uptime_seconds increases after initialization."""
    state = AppState()
    time.sleep(0.001)
    assert state.uptime_seconds > 0


@pytest.mark.unit
def test_app_state_started_at() -> None:
    """started_at returns a UTC ISO timestamp."""
    state = AppState()
    assert state.started_at.endswith("Z")
    assert "T" in state.started_at


@pytest.mark.unit
def test_get_app_state_uninitialized() -> None:
    """get_app_state raises RuntimeError before initialization."""
    reset_app_state()
    with pytest.raises(RuntimeError):
        _state = get_app_state()


@pytest.mark.unit
def test_init_app_state() -> None:
    state = init_app_state()
    assert get_app_state() is state


@pytest.mark.unit
def test_email_client_propagates_to_notifier() -> None:
    """Swapping the email client re-points the notifier's relay."""
    state = AppState()
    notifier = MagicMock()
    state.notifier = notifier

    email_client = MagicMock()
    state.email_client = email_client

    notifier.set_email_client.assert_called_with(email_client)


@pytest.mark.unit
def test_notifier_picks_up_existing_email_client() -> None:
    state = AppState()
    email_client = MagicMock()
    state.email_client = email_client

    notifier = MagicMock()
    state.notifier = notifier

    notifier.set_email_client.assert_called_once_with(email_client)
