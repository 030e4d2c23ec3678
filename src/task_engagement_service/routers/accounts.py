"""Per-user notification feed and wallet endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from task_engagement_service.core.state import get_app_state
from task_engagement_service.schemas import WalletResponse

router = APIRouter()


@router.get("/users/{user_id}/notifications")
async def list_notifications(user_id: str) -> dict[str, Any]:
    """In-app notifications for a user, newest first."""
    state = get_app_state()
    if state.notifier is None:
        msg = "NotificationDispatcher not initialized"
        raise RuntimeError(msg)
    return {"user_id": user_id, "notifications": state.notifier.list_notifications(user_id)}


@router.get("/users/{user_id}/wallet", response_model=WalletResponse)
async def get_wallet(user_id: str) -> WalletResponse:
    """Wallet balance and credit history for a user."""
    state = get_app_state()
    if state.escrow_ledger is None:
        msg = "EscrowLedger not initialized"
        raise RuntimeError(msg)
    return WalletResponse.model_validate(state.escrow_ledger.get_wallet(user_id))
