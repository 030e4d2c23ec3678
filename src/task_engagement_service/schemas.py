"""Pydantic response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    bookings_by_status: dict[str, int]


class ErrorResponse(BaseModel):
    """Standard error response model."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, object]


class DeclineReasonsResponse(BaseModel):
    """Response model for GET /hire/decline-reasons."""

    model_config = ConfigDict(extra="forbid")
    reasons: list[str]
    other_reason: str


class WalletTransaction(BaseModel):
    """One credit on a user's wallet."""

    model_config = ConfigDict(extra="forbid")
    tx_id: str
    type: Literal["refund", "payout"]
    amount_cents: int
    balance_after: int
    reference: str
    description: str
    created_at: str


class WalletResponse(BaseModel):
    """Response model for GET /users/{user_id}/wallet."""

    model_config = ConfigDict(extra="forbid")
    user_id: str
    balance_cents: int
    transactions: list[WalletTransaction]
