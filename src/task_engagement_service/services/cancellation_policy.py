"""Time-based refund policy for cancelled bookings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from task_engagement_service.config import CancellationTier


@dataclass(frozen=True)
class RefundQuote:
    """How a cancelled booking's escrow is split."""

    refund_cents: int
    fee_cents: int
    refund_pct: int
    hours_before: float | None


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are treated as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def compute_refund(
    amount_cents: int,
    scheduled_at: str | None,
    now: datetime,
    *,
    cancelled_by_worker: bool,
    tiers: list[CancellationTier],
) -> RefundQuote:
    """
    Quote the owner's refund for a cancellation.

    A worker cancelling, or a task with no scheduled time, refunds in full.
    Otherwise the first tier whose min_hours_before fits the notice given
    sets the percentage; notice shorter than every tier refunds nothing.
    """
    if cancelled_by_worker or scheduled_at is None:
        return RefundQuote(amount_cents, 0, 100, None)

    hours_before = (parse_timestamp(scheduled_at) - now).total_seconds() / 3600
    refund_pct = 0
    for tier in tiers:
        if hours_before >= tier.min_hours_before:
            refund_pct = tier.refund_pct
            break

    refund_cents = amount_cents * refund_pct // 100
    return RefundQuote(refund_cents, amount_cents - refund_cents, refund_pct, hours_before)
