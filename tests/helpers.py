"""Shared test helpers: service wiring and row builders."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

from task_engagement_service.config import CancellationTier
from task_engagement_service.services.audit_log import AuditLog
from task_engagement_service.services.bid_ledger import BidLedger
from task_engagement_service.services.booking_machine import BookingStateMachine
from task_engagement_service.services.change_feed import ChangeFeed
from task_engagement_service.services.checklist_workflow import ChecklistWorkflow
from task_engagement_service.services.engagement_store import EngagementStore
from task_engagement_service.services.escrow_ledger import EscrowLedger
from task_engagement_service.services.task_registry import TaskRegistry

if TYPE_CHECKING:
    from pathlib import Path

OWNER_ID = "u-owner"
WORKER_ID = "u-worker"
OTHER_WORKER_ID = "u-other-worker"
STRANGER_ID = "u-stranger"

PLATFORM_FEE_PCT = 10
MAX_AMOUNT_CENTS = 10_000_000
MAX_MESSAGE_LENGTH = 500

DEFAULT_TIERS = [
    CancellationTier(min_hours_before=48, refund_pct=100),
    CancellationTier(min_hours_before=24, refund_pct=50),
    CancellationTier(min_hours_before=12, refund_pct=25),
    CancellationTier(min_hours_before=0, refund_pct=0),
]


def iso_in(hours: float) -> str:
    """ISO 8601 timestamp `hours` from now (negative for the past)."""
    moment = datetime.now(UTC) + timedelta(hours=hours)
    return moment.isoformat(timespec="seconds").replace("+00:00", "Z")


def task_row(task_id: str, status: str = "open", **overrides: Any) -> dict[str, Any]:
    """A complete tasks row for direct store inserts."""
    timestamp = datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    row: dict[str, Any] = {
        "task_id": task_id,
        "owner_id": OWNER_ID,
        "title": f"Task {task_id}",
        "description": "Mow the lawn",
        "category": "gardening",
        "location": "Berlin",
        "pay_amount_cents": 5000,
        "budget_type": "fixed",
        "status": status,
        "scheduled_at": None,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    row.update(overrides)
    return row


def bid_row(bid_id: str, task_id: str, bidder_id: str, amount_cents: int) -> dict[str, Any]:
    """A complete bids row for direct store inserts."""
    timestamp = datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    return {
        "bid_id": bid_id,
        "task_id": task_id,
        "bidder_id": bidder_id,
        "amount_cents": amount_cents,
        "message": None,
        "estimated_hours": None,
        "status": "pending",
        "created_at": timestamp,
        "updated_at": timestamp,
    }


def booking_row(
    booking_id: str,
    task_id: str,
    status: str = "pending",
    worker_id: str = WORKER_ID,
) -> dict[str, Any]:
    """A complete bookings row for direct store inserts."""
    timestamp = datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    return {
        "booking_id": booking_id,
        "task_id": task_id,
        "owner_id": OWNER_ID,
        "worker_id": worker_id,
        "bid_id": None,
        "hire_amount_cents": 5000,
        "message": None,
        "status": status,
        "worker_decision": "pending",
        "decline_reason": None,
        "decided_at": None,
        "completed_at": None,
        "cancelled_at": None,
        "cancelled_by": None,
        "cancellation_reason": None,
        "refund_cents": None,
        "created_at": timestamp,
    }


@dataclass
class Services:
    """Fully wired services over one temp database, with a mocked notifier."""

    store: EngagementStore
    escrow: EscrowLedger
    notifier: AsyncMock
    audit: AuditLog
    change_feed: ChangeFeed
    registry: TaskRegistry
    bids: BidLedger
    bookings: BookingStateMachine
    checklists: ChecklistWorkflow

    def close(self) -> None:
        self.store.close()
        self.escrow.close()
        self.audit.close()


def build_services(tmp_path: Path) -> Services:
    """Wire every lifecycle service the way the application lifespan does."""
    db_path = str(tmp_path / "engagement.db")
    store = EngagementStore(db_path=db_path)
    escrow = EscrowLedger(db_path=db_path, platform_fee_pct=PLATFORM_FEE_PCT)
    notifier = AsyncMock()
    notifier.notify = AsyncMock(return_value="ntf-test")
    audit = AuditLog(db_path=db_path)
    change_feed = ChangeFeed(queue_size=16)

    bookings = BookingStateMachine(
        store=store,
        escrow=escrow,
        notifier=notifier,
        audit=audit,
        change_feed=change_feed,
        cancellation_tiers=DEFAULT_TIERS,
        max_amount_cents=MAX_AMOUNT_CENTS,
        max_message_length=MAX_MESSAGE_LENGTH,
    )
    return Services(
        store=store,
        escrow=escrow,
        notifier=notifier,
        audit=audit,
        change_feed=change_feed,
        registry=TaskRegistry(store=store, change_feed=change_feed),
        bids=BidLedger(
            store=store,
            escrow=escrow,
            notifier=notifier,
            audit=audit,
            change_feed=change_feed,
            max_amount_cents=MAX_AMOUNT_CENTS,
            max_message_length=MAX_MESSAGE_LENGTH,
        ),
        bookings=bookings,
        checklists=ChecklistWorkflow(
            store=store,
            booking_machine=bookings,
            notifier=notifier,
            audit=audit,
            change_feed=change_feed,
        ),
    )


async def open_task(
    services: Services,
    *,
    scheduled_at: str | None = None,
    pay_amount_cents: int = 5000,
) -> str:
    """Create a published task owned by OWNER_ID and return its ID."""
    task = await services.registry.create_task(
        owner_id=OWNER_ID,
        title="Assemble wardrobe",
        description="Two-door wardrobe, tools provided",
        category="handyman",
        location="Hamburg",
        pay_amount_cents=pay_amount_cents,
        budget_type="fixed",
        scheduled_at=scheduled_at,
        publish=True,
    )
    return str(task["task_id"])
