"""Competitive bidding on open tasks."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from task_engagement_service.core.exceptions import (
    AuthorizationError,
    DuplicateBidError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from task_engagement_service.domain import BidStatus, BookingStatus, TaskStatus, WorkerDecision
from task_engagement_service.logging import get_logger
from task_engagement_service.services.database import now_iso
from task_engagement_service.services.engagement_store import (
    BidAcceptanceConflict,
    BidConflictError,
    BookingConflictError,
)

if TYPE_CHECKING:
    from task_engagement_service.domain import Bid, Task
    from task_engagement_service.services.audit_log import AuditLog
    from task_engagement_service.services.change_feed import ChangeFeed
    from task_engagement_service.services.engagement_store import EngagementStore
    from task_engagement_service.services.escrow_ledger import EscrowLedger
    from task_engagement_service.services.notification_dispatcher import NotificationDispatcher

# Sentinel distinguishing "field not supplied" from an explicit null.
UNSET: Any = object()


def _is_positive_int(value: object) -> bool:
    """Check if value is a positive integer (not float, not bool)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _is_positive_number(value: object) -> bool:
    """Check if value is a positive int or float (not bool)."""
    return isinstance(value, int | float) and not isinstance(value, bool) and value > 0


class BidLedger:
    """
    Manages bids: submission, revision, withdrawal, rejection and acceptance.

    Accepting a bid settles the whole auction in one store transaction and
    then holds escrow for the winning amount.
    """

    def __init__(
        self,
        store: EngagementStore,
        escrow: EscrowLedger,
        notifier: NotificationDispatcher,
        audit: AuditLog,
        change_feed: ChangeFeed,
        max_amount_cents: int,
        max_message_length: int,
    ) -> None:
        self._store = store
        self._escrow = escrow
        self._notifier = notifier
        self._audit = audit
        self._change_feed = change_feed
        self._max_amount_cents = max_amount_cents
        self._max_message_length = max_message_length
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _load_task(self, task_id: str) -> Task:
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    def _load_bid(self, task_id: str, bid_id: str) -> Bid:
        bid = self._store.get_bid(bid_id)
        if bid is None or bid.task_id != task_id:
            raise NotFoundError("bid", bid_id)
        return bid

    def _validate_amount(self, amount_cents: object) -> None:
        if not _is_positive_int(amount_cents):
            raise ValidationError(
                "Bid amount must be a positive integer number of cents",
                {"field": "amount_cents"},
            )
        if amount_cents > self._max_amount_cents:  # type: ignore[operator]
            raise ValidationError(
                f"Bid amount must not exceed {self._max_amount_cents} cents",
                {"field": "amount_cents", "max_amount_cents": self._max_amount_cents},
            )

    def _validate_message(self, message: object) -> None:
        if message is None:
            return
        if not isinstance(message, str):
            raise ValidationError("Message must be a string", {"field": "message"})
        if len(message) > self._max_message_length:
            raise ValidationError(
                f"Message must be at most {self._max_message_length} characters",
                {"field": "message", "max_length": self._max_message_length},
            )

    def _validate_hours(self, estimated_hours: object) -> None:
        if estimated_hours is not None and not _is_positive_number(estimated_hours):
            raise ValidationError(
                "Estimated hours must be a positive number",
                {"field": "estimated_hours"},
            )

    def _require_bidder(self, bid: Bid, actor_id: str, action: str) -> None:
        if bid.bidder_id != actor_id:
            raise AuthorizationError(f"Only the bidder can {action} this bid")

    def _require_pending(self, bid: Bid, action: str) -> None:
        if bid.status != BidStatus.PENDING:
            raise InvalidStateTransitionError("bid", bid.status, BidStatus.PENDING, action)

    def _lost_race(self, bid_id: str, action: str) -> InvalidStateTransitionError:
        current = self._store.get_bid(bid_id)
        status = current.status if current is not None else None
        return InvalidStateTransitionError("bid", status, BidStatus.PENDING, action)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def submit_bid(
        self,
        task_id: str,
        bidder_id: str,
        amount_cents: int,
        message: str | None,
        estimated_hours: float | None,
    ) -> dict[str, Any]:
        """
        Place a pending bid on an open task.

        Error precedence:
        1. VALIDATION_ERROR - amount, message or hours out of bounds
        2. TASK_NOT_FOUND
        3. FORBIDDEN - bidder owns the task
        4. INVALID_STATE_TRANSITION - task is not open
        5. BID_ALREADY_EXISTS - bidder already has a bid on this task
        """
        self._validate_amount(amount_cents)
        self._validate_message(message)
        self._validate_hours(estimated_hours)

        task = self._load_task(task_id)
        if task.owner_id == bidder_id:
            raise AuthorizationError("Cannot bid on your own task")
        if task.status != TaskStatus.OPEN:
            raise InvalidStateTransitionError("task", task.status, TaskStatus.OPEN, "bid on")

        now = now_iso()
        try:
            bid = self._store.insert_bid(
                {
                    "bid_id": f"bid-{uuid.uuid4()}",
                    "task_id": task_id,
                    "bidder_id": bidder_id,
                    "amount_cents": amount_cents,
                    "message": message,
                    "estimated_hours": estimated_hours,
                    "status": BidStatus.PENDING,
                    "created_at": now,
                    "updated_at": now,
                }
            )
        except BidConflictError as exc:
            raise DuplicateBidError(task_id, bidder_id) from exc

        self._change_feed.publish("bid", "insert", bid.to_dict())
        self._logger.info(
            "Bid submitted",
            extra={"task_id": task_id, "bid_id": bid.bid_id, "bidder_id": bidder_id},
        )
        await self._notifier.notify(
            task.owner_id,
            "New bid received",
            f"A new bid was placed on '{task.title}'",
            "bid",
            f"/tasks/{task_id}/bids",
        )
        return bid.to_dict()

    async def update_bid(
        self,
        task_id: str,
        bid_id: str,
        actor_id: str,
        amount_cents: int | None = UNSET,
        message: str | None = UNSET,
        estimated_hours: float | None = UNSET,
    ) -> dict[str, Any]:
        """
        Revise a pending bid. Only supplied fields change.

        Error precedence:
        1. BID_NOT_FOUND
        2. FORBIDDEN - actor is not the bidder
        3. INVALID_STATE_TRANSITION - bid is not pending (or lost a race)
        4. VALIDATION_ERROR
        """
        bid = self._load_bid(task_id, bid_id)
        self._require_bidder(bid, actor_id, "update")
        self._require_pending(bid, "update")

        updates: dict[str, Any] = {}
        if amount_cents is not UNSET:
            self._validate_amount(amount_cents)
            updates["amount_cents"] = amount_cents
        if message is not UNSET:
            self._validate_message(message)
            updates["message"] = message
        if estimated_hours is not UNSET:
            self._validate_hours(estimated_hours)
            updates["estimated_hours"] = estimated_hours
        if len(updates) == 0:
            raise ValidationError("No bid fields to update")
        updates["updated_at"] = now_iso()

        changed = self._store.update_bid(bid_id, updates, expected_status=BidStatus.PENDING)
        if changed == 0:
            raise self._lost_race(bid_id, "update")

        updated = self._load_bid(task_id, bid_id)
        self._change_feed.publish("bid", "update", updated.to_dict())
        self._logger.info("Bid updated", extra={"bid_id": bid_id, "fields": sorted(updates)})
        return updated.to_dict()

    async def withdraw_bid(self, task_id: str, bid_id: str, actor_id: str) -> dict[str, Any]:
        """
        Delete a pending bid so the bidder may bid again.

        Error precedence:
        1. BID_NOT_FOUND
        2. FORBIDDEN - actor is not the bidder
        3. INVALID_STATE_TRANSITION - bid is not pending (or lost a race)
        """
        bid = self._load_bid(task_id, bid_id)
        self._require_bidder(bid, actor_id, "withdraw")
        self._require_pending(bid, "withdraw")

        if self._store.delete_bid(bid_id, expected_status=BidStatus.PENDING) == 0:
            raise self._lost_race(bid_id, "withdraw")

        self._change_feed.publish("bid", "delete", bid.to_dict())
        self._logger.info("Bid withdrawn", extra={"bid_id": bid_id, "task_id": task_id})
        return {"bid_id": bid_id, "task_id": task_id, "withdrawn": True}

    async def reject_bid(self, task_id: str, bid_id: str, actor_id: str) -> dict[str, Any]:
        """
        Reject a pending bid.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN - actor is not the task owner
        3. BID_NOT_FOUND
        4. INVALID_STATE_TRANSITION - bid is not pending (or lost a race)
        """
        task = self._load_task(task_id)
        if task.owner_id != actor_id:
            raise AuthorizationError("Only the task owner can reject bids")
        bid = self._load_bid(task_id, bid_id)
        self._require_pending(bid, "reject")

        changed = self._store.update_bid(
            bid_id,
            {"status": BidStatus.REJECTED, "updated_at": now_iso()},
            expected_status=BidStatus.PENDING,
        )
        if changed == 0:
            raise self._lost_race(bid_id, "reject")

        rejected = self._load_bid(task_id, bid_id)
        self._change_feed.publish("bid", "update", rejected.to_dict())
        self._logger.info("Bid rejected", extra={"bid_id": bid_id, "task_id": task_id})
        await self._notifier.notify(
            bid.bidder_id,
            "Bid not selected",
            f"Your bid on '{task.title}' was not selected",
            "bid",
            f"/tasks/{task_id}",
        )
        return rejected.to_dict()

    async def accept_bid(self, task_id: str, bid_id: str, actor_id: str) -> dict[str, Any]:
        """
        Accept a bid, reject every other bid and create the accepted booking.

        Re-running on an already-accepted bid is safe: siblings are rejected
        again, the existing booking is returned and the escrow hold is
        re-applied idempotently.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN - actor is not the task owner
        3. BID_NOT_FOUND - missing or belongs to another task
        4. INVALID_STATE_TRANSITION - bid not pending, task not open,
           another bid already accepted, or another booking is active
        """
        task = self._load_task(task_id)
        if task.owner_id != actor_id:
            raise AuthorizationError("Only the task owner can accept bids")
        bid = self._load_bid(task_id, bid_id)

        rerun = bid.status == BidStatus.ACCEPTED
        if not rerun:
            self._require_pending(bid, "accept")
            if task.status != TaskStatus.OPEN:
                raise InvalidStateTransitionError(
                    "task", task.status, TaskStatus.OPEN, "accept a bid on"
                )

        now = now_iso()
        try:
            booking_id = self._store.accept_bid(
                bid_id,
                {
                    "booking_id": f"bk-{uuid.uuid4()}",
                    "task_id": task_id,
                    "owner_id": task.owner_id,
                    "worker_id": bid.bidder_id,
                    "bid_id": bid_id,
                    "hire_amount_cents": bid.amount_cents,
                    "message": bid.message,
                    "status": BookingStatus.ACCEPTED,
                    "worker_decision": WorkerDecision.ACCEPTED,
                    "decline_reason": None,
                    "decided_at": now,
                    "completed_at": None,
                    "cancelled_at": None,
                    "cancelled_by": None,
                    "cancellation_reason": None,
                    "refund_cents": None,
                    "created_at": now,
                },
            )
        except BidAcceptanceConflict as exc:
            if exc.current_status is None:
                raise NotFoundError("bid", bid_id) from exc
            raise InvalidStateTransitionError(
                "bid", exc.current_status, BidStatus.PENDING, "accept"
            ) from exc
        except BookingConflictError as exc:
            active = self._store.get_active_booking(task_id)
            raise InvalidStateTransitionError(
                "task",
                active.status if active is not None else None,
                "no active booking",
                "accept a bid on",
            ) from exc

        self._escrow.hold(booking_id, task.owner_id, bid.bidder_id, bid.amount_cents)

        booking = self._store.get_booking(booking_id)
        if booking is None:
            msg = f"Booking {booking_id} not found after bid acceptance"
            raise RuntimeError(msg)

        for sibling in self._store.list_bids(task_id):
            self._change_feed.publish("bid", "update", sibling.to_dict())
        self._change_feed.publish("booking", "insert" if not rerun else "update", booking.to_dict())
        updated_task = self._load_task(task_id)
        self._change_feed.publish("task", "update", updated_task.to_dict())

        self._audit.record(
            booking_id,
            task_id,
            actor_id,
            "bid_accepted",
            "booking",
            {"bid_id": bid_id, "amount_cents": bid.amount_cents, "rerun": rerun},
        )
        self._logger.info(
            "Bid accepted",
            extra={
                "task_id": task_id,
                "bid_id": bid_id,
                "booking_id": booking_id,
                "worker_id": bid.bidder_id,
                "rerun": rerun,
            },
        )
        if not rerun:
            await self._notifier.notify(
                bid.bidder_id,
                "Your bid was accepted",
                f"Your bid on '{task.title}' was accepted",
                "booking",
                f"/bookings/{booking_id}",
            )
        return {"booking_id": booking_id, "booking": booking.to_dict()}

    async def list_bids(self, task_id: str) -> list[dict[str, Any]]:
        """Bids for a task, lowest amount first."""
        self._load_task(task_id)
        return [bid.to_dict() for bid in self._store.list_bids(task_id)]
