"""Hire request and booking lifecycle."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from task_engagement_service.core.exceptions import (
    AuthorizationError,
    InvalidStateTransitionError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from task_engagement_service.domain import (
    ACTIVE_BOOKING_STATUSES,
    BookingStatus,
    EscrowStatus,
    TaskStatus,
    WorkerDecision,
)
from task_engagement_service.logging import get_logger
from task_engagement_service.services.cancellation_policy import compute_refund
from task_engagement_service.services.checklist_workflow import is_booking_completable
from task_engagement_service.services.database import now_iso
from task_engagement_service.services.engagement_store import BookingConflictError

if TYPE_CHECKING:
    from task_engagement_service.config import CancellationTier
    from task_engagement_service.domain import Booking, Task
    from task_engagement_service.services.audit_log import AuditLog
    from task_engagement_service.services.change_feed import ChangeFeed
    from task_engagement_service.services.engagement_store import EngagementStore
    from task_engagement_service.services.escrow_ledger import EscrowLedger
    from task_engagement_service.services.notification_dispatcher import NotificationDispatcher

OTHER_DECLINE_REASON = "Other (please specify)"

DECLINE_REASONS: tuple[str, ...] = (
    "Not available on the requested date",
    "Location is too far",
    "Budget doesn't match my rates",
    "Already booked for this time",
    "Task requirements unclear",
    OTHER_DECLINE_REASON,
)

_TERMINAL_REFUND_STATUSES = (BookingStatus.DECLINED, BookingStatus.CANCELLED)


def _is_positive_int(value: object) -> bool:
    """Check if value is a positive integer (not float, not bool)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class BookingStateMachine:
    """
    Drives a booking through pending, accepted, declined, completed and cancelled.

    Every transition is a conditional write on the booking row; the task row
    and, for cancellations, the winning bid move in the same transaction.
    Escrow settlement follows the commit. A settlement that fails is retried
    the next time the booking is read.
    """

    def __init__(
        self,
        store: EngagementStore,
        escrow: EscrowLedger,
        notifier: NotificationDispatcher,
        audit: AuditLog,
        change_feed: ChangeFeed,
        cancellation_tiers: list[CancellationTier],
        max_amount_cents: int,
        max_message_length: int,
    ) -> None:
        self._store = store
        self._escrow = escrow
        self._notifier = notifier
        self._audit = audit
        self._change_feed = change_feed
        self._cancellation_tiers = cancellation_tiers
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

    def _load_booking(self, booking_id: str) -> Booking:
        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise NotFoundError("booking", booking_id)
        return booking

    def _require_status(
        self,
        booking: Booking,
        expected: tuple[str, ...],
        action: str,
    ) -> None:
        if booking.status not in expected:
            raise InvalidStateTransitionError("booking", booking.status, expected, action)

    def _transition(
        self,
        booking: Booking,
        updates: dict[str, Any],
        expected: tuple[str, ...],
        action: str,
        task_updates: dict[str, Any] | None = None,
        task_expected: tuple[str, ...] | None = None,
        release_bid: bool = False,
    ) -> Booking:
        changed = self._store.transition_booking(
            booking.booking_id,
            updates,
            expected_statuses=expected,
            task_id=booking.task_id,
            task_updates=task_updates,
            task_expected_statuses=task_expected,
            release_bid_id=booking.bid_id if release_bid else None,
        )
        if changed == 0:
            current = self._store.get_booking(booking.booking_id)
            status = current.status if current is not None else None
            raise InvalidStateTransitionError("booking", status, expected, action)

        updated = self._load_booking(booking.booking_id)
        self._change_feed.publish("booking", "update", updated.to_dict())
        task = self._store.get_task(booking.task_id)
        if task is not None and task_updates:
            self._change_feed.publish("task", "update", task.to_dict())
        if release_bid and booking.bid_id is not None:
            bid = self._store.get_bid(booking.bid_id)
            if bid is not None:
                self._change_feed.publish("bid", "update", bid.to_dict())
            for reopened in self._store.list_reopened_bids(booking.bid_id):
                self._change_feed.publish("bid", "update", reopened.to_dict())
        return updated

    def _settle_escrow(self, booking: Booking) -> None:
        """Release or refund a held escrow for a terminal booking; never raises."""
        try:
            if booking.status == BookingStatus.COMPLETED:
                self._escrow.release(booking.booking_id)
            elif booking.status in _TERMINAL_REFUND_STATUSES:
                refund_cents = (
                    booking.refund_cents
                    if booking.refund_cents is not None
                    else booking.hire_amount_cents
                )
                self._escrow.refund(
                    booking.booking_id,
                    refund_cents,
                    f"Refund for {booking.status} booking",
                )
        except ServiceError as exc:
            self._logger.warning(
                "Escrow settlement failed, will retry on next read",
                extra={"booking_id": booking.booking_id, "error": exc.error},
            )

    def _reconcile_escrow(self, booking: Booking) -> dict[str, Any] | None:
        """Retry settlement for terminal bookings whose escrow is still held."""
        escrow = self._escrow.get_escrow(booking.booking_id)
        if (
            escrow is not None
            and escrow["status"] == EscrowStatus.HELD
            and booking.status not in ACTIVE_BOOKING_STATUSES
        ):
            self._settle_escrow(booking)
            escrow = self._escrow.get_escrow(booking.booking_id)
        return escrow

    def _booking_response(self, booking: Booking) -> dict[str, Any]:
        data = booking.to_dict()
        data["escrow"] = self._reconcile_escrow(booking)
        return data

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_hire_request(
        self,
        task_id: str,
        owner_id: str,
        worker_id: str,
        amount_cents: int,
        message: str | None,
    ) -> dict[str, Any]:
        """
        Directly hire a worker for an open task.

        The escrow hold is placed before the pending booking is written, so
        the worker never sees an unfunded request.

        Error precedence:
        1. VALIDATION_ERROR - amount or message out of bounds, self-hire
        2. TASK_NOT_FOUND
        3. FORBIDDEN - actor is not the task owner
        4. INVALID_STATE_TRANSITION - task not open or already has an active booking
        """
        if not _is_positive_int(amount_cents) or amount_cents > self._max_amount_cents:
            raise ValidationError(
                f"Hire amount must be a positive integer up to {self._max_amount_cents} cents",
                {"field": "amount_cents"},
            )
        if message is not None and len(message) > self._max_message_length:
            raise ValidationError(
                f"Message must be at most {self._max_message_length} characters",
                {"field": "message"},
            )
        if worker_id == owner_id:
            raise ValidationError("Cannot hire yourself", {"field": "worker_id"})

        task = self._load_task(task_id)
        if task.owner_id != owner_id:
            raise AuthorizationError("Only the task owner can send hire requests")
        if task.status != TaskStatus.OPEN:
            raise InvalidStateTransitionError("task", task.status, TaskStatus.OPEN, "hire for")
        active = self._store.get_active_booking(task_id)
        if active is not None:
            raise InvalidStateTransitionError(
                "task", active.status, "no active booking", "hire for"
            )

        booking_id = f"bk-{uuid.uuid4()}"
        self._escrow.hold(booking_id, owner_id, worker_id, amount_cents)

        try:
            booking = self._store.insert_booking(
                {
                    "booking_id": booking_id,
                    "task_id": task_id,
                    "owner_id": owner_id,
                    "worker_id": worker_id,
                    "bid_id": None,
                    "hire_amount_cents": amount_cents,
                    "message": message,
                    "status": BookingStatus.PENDING,
                    "worker_decision": WorkerDecision.PENDING,
                    "decline_reason": None,
                    "decided_at": None,
                    "completed_at": None,
                    "cancelled_at": None,
                    "cancelled_by": None,
                    "cancellation_reason": None,
                    "refund_cents": None,
                    "created_at": now_iso(),
                }
            )
        except BookingConflictError as exc:
            self._escrow.refund(booking_id, amount_cents, "Hire request could not be created")
            raise InvalidStateTransitionError(
                "task", task.status, "no active booking", "hire for"
            ) from exc

        self._change_feed.publish("booking", "insert", booking.to_dict())
        self._audit.record(
            booking_id,
            task_id,
            owner_id,
            "hire_requested",
            "booking",
            {"worker_id": worker_id, "amount_cents": amount_cents},
        )
        self._logger.info(
            "Hire request created",
            extra={"booking_id": booking_id, "task_id": task_id, "worker_id": worker_id},
        )
        await self._notifier.notify(
            worker_id,
            "New hire request",
            f"You have been asked to work on '{task.title}'",
            "booking",
            f"/bookings/{booking_id}",
        )
        return self._booking_response(booking)

    async def accept_booking(self, booking_id: str, actor_id: str) -> dict[str, Any]:
        """
        Worker accepts a pending hire request; the task moves to in_progress.

        Error precedence:
        1. BOOKING_NOT_FOUND
        2. FORBIDDEN - actor is not the assigned worker
        3. INVALID_STATE_TRANSITION - booking is not pending (or lost a race)
        """
        booking = self._load_booking(booking_id)
        if booking.worker_id != actor_id:
            raise AuthorizationError("Only the assigned worker can accept this booking")
        self._require_status(booking, (BookingStatus.PENDING,), "accept")

        now = now_iso()
        updated = self._transition(
            booking,
            {
                "status": BookingStatus.ACCEPTED,
                "worker_decision": WorkerDecision.ACCEPTED,
                "decided_at": now,
            },
            (BookingStatus.PENDING,),
            "accept",
            task_updates={"status": TaskStatus.IN_PROGRESS, "updated_at": now},
            task_expected=(TaskStatus.OPEN,),
        )

        self._audit.record(booking_id, booking.task_id, actor_id, "hire_accepted", "booking")
        self._logger.info("Booking accepted", extra={"booking_id": booking_id})
        await self._notifier.notify(
            booking.owner_id,
            "Hire request accepted",
            "Your hire request was accepted",
            "booking",
            f"/bookings/{booking_id}",
        )
        return self._booking_response(updated)

    async def decline_booking(
        self,
        booking_id: str,
        actor_id: str,
        reason: str,
        details: str | None = None,
    ) -> dict[str, Any]:
        """
        Worker declines a pending hire request; the owner is refunded in full.

        reason is free text or one of DECLINE_REASONS; the "Other" reason
        needs details.

        Error precedence:
        1. BOOKING_NOT_FOUND
        2. FORBIDDEN - actor is not the assigned worker
        3. VALIDATION_ERROR - empty reason, or "Other" without details
        4. INVALID_STATE_TRANSITION - booking is not pending (or lost a race)
        """
        booking = self._load_booking(booking_id)
        if booking.worker_id != actor_id:
            raise AuthorizationError("Only the assigned worker can decline this booking")

        reason = reason.strip()
        if not reason:
            raise ValidationError("A decline reason is required", {"field": "reason"})
        detail_text = details.strip() if details is not None else ""
        if reason == OTHER_DECLINE_REASON:
            if not detail_text:
                raise ValidationError(
                    "Please specify the reason for declining",
                    {"field": "details"},
                )
            decline_reason = detail_text
        elif detail_text:
            decline_reason = f"{reason}: {detail_text}"
        else:
            decline_reason = reason

        self._require_status(booking, (BookingStatus.PENDING,), "decline")

        now = now_iso()
        updated = self._transition(
            booking,
            {
                "status": BookingStatus.DECLINED,
                "worker_decision": WorkerDecision.DECLINED,
                "decline_reason": decline_reason,
                "decided_at": now,
                "refund_cents": booking.hire_amount_cents,
            },
            (BookingStatus.PENDING,),
            "decline",
            task_updates={"status": TaskStatus.OPEN, "updated_at": now},
            task_expected=(TaskStatus.OPEN, TaskStatus.IN_PROGRESS),
        )
        self._settle_escrow(updated)

        self._audit.record(
            booking_id,
            booking.task_id,
            actor_id,
            "hire_declined",
            "booking",
            {"reason": decline_reason, "refund_cents": booking.hire_amount_cents},
        )
        self._logger.info(
            "Booking declined",
            extra={"booking_id": booking_id, "refund_cents": booking.hire_amount_cents},
        )
        await self._notifier.notify(
            booking.owner_id,
            "Hire request declined",
            f"Your hire request was declined: {decline_reason}",
            "booking",
            f"/tasks/{booking.task_id}",
        )
        return self._booking_response(updated)

    async def complete_booking(self, booking_id: str, actor_id: str) -> dict[str, Any]:
        """
        Owner confirms an accepted booking is done; escrow pays the worker.

        When the task has checklist items, every item must have an approved
        completion for this booking first.

        Error precedence:
        1. BOOKING_NOT_FOUND
        2. FORBIDDEN - actor is not the task owner
        3. INVALID_STATE_TRANSITION - booking not accepted, or checklist incomplete
        """
        booking = self._load_booking(booking_id)
        if booking.owner_id != actor_id:
            raise AuthorizationError("Only the task owner can complete this booking")
        return await self._complete(booking, actor_id)

    async def complete_if_ready(self, booking_id: str, actor_id: str) -> dict[str, Any] | None:
        """Complete an accepted booking whose checklist is fully approved; else None."""
        booking = self._load_booking(booking_id)
        if booking.status != BookingStatus.ACCEPTED:
            return None
        items = self._store.list_items(booking.task_id)
        if not is_booking_completable(items, self._store.list_completions(booking_id)):
            return None
        try:
            return await self._complete(booking, actor_id)
        except InvalidStateTransitionError:
            # A concurrent call already completed it.
            return None

    async def _complete(self, booking: Booking, actor_id: str) -> dict[str, Any]:
        self._require_status(booking, (BookingStatus.ACCEPTED,), "complete")
        items = self._store.list_items(booking.task_id)
        if len(items) > 0 and not is_booking_completable(
            items, self._store.list_completions(booking.booking_id)
        ):
            raise InvalidStateTransitionError(
                "booking",
                booking.status,
                "all checklist items approved",
                "complete",
            )

        now = now_iso()
        updated = self._transition(
            booking,
            {"status": BookingStatus.COMPLETED, "completed_at": now},
            (BookingStatus.ACCEPTED,),
            "complete",
            task_updates={"status": TaskStatus.COMPLETED, "updated_at": now},
            task_expected=(TaskStatus.IN_PROGRESS,),
        )
        self._settle_escrow(updated)

        escrow = self._escrow.get_escrow(booking.booking_id)
        payout = escrow["payout_cents"] if escrow is not None else None
        self._audit.record(
            booking.booking_id,
            booking.task_id,
            actor_id,
            "booking_completed",
            "booking",
            {"payout_cents": payout},
        )
        self._logger.info(
            "Booking completed",
            extra={"booking_id": booking.booking_id, "payout_cents": payout},
        )
        await self._notifier.notify(
            booking.worker_id,
            "Payment released",
            "The booking is complete and your payment has been released",
            "payment",
            f"/bookings/{booking.booking_id}",
        )
        return self._booking_response(updated)

    async def cancel_booking(
        self,
        booking_id: str,
        actor_id: str,
        reason: str | None,
    ) -> dict[str, Any]:
        """
        Either party cancels a pending or accepted booking.

        The owner's refund follows the cancellation policy; the task re-opens
        and a winning bid is released so another bid can be accepted.

        Error precedence:
        1. BOOKING_NOT_FOUND
        2. FORBIDDEN - actor is neither the owner nor the worker
        3. INVALID_STATE_TRANSITION - booking is not pending or accepted (or lost a race)
        """
        booking = self._load_booking(booking_id)
        if actor_id not in (booking.owner_id, booking.worker_id):
            raise AuthorizationError("Only the task owner or the worker can cancel this booking")
        self._require_status(booking, ACTIVE_BOOKING_STATUSES, "cancel")

        task = self._load_task(booking.task_id)
        quote = compute_refund(
            booking.hire_amount_cents,
            task.scheduled_at,
            datetime.now(UTC),
            cancelled_by_worker=actor_id == booking.worker_id,
            tiers=self._cancellation_tiers,
        )

        now = now_iso()
        updated = self._transition(
            booking,
            {
                "status": BookingStatus.CANCELLED,
                "cancelled_at": now,
                "cancelled_by": actor_id,
                "cancellation_reason": reason,
                "refund_cents": quote.refund_cents,
            },
            ACTIVE_BOOKING_STATUSES,
            "cancel",
            task_updates={"status": TaskStatus.OPEN, "updated_at": now},
            task_expected=(TaskStatus.OPEN, TaskStatus.IN_PROGRESS),
            release_bid=True,
        )
        self._settle_escrow(updated)

        self._audit.record(
            booking_id,
            booking.task_id,
            actor_id,
            "booking_cancelled",
            "booking",
            {
                "reason": reason,
                "refund_cents": quote.refund_cents,
                "fee_cents": quote.fee_cents,
                "refund_pct": quote.refund_pct,
            },
        )
        self._logger.info(
            "Booking cancelled",
            extra={
                "booking_id": booking_id,
                "cancelled_by": actor_id,
                "refund_cents": quote.refund_cents,
                "fee_cents": quote.fee_cents,
            },
        )
        counterparty = booking.worker_id if actor_id == booking.owner_id else booking.owner_id
        await self._notifier.notify(
            counterparty,
            "Booking cancelled",
            f"The booking for '{task.title}' was cancelled",
            "booking",
            f"/bookings/{booking_id}",
        )
        response = self._booking_response(updated)
        response["refund"] = {
            "refund_cents": quote.refund_cents,
            "fee_cents": quote.fee_cents,
            "refund_pct": quote.refund_pct,
        }
        return response

    async def get_booking(self, booking_id: str) -> dict[str, Any]:
        """Get a booking with its escrow, settling any escrow left pending."""
        return self._booking_response(self._load_booking(booking_id))

    @staticmethod
    def decline_reasons() -> list[str]:
        """The fixed decline reasons offered to workers."""
        return list(DECLINE_REASONS)
