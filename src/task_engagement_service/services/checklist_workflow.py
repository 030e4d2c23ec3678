"""Checklist definition, proof-of-work completions and owner review."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from task_engagement_service.core.exceptions import (
    AuthorizationError,
    InvalidStateTransitionError,
    ItemHasCompletionError,
    NotFoundError,
    PhotoRequiredError,
    ValidationError,
)
from task_engagement_service.domain import BookingStatus, CompletionStatus, TaskStatus
from task_engagement_service.logging import get_logger
from task_engagement_service.services.database import now_iso
from task_engagement_service.services.engagement_store import CompletionConflictError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from task_engagement_service.domain import (
        Booking,
        ChecklistCompletion,
        ChecklistItem,
        Task,
    )
    from task_engagement_service.services.audit_log import AuditLog
    from task_engagement_service.services.booking_machine import BookingStateMachine
    from task_engagement_service.services.change_feed import ChangeFeed
    from task_engagement_service.services.engagement_store import EngagementStore
    from task_engagement_service.services.notification_dispatcher import NotificationDispatcher

_MAX_TITLE_LENGTH = 200
_CLOSED_TASK_STATUSES = (TaskStatus.COMPLETED, TaskStatus.CANCELLED)


def is_booking_completable(
    items: Iterable[ChecklistItem],
    completions: Iterable[ChecklistCompletion],
) -> bool:
    """True iff there is at least one item and every item has an approved completion."""
    approved = {c.item_id for c in completions if c.status == CompletionStatus.APPROVED}
    item_ids = [item.item_id for item in items]
    return len(item_ids) > 0 and all(item_id in approved for item_id in item_ids)


class ChecklistWorkflow:
    """
    Governs the checklist of a task and its completions within a booking.

    Approvals, and completions that need no approval, re-evaluate the
    booking; once every item is approved the booking is completed.
    """

    def __init__(
        self,
        store: EngagementStore,
        booking_machine: BookingStateMachine,
        notifier: NotificationDispatcher,
        audit: AuditLog,
        change_feed: ChangeFeed,
    ) -> None:
        self._store = store
        self._booking_machine = booking_machine
        self._notifier = notifier
        self._audit = audit
        self._change_feed = change_feed
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

    def _load_completion(self, completion_id: str) -> ChecklistCompletion:
        completion = self._store.get_completion(completion_id)
        if completion is None:
            raise NotFoundError("completion", completion_id)
        return completion

    def _lost_race(
        self, completion_id: str, expected: str, action: str
    ) -> InvalidStateTransitionError:
        current = self._store.get_completion(completion_id)
        status = current.status if current is not None else None
        return InvalidStateTransitionError("completion", status, expected, action)

    async def _complete_booking_if_ready(self, booking: Booking, actor_id: str) -> bool:
        result = await self._booking_machine.complete_if_ready(booking.booking_id, actor_id)
        return result is not None

    # ------------------------------------------------------------------
    # Checklist definition
    # ------------------------------------------------------------------

    async def define_item(
        self,
        task_id: str,
        actor_id: str,
        title: str,
        description: str | None,
        requires_photo: bool,
        requires_approval: bool,
    ) -> dict[str, Any]:
        """
        Append an item to the task's checklist.

        Error precedence:
        1. VALIDATION_ERROR - title empty or too long
        2. TASK_NOT_FOUND
        3. FORBIDDEN - actor is not the task owner
        4. INVALID_STATE_TRANSITION - task is completed or cancelled
        """
        title = title.strip()
        if not 1 <= len(title) <= _MAX_TITLE_LENGTH:
            raise ValidationError(
                f"Title must be between 1 and {_MAX_TITLE_LENGTH} characters",
                {"field": "title"},
            )

        task = self._load_task(task_id)
        if task.owner_id != actor_id:
            raise AuthorizationError("Only the task owner can define checklist items")
        if task.status in _CLOSED_TASK_STATUSES:
            raise InvalidStateTransitionError(
                "task",
                task.status,
                (TaskStatus.DRAFT, TaskStatus.OPEN, TaskStatus.IN_PROGRESS),
                "add checklist items to",
            )

        item = self._store.insert_item(
            {
                "item_id": f"cli-{uuid.uuid4()}",
                "task_id": task_id,
                "created_by": actor_id,
                "title": title,
                "description": description,
                "requires_photo": requires_photo,
                "requires_approval": requires_approval,
                "display_order": 0,
                "created_at": now_iso(),
            }
        )
        self._change_feed.publish("checklist_item", "insert", item.to_dict())
        self._logger.info(
            "Checklist item defined",
            extra={"task_id": task_id, "item_id": item.item_id},
        )
        return item.to_dict()

    async def list_items(self, task_id: str) -> list[dict[str, Any]]:
        """Checklist items for a task in display order."""
        self._load_task(task_id)
        return [item.to_dict() for item in self._store.list_items(task_id)]

    async def delete_item(self, task_id: str, item_id: str, actor_id: str) -> dict[str, Any]:
        """
        Remove an item that nobody has completed yet.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN - actor is not the task owner
        3. ITEM_NOT_FOUND
        4. ITEM_HAS_COMPLETION
        """
        task = self._load_task(task_id)
        if task.owner_id != actor_id:
            raise AuthorizationError("Only the task owner can delete checklist items")
        item = self._store.get_item(item_id)
        if item is None or item.task_id != task_id:
            raise NotFoundError("item", item_id)

        if self._store.delete_item_without_completions(item_id) == 0:
            if self._store.get_item(item_id) is None:
                raise NotFoundError("item", item_id)
            raise ItemHasCompletionError(item_id)

        self._change_feed.publish("checklist_item", "delete", item.to_dict())
        self._logger.info("Checklist item deleted", extra={"task_id": task_id, "item_id": item_id})
        return {"item_id": item_id, "task_id": task_id, "deleted": True}

    # ------------------------------------------------------------------
    # Completions
    # ------------------------------------------------------------------

    async def complete_item(
        self,
        booking_id: str,
        item_id: str,
        actor_id: str,
        photo_ref: str | None,
        notes: str | None,
    ) -> dict[str, Any]:
        """
        Record the worker's completion of one item within a booking.

        Items that need no approval are approved immediately and may
        complete the booking.

        Error precedence:
        1. BOOKING_NOT_FOUND
        2. FORBIDDEN - actor is not the assigned worker
        3. INVALID_STATE_TRANSITION - booking is not accepted
        4. ITEM_NOT_FOUND - missing or belongs to another task
        5. PHOTO_REQUIRED
        6. INVALID_STATE_TRANSITION - item already has a completion in this booking
        """
        booking = self._load_booking(booking_id)
        if booking.worker_id != actor_id:
            raise AuthorizationError("Only the assigned worker can complete checklist items")
        if booking.status != BookingStatus.ACCEPTED:
            raise InvalidStateTransitionError(
                "booking", booking.status, BookingStatus.ACCEPTED, "complete checklist items of"
            )
        item = self._store.get_item(item_id)
        if item is None or item.task_id != booking.task_id:
            raise NotFoundError("item", item_id)
        if item.requires_photo and not (photo_ref and photo_ref.strip()):
            raise PhotoRequiredError(item_id)

        status = CompletionStatus.PENDING if item.requires_approval else CompletionStatus.APPROVED
        try:
            completion = self._store.insert_completion(
                {
                    "completion_id": f"clc-{uuid.uuid4()}",
                    "item_id": item_id,
                    "booking_id": booking_id,
                    "completed_by": actor_id,
                    "photo_ref": photo_ref,
                    "notes": notes,
                    "status": status,
                    "rejection_reason": None,
                    "reviewed_by": None,
                    "reviewed_at": None,
                    "completed_at": now_iso(),
                }
            )
        except CompletionConflictError as exc:
            existing = self._store.find_completion(item_id, booking_id)
            raise InvalidStateTransitionError(
                "checklist item",
                existing.status if existing is not None else None,
                "not completed",
                "complete",
            ) from exc

        self._change_feed.publish("checklist_completion", "insert", completion.to_dict())
        self._audit.record(
            booking_id,
            booking.task_id,
            actor_id,
            "checklist_item_completed",
            "checklist",
            {
                "item_id": item_id,
                "completion_id": completion.completion_id,
                "status": str(status),
                "has_photo": photo_ref is not None,
            },
        )
        self._logger.info(
            "Checklist item completed",
            extra={
                "booking_id": booking_id,
                "item_id": item_id,
                "completion_id": completion.completion_id,
                "status": str(status),
            },
        )

        booking_completed = False
        if status == CompletionStatus.PENDING:
            await self._notifier.notify(
                booking.owner_id,
                "Checklist item ready for review",
                f"'{item.title}' was marked complete and needs your approval",
                "checklist",
                f"/bookings/{booking_id}/checklist",
            )
        else:
            booking_completed = await self._complete_booking_if_ready(booking, actor_id)

        response = completion.to_dict()
        response["booking_completed"] = booking_completed
        return response

    async def approve_completion(self, completion_id: str, actor_id: str) -> dict[str, Any]:
        """
        Owner approves a pending completion; may complete the booking.

        Error precedence:
        1. COMPLETION_NOT_FOUND
        2. FORBIDDEN - actor is not the task owner
        3. INVALID_STATE_TRANSITION - completion is not pending (or lost a race)
        """
        completion = self._load_completion(completion_id)
        booking = self._load_booking(completion.booking_id)
        if booking.owner_id != actor_id:
            raise AuthorizationError("Only the task owner can approve checklist items")
        if completion.status != CompletionStatus.PENDING:
            raise InvalidStateTransitionError(
                "completion", completion.status, CompletionStatus.PENDING, "approve"
            )

        changed = self._store.update_completion(
            completion_id,
            {
                "status": CompletionStatus.APPROVED,
                "reviewed_by": actor_id,
                "reviewed_at": now_iso(),
            },
            expected_status=CompletionStatus.PENDING,
        )
        if changed == 0:
            raise self._lost_race(completion_id, CompletionStatus.PENDING, "approve")

        approved = self._load_completion(completion_id)
        self._change_feed.publish("checklist_completion", "update", approved.to_dict())
        self._audit.record(
            booking.booking_id,
            booking.task_id,
            actor_id,
            "checklist_item_approved",
            "checklist",
            {"item_id": completion.item_id, "completion_id": completion_id},
        )
        self._logger.info(
            "Checklist completion approved",
            extra={"completion_id": completion_id, "booking_id": booking.booking_id},
        )
        await self._notifier.notify(
            booking.worker_id,
            "Checklist item approved",
            "A checklist item you completed was approved",
            "checklist",
            f"/bookings/{booking.booking_id}/checklist",
        )

        response = approved.to_dict()
        response["booking_completed"] = await self._complete_booking_if_ready(booking, actor_id)
        return response

    async def reject_completion(
        self,
        completion_id: str,
        actor_id: str,
        reason: str,
    ) -> dict[str, Any]:
        """
        Owner rejects a pending completion with a reason.

        Error precedence:
        1. COMPLETION_NOT_FOUND
        2. FORBIDDEN - actor is not the task owner
        3. VALIDATION_ERROR - empty reason
        4. INVALID_STATE_TRANSITION - completion is not pending (or lost a race)
        """
        completion = self._load_completion(completion_id)
        booking = self._load_booking(completion.booking_id)
        if booking.owner_id != actor_id:
            raise AuthorizationError("Only the task owner can reject checklist items")
        reason = reason.strip()
        if not reason:
            raise ValidationError("A rejection reason is required", {"field": "reason"})
        if completion.status != CompletionStatus.PENDING:
            raise InvalidStateTransitionError(
                "completion", completion.status, CompletionStatus.PENDING, "reject"
            )

        changed = self._store.update_completion(
            completion_id,
            {
                "status": CompletionStatus.REJECTED,
                "rejection_reason": reason,
                "reviewed_by": actor_id,
                "reviewed_at": now_iso(),
            },
            expected_status=CompletionStatus.PENDING,
        )
        if changed == 0:
            raise self._lost_race(completion_id, CompletionStatus.PENDING, "reject")

        rejected = self._load_completion(completion_id)
        self._change_feed.publish("checklist_completion", "update", rejected.to_dict())
        self._audit.record(
            booking.booking_id,
            booking.task_id,
            actor_id,
            "checklist_item_rejected",
            "checklist",
            {"item_id": completion.item_id, "completion_id": completion_id, "reason": reason},
        )
        self._logger.info(
            "Checklist completion rejected",
            extra={"completion_id": completion_id, "booking_id": booking.booking_id},
        )
        await self._notifier.notify(
            booking.worker_id,
            "Checklist item needs another attempt",
            f"A checklist item was rejected: {reason}",
            "checklist",
            f"/bookings/{booking.booking_id}/checklist",
        )
        return rejected.to_dict()

    async def retry_completion(self, completion_id: str, actor_id: str) -> dict[str, Any]:
        """
        Worker clears a rejected completion so the item can be completed again.

        Error precedence:
        1. COMPLETION_NOT_FOUND
        2. FORBIDDEN - actor is not the assigned worker
        3. INVALID_STATE_TRANSITION - completion is not rejected (or lost a race)
        """
        completion = self._load_completion(completion_id)
        booking = self._load_booking(completion.booking_id)
        if booking.worker_id != actor_id:
            raise AuthorizationError("Only the assigned worker can retry checklist items")
        if completion.status != CompletionStatus.REJECTED:
            raise InvalidStateTransitionError(
                "completion", completion.status, CompletionStatus.REJECTED, "retry"
            )

        if self._store.delete_completion(completion_id, expected_status=CompletionStatus.REJECTED) == 0:
            raise self._lost_race(completion_id, CompletionStatus.REJECTED, "retry")

        self._change_feed.publish("checklist_completion", "delete", completion.to_dict())
        self._logger.info(
            "Checklist completion cleared for retry",
            extra={"completion_id": completion_id, "item_id": completion.item_id},
        )
        return {"completion_id": completion_id, "item_id": completion.item_id, "retried": True}

    async def progress(self, booking_id: str) -> dict[str, Any]:
        """Items with their completion in this booking, plus progress figures."""
        booking = self._load_booking(booking_id)
        items = self._store.list_items(booking.task_id)
        completions = self._store.list_completions(booking_id)
        by_item = {completion.item_id: completion for completion in completions}

        entries: list[dict[str, Any]] = []
        for item in items:
            completion = by_item.get(item.item_id)
            entry = item.to_dict()
            entry["completion"] = completion.to_dict() if completion is not None else None
            entries.append(entry)

        approved = sum(
            1
            for item in items
            if item.item_id in by_item and by_item[item.item_id].status == CompletionStatus.APPROVED
        )
        total = len(items)
        return {
            "booking_id": booking_id,
            "task_id": booking.task_id,
            "items": entries,
            "total_items": total,
            "approved_items": approved,
            "progress_pct": (approved * 100 // total) if total > 0 else 0,
            "completable": is_booking_completable(items, completions),
        }
