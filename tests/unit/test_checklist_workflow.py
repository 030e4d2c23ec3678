"""Unit tests for ChecklistWorkflow and the completability check."""

from __future__ import annotations

import pytest

from task_engagement_service.core.exceptions import (
    AuthorizationError,
    InvalidStateTransitionError,
    ItemHasCompletionError,
    NotFoundError,
    PhotoRequiredError,
    ValidationError,
)
from task_engagement_service.domain import ChecklistCompletion, ChecklistItem, CompletionStatus
from task_engagement_service.services.checklist_workflow import is_booking_completable
from tests.helpers import OWNER_ID, STRANGER_ID, WORKER_ID, open_task


def _item(item_id: str) -> ChecklistItem:
    return ChecklistItem(
        item_id=item_id,
        task_id="t-1",
        created_by=OWNER_ID,
        title=item_id,
        description=None,
        requires_photo=False,
        requires_approval=True,
        display_order=0,
        created_at="2026-01-01T00:00:00Z",
    )


def _completion(item_id: str, status: CompletionStatus) -> ChecklistCompletion:
    return ChecklistCompletion(
        completion_id=f"clc-{item_id}",
        item_id=item_id,
        booking_id="bk-1",
        completed_by=WORKER_ID,
        photo_ref=None,
        notes=None,
        status=status,
        rejection_reason=None,
        reviewed_by=None,
        reviewed_at=None,
        completed_at="2026-01-01T01:00:00Z",
    )


@pytest.mark.unit
def test_completable_requires_at_least_one_item() -> None:
    assert is_booking_completable([], []) is False


@pytest.mark.unit
def test_completable_requires_every_item_approved() -> None:
    items = [_item("a"), _item("b")]
    assert is_booking_completable(items, [_completion("a", CompletionStatus.APPROVED)]) is False
    assert (
        is_booking_completable(
            items,
            [
                _completion("a", CompletionStatus.APPROVED),
                _completion("b", CompletionStatus.PENDING),
            ],
        )
        is False
    )
    assert (
        is_booking_completable(
            items,
            [
                _completion("a", CompletionStatus.APPROVED),
                _completion("b", CompletionStatus.APPROVED),
            ],
        )
        is True
    )


@pytest.mark.unit
def test_completable_ignores_rejected_and_foreign_completions() -> None:
    items = [_item("a")]
    assert is_booking_completable(items, [_completion("a", CompletionStatus.REJECTED)]) is False
    assert is_booking_completable(items, [_completion("z", CompletionStatus.APPROVED)]) is False


async def _accepted_booking(services, *items: tuple[str, bool, bool]) -> tuple[dict, list[dict]]:
    """Open a task with checklist items, hire and accept; returns (booking, items)."""
    task_id = await open_task(services)
    defined = [
        await services.checklists.define_item(task_id, OWNER_ID, title, None, photo, approval)
        for title, photo, approval in items
    ]
    booking = await services.bookings.create_hire_request(task_id, OWNER_ID, WORKER_ID, 6000, None)
    await services.bookings.accept_booking(booking["booking_id"], WORKER_ID)
    return booking, defined


@pytest.mark.unit
async def test_define_item_rules(services) -> None:
    task_id = await open_task(services)

    first = await services.checklists.define_item(task_id, OWNER_ID, "Sweep", "Floors", False, True)
    second = await services.checklists.define_item(task_id, OWNER_ID, "Mop", None, True, False)

    assert first["item_id"].startswith("cli-")
    assert [first["display_order"], second["display_order"]] == [0, 1]
    assert second["requires_photo"] is True
    assert second["requires_approval"] is False

    with pytest.raises(ValidationError):
        await services.checklists.define_item(task_id, OWNER_ID, "   ", None, False, True)
    with pytest.raises(AuthorizationError):
        await services.checklists.define_item(task_id, WORKER_ID, "Dust", None, False, True)
    with pytest.raises(NotFoundError):
        await services.checklists.define_item("t-missing", OWNER_ID, "Dust", None, False, True)

    titles = [item["title"] for item in await services.checklists.list_items(task_id)]
    assert titles == ["Sweep", "Mop"]


@pytest.mark.unit
async def test_define_item_refused_on_completed_task(services) -> None:
    booking, _ = await _accepted_booking(services)
    await services.bookings.complete_booking(booking["booking_id"], OWNER_ID)

    with pytest.raises(InvalidStateTransitionError):
        await services.checklists.define_item(
            booking["task_id"], OWNER_ID, "Late item", None, False, True
        )


@pytest.mark.unit
async def test_delete_item(services) -> None:
    booking, items = await _accepted_booking(services, ("Sweep", False, True), ("Mop", False, True))
    task_id = booking["task_id"]
    sweep, mop = items

    await services.checklists.complete_item(booking["booking_id"], sweep["item_id"], WORKER_ID, None, None)

    with pytest.raises(ItemHasCompletionError):
        await services.checklists.delete_item(task_id, sweep["item_id"], OWNER_ID)
    with pytest.raises(AuthorizationError):
        await services.checklists.delete_item(task_id, mop["item_id"], WORKER_ID)

    result = await services.checklists.delete_item(task_id, mop["item_id"], OWNER_ID)
    assert result == {"item_id": mop["item_id"], "task_id": task_id, "deleted": True}

    with pytest.raises(NotFoundError) as exc_info:
        await services.checklists.delete_item(task_id, mop["item_id"], OWNER_ID)
    assert exc_info.value.error == "ITEM_NOT_FOUND"


@pytest.mark.unit
async def test_complete_item_preconditions(services) -> None:
    booking, items = await _accepted_booking(services, ("Photo of finished wall", True, True))
    item_id = items[0]["item_id"]

    with pytest.raises(AuthorizationError):
        await services.checklists.complete_item(booking["booking_id"], item_id, OWNER_ID, "p.jpg", None)
    with pytest.raises(PhotoRequiredError):
        await services.checklists.complete_item(booking["booking_id"], item_id, WORKER_ID, None, None)
    with pytest.raises(NotFoundError):
        await services.checklists.complete_item(booking["booking_id"], "cli-missing", WORKER_ID, None, None)

    completion = await services.checklists.complete_item(
        booking["booking_id"], item_id, WORKER_ID, "photos/wall.jpg", "Two coats"
    )
    assert completion["status"] == "pending"
    assert completion["photo_ref"] == "photos/wall.jpg"
    assert completion["booking_completed"] is False

    with pytest.raises(InvalidStateTransitionError):
        await services.checklists.complete_item(
            booking["booking_id"], item_id, WORKER_ID, "photos/again.jpg", None
        )


@pytest.mark.unit
async def test_complete_item_requires_accepted_booking(services) -> None:
    task_id = await open_task(services)
    item = await services.checklists.define_item(task_id, OWNER_ID, "Sweep", None, False, True)
    booking = await services.bookings.create_hire_request(task_id, OWNER_ID, WORKER_ID, 6000, None)

    with pytest.raises(InvalidStateTransitionError):
        await services.checklists.complete_item(
            booking["booking_id"], item["item_id"], WORKER_ID, None, None
        )


@pytest.mark.unit
async def test_item_from_other_task_is_not_found(services) -> None:
    booking, _ = await _accepted_booking(services, ("Sweep", False, True))
    other_task = await open_task(services)
    foreign = await services.checklists.define_item(other_task, OWNER_ID, "Other", None, False, True)

    with pytest.raises(NotFoundError):
        await services.checklists.complete_item(
            booking["booking_id"], foreign["item_id"], WORKER_ID, None, None
        )


@pytest.mark.unit
async def test_last_approval_completes_booking(services) -> None:
    """Approving the final pending item completes the booking and pays the worker."""
    booking, items = await _accepted_booking(services, ("Sweep", False, True), ("Mop", False, True))
    booking_id = booking["booking_id"]

    first = await services.checklists.complete_item(booking_id, items[0]["item_id"], WORKER_ID, None, None)
    second = await services.checklists.complete_item(booking_id, items[1]["item_id"], WORKER_ID, None, None)

    with pytest.raises(AuthorizationError):
        await services.checklists.approve_completion(first["completion_id"], WORKER_ID)

    approved = await services.checklists.approve_completion(first["completion_id"], OWNER_ID)
    assert approved["status"] == "approved"
    assert approved["reviewed_by"] == OWNER_ID
    assert approved["booking_completed"] is False

    final = await services.checklists.approve_completion(second["completion_id"], OWNER_ID)
    assert final["booking_completed"] is True

    fetched = await services.bookings.get_booking(booking_id)
    assert fetched["status"] == "completed"
    assert fetched["escrow"]["status"] == "released"
    assert services.escrow.get_wallet(WORKER_ID)["balance_cents"] == 5400

    with pytest.raises(InvalidStateTransitionError):
        await services.checklists.approve_completion(second["completion_id"], OWNER_ID)


@pytest.mark.unit
async def test_items_without_approval_complete_booking_immediately(services) -> None:
    booking, items = await _accepted_booking(services, ("Lock the door", False, False))

    completion = await services.checklists.complete_item(
        booking["booking_id"], items[0]["item_id"], WORKER_ID, None, None
    )

    assert completion["status"] == "approved"
    assert completion["booking_completed"] is True
    task = await services.registry.get_task(booking["task_id"])
    assert task["status"] == "completed"


@pytest.mark.unit
async def test_reject_then_retry(services) -> None:
    booking, items = await _accepted_booking(services, ("Sweep", False, True))
    booking_id = booking["booking_id"]
    item_id = items[0]["item_id"]

    completion = await services.checklists.complete_item(booking_id, item_id, WORKER_ID, None, None)

    with pytest.raises(ValidationError):
        await services.checklists.reject_completion(completion["completion_id"], OWNER_ID, " ")
    with pytest.raises(InvalidStateTransitionError):
        await services.checklists.retry_completion(completion["completion_id"], WORKER_ID)

    rejected = await services.checklists.reject_completion(
        completion["completion_id"], OWNER_ID, "Corners missed"
    )
    assert rejected["status"] == "rejected"
    assert rejected["rejection_reason"] == "Corners missed"

    with pytest.raises(AuthorizationError):
        await services.checklists.retry_completion(completion["completion_id"], STRANGER_ID)

    retried = await services.checklists.retry_completion(completion["completion_id"], WORKER_ID)
    assert retried == {
        "completion_id": completion["completion_id"],
        "item_id": item_id,
        "retried": True,
    }

    again = await services.checklists.complete_item(booking_id, item_id, WORKER_ID, None, "Redone")
    assert again["status"] == "pending"
    assert again["completion_id"] != completion["completion_id"]


@pytest.mark.unit
async def test_progress(services) -> None:
    booking, items = await _accepted_booking(
        services,
        ("Sweep", False, True),
        ("Mop", False, True),
        ("Dust", False, True),
        ("Vacuum", False, True),
    )
    booking_id = booking["booking_id"]
    completion = await services.checklists.complete_item(
        booking_id, items[0]["item_id"], WORKER_ID, None, None
    )
    await services.checklists.approve_completion(completion["completion_id"], OWNER_ID)
    await services.checklists.complete_item(booking_id, items[1]["item_id"], WORKER_ID, None, None)

    progress = await services.checklists.progress(booking_id)

    assert progress["total_items"] == 4
    assert progress["approved_items"] == 1
    assert progress["progress_pct"] == 25
    assert progress["completable"] is False
    assert progress["items"][0]["completion"]["status"] == "approved"
    assert progress["items"][1]["completion"]["status"] == "pending"
    assert progress["items"][2]["completion"] is None


@pytest.mark.unit
async def test_checklist_audit_events(services) -> None:
    booking, items = await _accepted_booking(services, ("Sweep", False, True))
    completion = await services.checklists.complete_item(
        booking["booking_id"], items[0]["item_id"], WORKER_ID, None, None
    )
    await services.checklists.approve_completion(completion["completion_id"], OWNER_ID)

    checklist_events = [
        event["event_type"]
        for event in services.audit.list_events(booking["booking_id"])
        if event["event_category"] == "checklist"
    ]
    assert checklist_events == ["checklist_item_completed", "checklist_item_approved"]
