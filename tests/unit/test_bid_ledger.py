"""Unit tests for BidLedger."""

from __future__ import annotations

import pytest

from task_engagement_service.core.exceptions import (
    AuthorizationError,
    DuplicateBidError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from tests.helpers import (
    MAX_AMOUNT_CENTS,
    OTHER_WORKER_ID,
    OWNER_ID,
    STRANGER_ID,
    WORKER_ID,
    open_task,
)


@pytest.mark.unit
async def test_submit_bid_notifies_owner(services) -> None:
    task_id = await open_task(services)

    bid = await services.bids.submit_bid(task_id, WORKER_ID, 4500, "Can do Friday", 3.5)

    assert bid["bid_id"].startswith("bid-")
    assert bid["status"] == "pending"
    assert bid["amount_cents"] == 4500
    assert bid["estimated_hours"] == 3.5
    services.notifier.notify.assert_awaited_once()
    assert services.notifier.notify.await_args.args[0] == OWNER_ID


@pytest.mark.unit
@pytest.mark.parametrize(
    ("amount", "message", "hours"),
    [
        (0, None, None),
        (-5, None, None),
        (MAX_AMOUNT_CENTS + 1, None, None),
        (True, None, None),
        (1000, "x" * 501, None),
        (1000, None, 0),
        (1000, None, -1.5),
    ],
)
async def test_submit_bid_validation(services, amount, message, hours) -> None:
    task_id = await open_task(services)
    with pytest.raises(ValidationError):
        await services.bids.submit_bid(task_id, WORKER_ID, amount, message, hours)


@pytest.mark.unit
async def test_submit_bid_preconditions(services) -> None:
    """Unknown task, own task, closed task and duplicate bids are all refused."""
    with pytest.raises(NotFoundError):
        await services.bids.submit_bid("t-missing", WORKER_ID, 1000, None, None)

    task_id = await open_task(services)
    with pytest.raises(AuthorizationError):
        await services.bids.submit_bid(task_id, OWNER_ID, 1000, None, None)

    await services.bids.submit_bid(task_id, WORKER_ID, 1000, None, None)
    with pytest.raises(DuplicateBidError) as exc_info:
        await services.bids.submit_bid(task_id, WORKER_ID, 900, None, None)
    assert exc_info.value.status_code == 409

    draft = await services.registry.create_task(
        owner_id=OWNER_ID,
        title="Draft",
        description="",
        category="misc",
        location="Köln",
        pay_amount_cents=1000,
        budget_type="hourly",
        scheduled_at=None,
        publish=False,
    )
    with pytest.raises(InvalidStateTransitionError):
        await services.bids.submit_bid(draft["task_id"], WORKER_ID, 1000, None, None)


@pytest.mark.unit
async def test_update_bid_changes_only_supplied_fields(services) -> None:
    task_id = await open_task(services)
    bid = await services.bids.submit_bid(task_id, WORKER_ID, 4500, "Original", 2.0)

    updated = await services.bids.update_bid(task_id, bid["bid_id"], WORKER_ID, amount_cents=4000)

    assert updated["amount_cents"] == 4000
    assert updated["message"] == "Original"
    assert updated["estimated_hours"] == 2.0

    cleared = await services.bids.update_bid(task_id, bid["bid_id"], WORKER_ID, message=None)
    assert cleared["message"] is None


@pytest.mark.unit
async def test_update_bid_rules(services) -> None:
    task_id = await open_task(services)
    bid = await services.bids.submit_bid(task_id, WORKER_ID, 4500, None, None)

    with pytest.raises(AuthorizationError):
        await services.bids.update_bid(task_id, bid["bid_id"], STRANGER_ID, amount_cents=1)
    with pytest.raises(ValidationError):
        await services.bids.update_bid(task_id, bid["bid_id"], WORKER_ID)
    with pytest.raises(NotFoundError):
        await services.bids.update_bid(task_id, "bid-missing", WORKER_ID, amount_cents=1)

    await services.bids.reject_bid(task_id, bid["bid_id"], OWNER_ID)
    with pytest.raises(InvalidStateTransitionError):
        await services.bids.update_bid(task_id, bid["bid_id"], WORKER_ID, amount_cents=4000)


@pytest.mark.unit
async def test_withdraw_allows_rebidding(services) -> None:
    task_id = await open_task(services)
    bid = await services.bids.submit_bid(task_id, WORKER_ID, 4500, None, None)

    result = await services.bids.withdraw_bid(task_id, bid["bid_id"], WORKER_ID)

    assert result == {"bid_id": bid["bid_id"], "task_id": task_id, "withdrawn": True}
    assert await services.bids.list_bids(task_id) == []
    await services.bids.submit_bid(task_id, WORKER_ID, 4200, None, None)


@pytest.mark.unit
async def test_reject_bid_is_owner_only(services) -> None:
    task_id = await open_task(services)
    bid = await services.bids.submit_bid(task_id, WORKER_ID, 4500, None, None)

    with pytest.raises(AuthorizationError):
        await services.bids.reject_bid(task_id, bid["bid_id"], WORKER_ID)

    rejected = await services.bids.reject_bid(task_id, bid["bid_id"], OWNER_ID)
    assert rejected["status"] == "rejected"


@pytest.mark.unit
async def test_accept_bid_creates_funded_booking(services) -> None:
    """Acceptance rejects siblings, books the winner and holds escrow."""
    task_id = await open_task(services)
    winner = await services.bids.submit_bid(task_id, WORKER_ID, 4500, None, None)
    loser = await services.bids.submit_bid(task_id, OTHER_WORKER_ID, 4000, None, None)

    result = await services.bids.accept_bid(task_id, winner["bid_id"], OWNER_ID)

    booking = result["booking"]
    assert booking["status"] == "accepted"
    assert booking["worker_id"] == WORKER_ID
    assert booking["bid_id"] == winner["bid_id"]
    assert booking["hire_amount_cents"] == 4500

    statuses = {bid["bid_id"]: bid["status"] for bid in await services.bids.list_bids(task_id)}
    assert statuses == {winner["bid_id"]: "accepted", loser["bid_id"]: "rejected"}

    task = await services.registry.get_task(task_id)
    assert task["status"] == "in_progress"

    escrow = services.escrow.get_escrow(result["booking_id"])
    assert escrow is not None
    assert escrow["status"] == "held"
    assert escrow["amount_cents"] == 4500
    assert escrow["payer_id"] == OWNER_ID
    assert escrow["payee_id"] == WORKER_ID

    events = services.audit.list_events(result["booking_id"])
    assert [event["event_type"] for event in events] == ["bid_accepted"]


@pytest.mark.unit
async def test_accept_bid_rerun_is_idempotent(services) -> None:
    task_id = await open_task(services)
    bid = await services.bids.submit_bid(task_id, WORKER_ID, 4500, None, None)

    first = await services.bids.accept_bid(task_id, bid["bid_id"], OWNER_ID)
    second = await services.bids.accept_bid(task_id, bid["bid_id"], OWNER_ID)

    assert first["booking_id"] == second["booking_id"]
    escrow = services.escrow.get_escrow(first["booking_id"])
    assert escrow is not None
    assert escrow["amount_cents"] == 4500


@pytest.mark.unit
async def test_second_acceptance_fails(services) -> None:
    """After one bid wins, the remaining bids cannot be accepted."""
    task_id = await open_task(services)
    winner = await services.bids.submit_bid(task_id, WORKER_ID, 4500, None, None)
    other = await services.bids.submit_bid(task_id, OTHER_WORKER_ID, 4000, None, None)
    await services.bids.accept_bid(task_id, winner["bid_id"], OWNER_ID)

    with pytest.raises(InvalidStateTransitionError):
        await services.bids.accept_bid(task_id, other["bid_id"], OWNER_ID)


@pytest.mark.unit
async def test_accept_bid_requires_owner(services) -> None:
    task_id = await open_task(services)
    bid = await services.bids.submit_bid(task_id, WORKER_ID, 4500, None, None)

    with pytest.raises(AuthorizationError):
        await services.bids.accept_bid(task_id, bid["bid_id"], WORKER_ID)
    with pytest.raises(NotFoundError):
        await services.bids.accept_bid(task_id, "bid-missing", OWNER_ID)


@pytest.mark.unit
async def test_accept_bid_blocked_by_pending_hire(services) -> None:
    """A pending direct hire occupies the task; bids wait until it resolves."""
    task_id = await open_task(services)
    bid = await services.bids.submit_bid(task_id, WORKER_ID, 4500, None, None)
    await services.bookings.create_hire_request(task_id, OWNER_ID, OTHER_WORKER_ID, 5000, None)

    with pytest.raises(InvalidStateTransitionError):
        await services.bids.accept_bid(task_id, bid["bid_id"], OWNER_ID)

    listed = await services.bids.list_bids(task_id)
    assert listed[0]["status"] == "pending"


@pytest.mark.unit
async def test_accept_bid_leaves_bidders_pending_hire_untouched(services) -> None:
    """A pending hire for the bidder is not rewritten into the bid's booking."""
    task_id = await open_task(services)
    bid = await services.bids.submit_bid(task_id, WORKER_ID, 8000, None, None)
    hire = await services.bookings.create_hire_request(task_id, OWNER_ID, WORKER_ID, 15000, None)

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        await services.bids.accept_bid(task_id, bid["bid_id"], OWNER_ID)
    assert exc_info.value.status_code == 409

    listed = await services.bids.list_bids(task_id)
    assert listed[0]["status"] == "pending"

    booking = await services.bookings.get_booking(hire["booking_id"])
    assert booking["status"] == "pending"
    assert booking["bid_id"] is None
    assert booking["hire_amount_cents"] == 15000
    assert booking["escrow"]["status"] == "held"
    assert booking["escrow"]["amount_cents"] == 15000

    task = await services.registry.get_task(task_id)
    assert task["status"] == "open"


@pytest.mark.unit
async def test_list_bids_lowest_first(services) -> None:
    task_id = await open_task(services)
    await services.bids.submit_bid(task_id, WORKER_ID, 4500, None, None)
    await services.bids.submit_bid(task_id, OTHER_WORKER_ID, 3900, None, None)
    await services.bids.submit_bid(task_id, STRANGER_ID, 4100, None, None)

    amounts = [bid["amount_cents"] for bid in await services.bids.list_bids(task_id)]
    assert amounts == [3900, 4100, 4500]
