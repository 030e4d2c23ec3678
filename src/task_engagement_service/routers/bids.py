"""Bid submission, revision, withdrawal, rejection and acceptance endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_engagement_service.core.exceptions import ServiceError
from task_engagement_service.core.state import get_app_state
from task_engagement_service.routers.validation import (
    optional_number,
    optional_str,
    read_json_body,
    require_actor,
    require_int,
)
from task_engagement_service.services.bid_ledger import UNSET

if TYPE_CHECKING:
    from task_engagement_service.services.bid_ledger import BidLedger

router = APIRouter()


def _ledger() -> BidLedger:
    state = get_app_state()
    if state.bid_ledger is None:
        msg = "BidLedger not initialized"
        raise RuntimeError(msg)
    return state.bid_ledger


# ---------------------------------------------------------------------------
# POST /tasks/{task_id}/bids - submit bid
# MUST be before GET /tasks/{task_id}/bids
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/bids", status_code=201)
async def submit_bid(task_id: str, request: Request) -> JSONResponse:
    """Submit a bid on an open task."""
    actor_id = require_actor(request)
    data = await read_json_body(request)

    result = await _ledger().submit_bid(
        task_id,
        actor_id,
        require_int(data, "amount_cents"),
        optional_str(data, "message"),
        optional_number(data, "estimated_hours"),
    )
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks/{task_id}/bids - list bids, lowest amount first
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}/bids")
async def list_bids(task_id: str) -> dict[str, Any]:
    """List bids for a task."""
    return {"task_id": task_id, "bids": await _ledger().list_bids(task_id)}


# ---------------------------------------------------------------------------
# PATCH /tasks/{task_id}/bids/{bid_id} - revise a pending bid
# ---------------------------------------------------------------------------


@router.patch("/tasks/{task_id}/bids/{bid_id}")
async def update_bid(task_id: str, bid_id: str, request: Request) -> JSONResponse:
    """Revise amount, message or estimated hours of a pending bid."""
    actor_id = require_actor(request)
    data = await read_json_body(request)

    result = await _ledger().update_bid(
        task_id,
        bid_id,
        actor_id,
        amount_cents=require_int(data, "amount_cents") if "amount_cents" in data else UNSET,
        message=optional_str(data, "message") if "message" in data else UNSET,
        estimated_hours=(
            optional_number(data, "estimated_hours") if "estimated_hours" in data else UNSET
        ),
    )
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# DELETE /tasks/{task_id}/bids/{bid_id} - withdraw a pending bid
# ---------------------------------------------------------------------------


@router.delete("/tasks/{task_id}/bids/{bid_id}")
async def withdraw_bid(task_id: str, bid_id: str, request: Request) -> JSONResponse:
    """Withdraw a pending bid."""
    actor_id = require_actor(request)
    result = await _ledger().withdraw_bid(task_id, bid_id, actor_id)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# POST /tasks/{task_id}/bids/{bid_id}/accept - accept bid
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/bids/{bid_id}/accept")
async def accept_bid(task_id: str, bid_id: str, request: Request) -> JSONResponse:
    """Accept a bid, reject the rest and create the booking."""
    actor_id = require_actor(request)
    await read_json_body(request)
    result = await _ledger().accept_bid(task_id, bid_id, actor_id)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# POST /tasks/{task_id}/bids/{bid_id}/reject - reject bid
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/bids/{bid_id}/reject")
async def reject_bid(task_id: str, bid_id: str, request: Request) -> JSONResponse:
    """Reject a pending bid."""
    actor_id = require_actor(request)
    await read_json_body(request)
    result = await _ledger().reject_bid(task_id, bid_id, actor_id)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Method-not-allowed: bid routes
# ---------------------------------------------------------------------------


@router.api_route(
    "/tasks/{task_id}/bids/{bid_id}/accept",
    methods=["GET", "PUT", "PATCH", "DELETE"],
)
@router.api_route(
    "/tasks/{task_id}/bids/{bid_id}/reject",
    methods=["GET", "PUT", "PATCH", "DELETE"],
)
async def bid_action_method_not_allowed(
    task_id: str,
    bid_id: str,
    request: Request,
) -> None:
    """Reject wrong methods on /tasks/{task_id}/bids/{bid_id}/accept and /reject."""
    _ = (task_id, bid_id, request)
    raise ServiceError("METHOD_NOT_ALLOWED", "Method not allowed", 405, {})
