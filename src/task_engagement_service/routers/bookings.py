"""Hire request and booking lifecycle endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_engagement_service.core.exceptions import ServiceError
from task_engagement_service.core.state import get_app_state
from task_engagement_service.routers.validation import (
    optional_str,
    read_json_body,
    require_actor,
    require_int,
    require_str,
)
from task_engagement_service.schemas import DeclineReasonsResponse
from task_engagement_service.services.booking_machine import OTHER_DECLINE_REASON

if TYPE_CHECKING:
    from task_engagement_service.services.booking_machine import BookingStateMachine

router = APIRouter()


def _machine() -> BookingStateMachine:
    state = get_app_state()
    if state.booking_machine is None:
        msg = "BookingStateMachine not initialized"
        raise RuntimeError(msg)
    return state.booking_machine


# ---------------------------------------------------------------------------
# POST /tasks/{task_id}/hire - direct hire request
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/hire", status_code=201)
async def create_hire_request(task_id: str, request: Request) -> JSONResponse:
    """Send a direct hire request to a worker."""
    actor_id = require_actor(request)
    data = await read_json_body(request)

    result = await _machine().create_hire_request(
        task_id,
        actor_id,
        require_str(data, "worker_id"),
        require_int(data, "amount_cents"),
        optional_str(data, "message"),
    )
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /hire/decline-reasons - fixed decline reasons
# ---------------------------------------------------------------------------


@router.get("/hire/decline-reasons", response_model=DeclineReasonsResponse)
async def decline_reasons() -> DeclineReasonsResponse:
    """List the decline reasons offered to workers."""
    return DeclineReasonsResponse(
        reasons=_machine().decline_reasons(),
        other_reason=OTHER_DECLINE_REASON,
    )


# ---------------------------------------------------------------------------
# GET /bookings/{booking_id} - booking detail with escrow
# ---------------------------------------------------------------------------


@router.get("/bookings/{booking_id}")
async def get_booking(booking_id: str) -> dict[str, Any]:
    """Get a booking and its escrow record."""
    return await _machine().get_booking(booking_id)


# ---------------------------------------------------------------------------
# POST /bookings/{booking_id}/accept|decline|complete|cancel - transitions
# ---------------------------------------------------------------------------


@router.post("/bookings/{booking_id}/accept")
async def accept_booking(booking_id: str, request: Request) -> JSONResponse:
    """Worker accepts a pending hire request."""
    actor_id = require_actor(request)
    await read_json_body(request)
    result = await _machine().accept_booking(booking_id, actor_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/bookings/{booking_id}/decline")
async def decline_booking(booking_id: str, request: Request) -> JSONResponse:
    """Worker declines a pending hire request with a reason."""
    actor_id = require_actor(request)
    data = await read_json_body(request)
    reason = optional_str(data, "reason")
    result = await _machine().decline_booking(
        booking_id,
        actor_id,
        reason if reason is not None else "",
        optional_str(data, "details"),
    )
    return JSONResponse(status_code=200, content=result)


@router.post("/bookings/{booking_id}/complete")
async def complete_booking(booking_id: str, request: Request) -> JSONResponse:
    """Owner completes an accepted booking and releases payment."""
    actor_id = require_actor(request)
    await read_json_body(request)
    result = await _machine().complete_booking(booking_id, actor_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/bookings/{booking_id}/cancel")
async def cancel_booking(booking_id: str, request: Request) -> JSONResponse:
    """Either party cancels a pending or accepted booking."""
    actor_id = require_actor(request)
    data = await read_json_body(request)
    result = await _machine().cancel_booking(booking_id, actor_id, optional_str(data, "reason"))
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# GET /bookings/{booking_id}/audit - audit trail
# ---------------------------------------------------------------------------


@router.get("/bookings/{booking_id}/audit")
async def booking_audit(booking_id: str) -> dict[str, Any]:
    """Audit events recorded for a booking, oldest first."""
    state = get_app_state()
    if state.audit_log is None:
        msg = "AuditLog not initialized"
        raise RuntimeError(msg)
    await _machine().get_booking(booking_id)
    return {"booking_id": booking_id, "events": state.audit_log.list_events(booking_id)}


# ---------------------------------------------------------------------------
# Method-not-allowed: booking routes
# ---------------------------------------------------------------------------


@router.api_route("/bookings/{booking_id}/accept", methods=["GET", "PUT", "PATCH", "DELETE"])
@router.api_route("/bookings/{booking_id}/decline", methods=["GET", "PUT", "PATCH", "DELETE"])
@router.api_route("/bookings/{booking_id}/complete", methods=["GET", "PUT", "PATCH", "DELETE"])
@router.api_route("/bookings/{booking_id}/cancel", methods=["GET", "PUT", "PATCH", "DELETE"])
async def booking_transition_method_not_allowed(booking_id: str, request: Request) -> None:
    """Reject wrong methods on /bookings/{booking_id}/<transition>."""
    _ = (booking_id, request)
    raise ServiceError("METHOD_NOT_ALLOWED", "Method not allowed", 405, {})
