"""Checklist definition, completion and review endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_engagement_service.core.exceptions import ServiceError
from task_engagement_service.core.state import get_app_state
from task_engagement_service.routers.validation import (
    optional_bool,
    optional_str,
    read_json_body,
    require_actor,
    require_str,
)

if TYPE_CHECKING:
    from task_engagement_service.services.checklist_workflow import ChecklistWorkflow

router = APIRouter()


def _workflow() -> ChecklistWorkflow:
    state = get_app_state()
    if state.checklist_workflow is None:
        msg = "ChecklistWorkflow not initialized"
        raise RuntimeError(msg)
    return state.checklist_workflow


# ---------------------------------------------------------------------------
# Task checklist definition
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/checklist", status_code=201)
async def define_item(task_id: str, request: Request) -> JSONResponse:
    """Add an item to a task's checklist."""
    actor_id = require_actor(request)
    data = await read_json_body(request)

    result = await _workflow().define_item(
        task_id,
        actor_id,
        require_str(data, "title"),
        optional_str(data, "description"),
        optional_bool(data, "requires_photo", default=False),
        optional_bool(data, "requires_approval", default=True),
    )
    return JSONResponse(status_code=201, content=result)


@router.get("/tasks/{task_id}/checklist")
async def list_items(task_id: str) -> dict[str, Any]:
    """List a task's checklist in display order."""
    return {"task_id": task_id, "items": await _workflow().list_items(task_id)}


@router.delete("/tasks/{task_id}/checklist/{item_id}")
async def delete_item(task_id: str, item_id: str, request: Request) -> JSONResponse:
    """Delete a checklist item that has no completions."""
    actor_id = require_actor(request)
    result = await _workflow().delete_item(task_id, item_id, actor_id)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Booking checklist progress and completions
# ---------------------------------------------------------------------------


@router.get("/bookings/{booking_id}/checklist")
async def booking_checklist(booking_id: str) -> dict[str, Any]:
    """Items, their completions in this booking, and progress."""
    return await _workflow().progress(booking_id)


@router.post("/bookings/{booking_id}/checklist/{item_id}/complete", status_code=201)
async def complete_item(booking_id: str, item_id: str, request: Request) -> JSONResponse:
    """Worker marks a checklist item complete, with a photo where required."""
    actor_id = require_actor(request)
    data = await read_json_body(request)

    result = await _workflow().complete_item(
        booking_id,
        item_id,
        actor_id,
        optional_str(data, "photo_ref"),
        optional_str(data, "notes"),
    )
    return JSONResponse(status_code=201, content=result)


@router.post("/completions/{completion_id}/approve")
async def approve_completion(completion_id: str, request: Request) -> JSONResponse:
    """Owner approves a pending completion."""
    actor_id = require_actor(request)
    await read_json_body(request)
    result = await _workflow().approve_completion(completion_id, actor_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/completions/{completion_id}/reject")
async def reject_completion(completion_id: str, request: Request) -> JSONResponse:
    """Owner rejects a pending completion with a reason."""
    actor_id = require_actor(request)
    data = await read_json_body(request)
    reason = optional_str(data, "reason")
    result = await _workflow().reject_completion(
        completion_id,
        actor_id,
        reason if reason is not None else "",
    )
    return JSONResponse(status_code=200, content=result)


@router.post("/completions/{completion_id}/retry")
async def retry_completion(completion_id: str, request: Request) -> JSONResponse:
    """Worker clears a rejected completion to try again."""
    actor_id = require_actor(request)
    await read_json_body(request)
    result = await _workflow().retry_completion(completion_id, actor_id)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Method-not-allowed: completion routes
# ---------------------------------------------------------------------------


@router.api_route("/completions/{completion_id}/approve", methods=["GET", "PUT", "PATCH", "DELETE"])
@router.api_route("/completions/{completion_id}/reject", methods=["GET", "PUT", "PATCH", "DELETE"])
@router.api_route("/completions/{completion_id}/retry", methods=["GET", "PUT", "PATCH", "DELETE"])
async def completion_method_not_allowed(completion_id: str, request: Request) -> None:
    """Reject wrong methods on /completions/{completion_id}/<review action>."""
    _ = (completion_id, request)
    raise ServiceError("METHOD_NOT_ALLOWED", "Method not allowed", 405, {})
