"""Task creation, listing and publication endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from task_engagement_service.core.exceptions import ServiceError
from task_engagement_service.core.state import get_app_state
from task_engagement_service.routers.validation import (
    optional_bool,
    optional_str,
    parse_query_int,
    read_json_body,
    require_actor,
    require_int,
    require_str,
)

if TYPE_CHECKING:
    from task_engagement_service.services.task_registry import TaskRegistry

router = APIRouter()


def _registry() -> TaskRegistry:
    state = get_app_state()
    if state.task_registry is None:
        msg = "TaskRegistry not initialized"
        raise RuntimeError(msg)
    return state.task_registry


# ---------------------------------------------------------------------------
# POST /tasks - create task
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Create a task as draft, or open when "publish" is true."""
    actor_id = require_actor(request)
    data = await read_json_body(request)

    description = optional_str(data, "description")
    result = await _registry().create_task(
        owner_id=actor_id,
        title=require_str(data, "title"),
        description=description if description is not None else "",
        category=require_str(data, "category"),
        location=require_str(data, "location"),
        pay_amount_cents=require_int(data, "pay_amount_cents"),
        budget_type=require_str(data, "budget_type"),
        scheduled_at=optional_str(data, "scheduled_at"),
        publish=optional_bool(data, "publish", default=False),
    )
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks - list tasks
# ---------------------------------------------------------------------------


@router.get("/tasks")
async def list_tasks(
    status: str | None = Query(None),
    owner_id: str | None = Query(None),
    limit: str | None = Query(None),
    offset: str | None = Query(None),
) -> dict[str, Any]:
    """List tasks, newest first, with optional filters."""
    tasks = await _registry().list_tasks(
        status,
        owner_id,
        parse_query_int(limit, "limit", minimum=1),
        parse_query_int(offset, "offset", minimum=0),
    )
    return {"tasks": tasks}


# ---------------------------------------------------------------------------
# GET /tasks/{task_id} - task detail
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}")
async def get_task(task_id: str) -> dict[str, Any]:
    """Get a single task."""
    return await _registry().get_task(task_id)


# ---------------------------------------------------------------------------
# POST /tasks/{task_id}/publish - draft → open
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/publish")
async def publish_task(task_id: str, request: Request) -> JSONResponse:
    """Publish a draft task so it accepts bids and hire requests."""
    actor_id = require_actor(request)
    await read_json_body(request)
    result = await _registry().publish_task(task_id, actor_id)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Method-not-allowed: task routes
# ---------------------------------------------------------------------------


@router.api_route("/tasks", methods=["PUT", "PATCH", "DELETE"])
async def tasks_method_not_allowed(request: Request) -> None:
    """Reject wrong methods on /tasks."""
    _ = request
    raise ServiceError("METHOD_NOT_ALLOWED", "Method not allowed", 405, {})


@router.api_route("/tasks/{task_id}/publish", methods=["GET", "PUT", "PATCH", "DELETE"])
async def publish_method_not_allowed(task_id: str, request: Request) -> None:
    """Reject wrong methods on /tasks/{task_id}/publish."""
    _ = (task_id, request)
    raise ServiceError("METHOD_NOT_ALLOWED", "Method not allowed", 405, {})
