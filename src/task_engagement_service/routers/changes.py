"""Server-Sent Events stream of committed changes."""

from __future__ import annotations

from fastapi import APIRouter, Query
from sse_starlette.sse import EventSourceResponse

from task_engagement_service.config import get_settings
from task_engagement_service.core.exceptions import ValidationError
from task_engagement_service.core.state import get_app_state

router = APIRouter()

_STREAMABLE_ENTITIES = frozenset(
    {"task", "bid", "booking", "checklist_item", "checklist_completion"}
)


@router.get("/changes/stream")  # nosemgrep
async def stream_changes(
    entity: str | None = Query(None),
    task_id: str | None = Query(None),
    booking_id: str | None = Query(None),
) -> EventSourceResponse:
    """Stream inserts, updates and deletes, optionally filtered by entity and id."""
    if entity is not None and entity not in _STREAMABLE_ENTITIES:
        raise ValidationError(f"Unknown entity: {entity}", {"field": "entity"})

    state = get_app_state()
    if state.change_feed is None:
        msg = "ChangeFeed not initialized"
        raise RuntimeError(msg)

    filters: dict[str, str] = {}
    if task_id is not None:
        filters["task_id"] = task_id
    if booking_id is not None:
        filters["booking_id"] = booking_id

    settings = get_settings()
    return EventSourceResponse(
        state.change_feed.stream(
            entity,
            filters,
            settings.change_feed.keepalive_interval_seconds,
        ),
        headers={"X-Accel-Buffering": "no"},
    )
