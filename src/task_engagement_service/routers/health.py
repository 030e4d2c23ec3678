"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from task_engagement_service.core.state import get_app_state
from task_engagement_service.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return booking statistics."""
    state = get_app_state()
    total_tasks = 0
    bookings_by_status: dict[str, int] = {}
    if state.store is not None:
        total_tasks = state.store.count_tasks()
        bookings_by_status = state.store.count_bookings_by_status()
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_tasks=total_tasks,
        bookings_by_status=bookings_by_status,
    )
