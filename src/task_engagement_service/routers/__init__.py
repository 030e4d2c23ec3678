"""API routers."""

from task_engagement_service.routers import (
    accounts,
    bids,
    bookings,
    changes,
    checklists,
    health,
    tasks,
)

__all__ = ["accounts", "bids", "bookings", "changes", "checklists", "health", "tasks"]
