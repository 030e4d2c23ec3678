"""Task creation, publication and lookup."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from task_engagement_service.core.exceptions import (
    AuthorizationError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from task_engagement_service.domain import BudgetType, Task, TaskStatus
from task_engagement_service.logging import get_logger
from task_engagement_service.services.cancellation_policy import parse_timestamp
from task_engagement_service.services.database import now_iso

if TYPE_CHECKING:
    from task_engagement_service.services.change_feed import ChangeFeed
    from task_engagement_service.services.engagement_store import EngagementStore

_MAX_TITLE_LENGTH = 200
_MAX_DESCRIPTION_LENGTH = 10_000


def _is_positive_int(value: object) -> bool:
    """Check if value is a positive integer (not float, not bool)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class TaskRegistry:
    """Owns task rows outside of the engagement transitions."""

    def __init__(self, store: EngagementStore, change_feed: ChangeFeed) -> None:
        self._store = store
        self._change_feed = change_feed
        self._logger = get_logger(__name__)

    def load_task(self, task_id: str) -> Task:
        """Fetch a task or raise TASK_NOT_FOUND."""
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    async def create_task(
        self,
        owner_id: str,
        title: str,
        description: str,
        category: str,
        location: str,
        pay_amount_cents: int,
        budget_type: str,
        scheduled_at: str | None,
        publish: bool,
    ) -> dict[str, Any]:
        """
        Create a task as draft, or directly as open when publish is set.

        Raises:
            ValidationError: any field is missing, empty or out of bounds
        """
        title = title.strip()
        if not 1 <= len(title) <= _MAX_TITLE_LENGTH:
            raise ValidationError(
                f"Title must be between 1 and {_MAX_TITLE_LENGTH} characters",
                {"field": "title"},
            )
        if len(description) > _MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Description must be at most {_MAX_DESCRIPTION_LENGTH} characters",
                {"field": "description"},
            )
        if not category.strip():
            raise ValidationError("Category must not be empty", {"field": "category"})
        if not location.strip():
            raise ValidationError("Location must not be empty", {"field": "location"})
        if not _is_positive_int(pay_amount_cents):
            raise ValidationError(
                "pay_amount_cents must be a positive integer",
                {"field": "pay_amount_cents"},
            )
        if budget_type not in {member.value for member in BudgetType}:
            raise ValidationError(
                "budget_type must be 'fixed' or 'hourly'",
                {"field": "budget_type"},
            )
        if scheduled_at is not None:
            try:
                parse_timestamp(scheduled_at)
            except ValueError as exc:
                raise ValidationError(
                    "scheduled_at must be an ISO 8601 timestamp",
                    {"field": "scheduled_at"},
                ) from exc

        now = now_iso()
        task = self._store.insert_task(
            {
                "task_id": f"t-{uuid.uuid4()}",
                "owner_id": owner_id,
                "title": title,
                "description": description,
                "category": category.strip(),
                "location": location.strip(),
                "pay_amount_cents": pay_amount_cents,
                "budget_type": budget_type,
                "status": TaskStatus.OPEN if publish else TaskStatus.DRAFT,
                "scheduled_at": scheduled_at,
                "created_at": now,
                "updated_at": now,
            }
        )
        self._change_feed.publish("task", "insert", task.to_dict())
        self._logger.info(
            "Task created",
            extra={"task_id": task.task_id, "owner_id": owner_id, "status": str(task.status)},
        )
        return task.to_dict()

    async def publish_task(self, task_id: str, actor_id: str) -> dict[str, Any]:
        """
        Move a draft task to open.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN - actor is not the owner
        3. INVALID_STATE_TRANSITION - task is not a draft (or lost a race)
        """
        task = self.load_task(task_id)
        if task.owner_id != actor_id:
            raise AuthorizationError("Only the task owner can publish the task")
        if task.status != TaskStatus.DRAFT:
            raise InvalidStateTransitionError("task", task.status, TaskStatus.DRAFT, "publish")

        changed = self._store.update_task(
            task_id,
            {"status": TaskStatus.OPEN, "updated_at": now_iso()},
            expected_status=TaskStatus.DRAFT,
        )
        if changed == 0:
            current = self.load_task(task_id)
            raise InvalidStateTransitionError("task", current.status, TaskStatus.DRAFT, "publish")

        published = self.load_task(task_id)
        self._change_feed.publish("task", "update", published.to_dict())
        self._logger.info("Task published", extra={"task_id": task_id})
        return published.to_dict()

    async def get_task(self, task_id: str) -> dict[str, Any]:
        """Get a single task."""
        return self.load_task(task_id).to_dict()

    async def list_tasks(
        self,
        status: str | None,
        owner_id: str | None,
        limit: int | None,
        offset: int | None,
    ) -> list[dict[str, Any]]:
        """List tasks, newest first."""
        if status is not None and status not in {member.value for member in TaskStatus}:
            raise ValidationError(f"Unknown task status: {status}", {"field": "status"})
        tasks = self._store.list_tasks(status, owner_id, limit, offset)
        return [task.to_dict() for task in tasks]
