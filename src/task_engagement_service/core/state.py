"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from task_engagement_service.clients.email_gateway_client import EmailGatewayClient
    from task_engagement_service.services.audit_log import AuditLog
    from task_engagement_service.services.bid_ledger import BidLedger
    from task_engagement_service.services.booking_machine import BookingStateMachine
    from task_engagement_service.services.change_feed import ChangeFeed
    from task_engagement_service.services.checklist_workflow import ChecklistWorkflow
    from task_engagement_service.services.engagement_store import EngagementStore
    from task_engagement_service.services.escrow_ledger import EscrowLedger
    from task_engagement_service.services.notification_dispatcher import NotificationDispatcher
    from task_engagement_service.services.task_registry import TaskRegistry


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    store: EngagementStore | None = None
    escrow_ledger: EscrowLedger | None = None
    notifier: NotificationDispatcher | None = None
    audit_log: AuditLog | None = None
    change_feed: ChangeFeed | None = None
    task_registry: TaskRegistry | None = None
    bid_ledger: BidLedger | None = None
    booking_machine: BookingStateMachine | None = None
    checklist_workflow: ChecklistWorkflow | None = None
    email_client: EmailGatewayClient | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep the notifier's email relay in sync with the email_client field."""
        super().__setattr__(name, value)

        notifier = self.__dict__.get("notifier")
        if name == "email_client" and notifier is not None:
            notifier.set_email_client(value)
        elif name == "notifier" and value is not None:
            email_client = self.__dict__.get("email_client")
            if email_client is not None:
                value.set_email_client(email_client)

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
