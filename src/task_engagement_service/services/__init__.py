"""Service layer components."""

from task_engagement_service.services.audit_log import AuditLog
from task_engagement_service.services.bid_ledger import BidLedger
from task_engagement_service.services.booking_machine import BookingStateMachine
from task_engagement_service.services.change_feed import ChangeFeed
from task_engagement_service.services.checklist_workflow import ChecklistWorkflow
from task_engagement_service.services.engagement_store import EngagementStore
from task_engagement_service.services.escrow_ledger import EscrowLedger
from task_engagement_service.services.notification_dispatcher import NotificationDispatcher
from task_engagement_service.services.task_registry import TaskRegistry

__all__ = [
    "AuditLog",
    "BidLedger",
    "BookingStateMachine",
    "ChangeFeed",
    "ChecklistWorkflow",
    "EngagementStore",
    "EscrowLedger",
    "NotificationDispatcher",
    "TaskRegistry",
]
