"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from task_engagement_service.clients.email_gateway_client import EmailGatewayClient
from task_engagement_service.config import get_settings
from task_engagement_service.core.state import init_app_state
from task_engagement_service.logging import get_logger, setup_logging
from task_engagement_service.services.audit_log import AuditLog
from task_engagement_service.services.bid_ledger import BidLedger
from task_engagement_service.services.booking_machine import BookingStateMachine
from task_engagement_service.services.change_feed import ChangeFeed
from task_engagement_service.services.checklist_workflow import ChecklistWorkflow
from task_engagement_service.services.engagement_store import EngagementStore
from task_engagement_service.services.escrow_ledger import EscrowLedger
from task_engagement_service.services.notification_dispatcher import NotificationDispatcher
from task_engagement_service.services.task_registry import TaskRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()
    db_path = settings.database.path

    # Email relay is optional; without it notifications are in-app only
    email_client: EmailGatewayClient | None = None
    if settings.notifications.email_gateway_url:
        email_client = EmailGatewayClient(
            base_url=settings.notifications.email_gateway_url,
            api_key=settings.notifications.email_gateway_api_key,
            timeout_seconds=settings.notifications.timeout_seconds,
        )

    store = EngagementStore(db_path=db_path)
    escrow_ledger = EscrowLedger(db_path=db_path, platform_fee_pct=settings.fees.platform_fee_pct)
    notifier = NotificationDispatcher(db_path=db_path, email_client=email_client)
    audit_log = AuditLog(db_path=db_path)
    change_feed = ChangeFeed(queue_size=settings.change_feed.queue_size)

    booking_machine = BookingStateMachine(
        store=store,
        escrow=escrow_ledger,
        notifier=notifier,
        audit=audit_log,
        change_feed=change_feed,
        cancellation_tiers=settings.cancellation.tiers,
        max_amount_cents=settings.bidding.max_amount_cents,
        max_message_length=settings.bidding.max_message_length,
    )

    state.store = store
    state.escrow_ledger = escrow_ledger
    state.notifier = notifier
    state.audit_log = audit_log
    state.change_feed = change_feed
    state.email_client = email_client
    state.task_registry = TaskRegistry(store=store, change_feed=change_feed)
    state.bid_ledger = BidLedger(
        store=store,
        escrow=escrow_ledger,
        notifier=notifier,
        audit=audit_log,
        change_feed=change_feed,
        max_amount_cents=settings.bidding.max_amount_cents,
        max_message_length=settings.bidding.max_message_length,
    )
    state.booking_machine = booking_machine
    state.checklist_workflow = ChecklistWorkflow(
        store=store,
        booking_machine=booking_machine,
        notifier=notifier,
        audit=audit_log,
        change_feed=change_feed,
    )

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": db_path,
            "email_gateway_enabled": email_client is not None,
            "platform_fee_pct": settings.fees.platform_fee_pct,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    # Close SQLite connections
    store.close()
    escrow_ledger.close()
    notifier.close()
    audit_log.close()

    # Close HTTP clients; tests may have swapped in their own
    if state.email_client is not None:
        await state.email_client.close()
