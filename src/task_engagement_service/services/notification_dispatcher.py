"""In-app notifications with optional email relay."""

from __future__ import annotations

import uuid
from threading import RLock
from typing import TYPE_CHECKING, Any

from task_engagement_service.logging import get_logger
from task_engagement_service.services.database import connect, now_iso, storage_errors

if TYPE_CHECKING:
    from task_engagement_service.clients.email_gateway_client import EmailGatewayClient

logger = get_logger(__name__)


class NotificationDispatcher:
    """
    Fire-and-forget notifier.

    Every notification is stored for the recipient's in-app feed and, when
    an email gateway is configured, relayed as an email. Failures are
    logged and never propagate to the lifecycle operation that triggered
    the notification.
    """

    def __init__(self, db_path: str, email_client: EmailGatewayClient | None) -> None:
        self._lock = RLock()
        self._email_client = email_client
        self._db = connect(db_path)
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS notifications (
                    notification_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    category TEXT NOT NULL,
                    deep_link TEXT,
                    read INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_notifications_user
                    ON notifications(user_id, created_at);
                """
            )

    def set_email_client(self, email_client: EmailGatewayClient | None) -> None:
        """Swap the email relay."""
        self._email_client = email_client

    async def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        category: str,
        deep_link: str | None = None,
    ) -> str | None:
        """
        Record and relay a notification.

        Returns the notification ID, or None if it could not be stored.
        """
        notification_id = f"ntf-{uuid.uuid4()}"
        try:
            with self._lock, storage_errors("insert_notification"):
                self._db.execute(
                    "INSERT INTO notifications "
                    "(notification_id, user_id, title, message, category, deep_link, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (notification_id, user_id, title, message, category, deep_link, now_iso()),
                )
        except Exception:
            logger.exception(
                "Failed to store notification",
                extra={"user_id": user_id, "category": category},
            )
            return None

        if self._email_client is not None:
            try:
                await self._email_client.send(
                    user_id,
                    title,
                    message,
                    {"category": category, "deep_link": deep_link},
                )
            except Exception as exc:
                logger.warning(
                    "Email relay failed",
                    extra={"user_id": user_id, "category": category, "error": str(exc)},
                )

        logger.info(
            "Notification dispatched",
            extra={"user_id": user_id, "category": category, "notification_id": notification_id},
        )
        return notification_id

    def list_notifications(self, user_id: str) -> list[dict[str, Any]]:
        """Notifications for a user, newest first."""
        with self._lock, storage_errors("list_notifications"):
            rows = self._db.execute(
                "SELECT notification_id, user_id, title, message, category, deep_link, read, "
                "created_at FROM notifications WHERE user_id = ? "
                "ORDER BY created_at DESC, rowid DESC",
                (user_id,),
            ).fetchall()
        results: list[dict[str, Any]] = []
        for row in rows:
            entry = dict(row)
            entry["read"] = bool(entry["read"])
            results.append(entry)
        return results

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
