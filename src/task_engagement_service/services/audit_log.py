"""Append-only audit trail for lifecycle events."""

from __future__ import annotations

import json
import uuid
from threading import RLock
from typing import Any

from task_engagement_service.logging import get_logger
from task_engagement_service.services.database import connect, now_iso, storage_errors

logger = get_logger(__name__)


class AuditLog:
    """
    Records who did what to which booking.

    Writes are best effort: a failed append is logged and the triggering
    operation still succeeds.
    """

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._db = connect(db_path)
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS audit_events (
                    event_id TEXT PRIMARY KEY,
                    booking_id TEXT,
                    task_id TEXT,
                    user_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    event_category TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_audit_booking
                    ON audit_events(booking_id, created_at);
                """
            )

    def record(
        self,
        booking_id: str | None,
        task_id: str | None,
        user_id: str,
        event_type: str,
        event_category: str,
        payload: dict[str, Any] | None = None,
    ) -> str | None:
        """Append an audit event. Returns the event ID, or None if the write failed."""
        event_id = f"evt-{uuid.uuid4()}"
        try:
            with self._lock, storage_errors("record_audit_event"):
                self._db.execute(
                    "INSERT INTO audit_events "
                    "(event_id, booking_id, task_id, user_id, event_type, event_category, "
                    "payload, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        event_id,
                        booking_id,
                        task_id,
                        user_id,
                        event_type,
                        event_category,
                        json.dumps(payload if payload is not None else {}, sort_keys=True),
                        now_iso(),
                    ),
                )
        except Exception:
            logger.exception(
                "Failed to record audit event",
                extra={"event_type": event_type, "booking_id": booking_id},
            )
            return None
        return event_id

    def list_events(self, booking_id: str) -> list[dict[str, Any]]:
        """Audit events for a booking, oldest first."""
        with self._lock, storage_errors("list_audit_events"):
            rows = self._db.execute(
                "SELECT event_id, booking_id, task_id, user_id, event_type, event_category, "
                "payload, created_at FROM audit_events "
                "WHERE booking_id = ? ORDER BY created_at ASC, rowid ASC",
                (booking_id,),
            ).fetchall()
        events: list[dict[str, Any]] = []
        for row in rows:
            event = dict(row)
            event["payload"] = json.loads(event["payload"])
            events.append(event)
        return events

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
