"""In-process change notification feed."""

from __future__ import annotations

import asyncio
import itertools
import json
import uuid
from dataclasses import asdict, dataclass
from threading import RLock
from typing import TYPE_CHECKING, Any

from task_engagement_service.logging import get_logger
from task_engagement_service.services.database import now_iso

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    """A committed insert, update or delete of one record."""

    sequence: int
    entity: str
    action: str
    record: dict[str, Any]
    occurred_at: str


@dataclass
class _Subscription:
    entity: str | None
    filters: dict[str, Any]
    callback: Callable[[ChangeEvent], None]

    def matches(self, event: ChangeEvent) -> bool:
        if self.entity is not None and self.entity != event.entity:
            return False
        return all(event.record.get(key) == value for key, value in self.filters.items())


class ChangeFeed:
    """
    Observer registry for committed changes.

    Services publish after their write commits. Subscribers are called
    synchronously; a failing subscriber is logged and skipped. The feed is
    a notification channel only and is never consulted for a transition.
    """

    def __init__(self, queue_size: int) -> None:
        self._lock = RLock()
        self._queue_size = queue_size
        self._subscriptions: dict[str, _Subscription] = {}
        self._sequence = itertools.count(1)

    def subscribe(
        self,
        entity: str | None,
        callback: Callable[[ChangeEvent], None],
        filters: dict[str, Any] | None = None,
    ) -> str:
        """Register a callback for an entity (None for all). Returns the subscription ID."""
        subscription_id = f"sub-{uuid.uuid4()}"
        with self._lock:
            self._subscriptions[subscription_id] = _Subscription(
                entity=entity,
                filters=dict(filters) if filters else {},
                callback=callback,
            )
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns False if it was not registered."""
        with self._lock:
            return self._subscriptions.pop(subscription_id, None) is not None

    @property
    def subscriber_count(self) -> int:
        """Number of active subscriptions."""
        with self._lock:
            return len(self._subscriptions)

    def publish(self, entity: str, action: str, record: dict[str, Any]) -> ChangeEvent:
        """Fan a committed change out to every matching subscriber."""
        event = ChangeEvent(
            sequence=next(self._sequence),
            entity=entity,
            action=action,
            record=record,
            occurred_at=now_iso(),
        )
        with self._lock:
            targets = [sub for sub in self._subscriptions.values() if sub.matches(event)]

        for subscription in targets:
            try:
                subscription.callback(event)
            except Exception:
                logger.exception(
                    "Change subscriber failed",
                    extra={"entity": entity, "action": action, "sequence": event.sequence},
                )
        return event

    async def stream(
        self,
        entity: str | None,
        filters: dict[str, Any] | None,
        keepalive_interval: float,
    ) -> AsyncIterator[dict[str, Any]]:
        """Async generator of SSE messages for matching changes."""
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=self._queue_size)

        def enqueue(event: ChangeEvent) -> None:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "Change stream queue full, dropping event",
                    extra={"entity": event.entity, "sequence": event.sequence},
                )

        subscription_id = self.subscribe(entity, enqueue, filters)
        try:
            # Send retry directive
            yield {"retry": 3000}

            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=keepalive_interval)
                except TimeoutError:
                    yield {"comment": "keepalive"}
                    continue
                yield {
                    "event": f"{event.entity}.{event.action}",
                    "data": json.dumps(asdict(event), default=str),
                    "id": str(event.sequence),
                }
        finally:
            self.unsubscribe(subscription_id)
