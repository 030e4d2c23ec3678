"""Router test fixtures: a real app over a temp database, plus request helpers."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient

from task_engagement_service.app import create_app
from task_engagement_service.config import clear_settings_cache
from task_engagement_service.core.lifespan import lifespan
from task_engagement_service.core.state import reset_app_state

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from httpx import Response

# ---------------------------------------------------------------------------
# Fixed user IDs
# ---------------------------------------------------------------------------
OWNER = "u-alice-owner"
WORKER = "u-bob-worker"
OTHER_WORKER = "u-carol-worker"
STRANGER = "u-dave"

MAX_BODY_SIZE = 4096


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app over a temp database with in-app notifications only."""
    db_path = tmp_path / "test.db"
    config_content = f"""\
service:
  name: "task-engagement"
  version: "0.1.0"
server:
  host: "127.0.0.1"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{tmp_path / "logs"}"
database:
  path: "{db_path}"
request:
  max_body_size: {MAX_BODY_SIZE}
bidding:
  max_amount_cents: 10000000
  max_message_length: 500
fees:
  platform_fee_pct: 10
cancellation:
  tiers:
    - min_hours_before: 48
      refund_pct: 100
    - min_hours_before: 24
      refund_pct: 50
    - min_hours_before: 12
      refund_pct: 25
    - min_hours_before: 0
      refund_pct: 0
notifications:
  email_gateway_url: null
  email_gateway_api_key: null
  timeout_seconds: 5
change_feed:
  queue_size: 32
  keepalive_interval_seconds: 15
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------
def actor(user_id: str) -> dict[str, str]:
    """Headers identifying the calling user."""
    return {"X-Actor-Id": user_id}


async def post_as(
    client: AsyncClient,
    user_id: str,
    path: str,
    body: dict[str, Any] | None = None,
) -> Response:
    """POST a JSON body (empty object by default) as the given user."""
    return await client.post(path, json=body if body is not None else {}, headers=actor(user_id))


async def create_task(
    client: AsyncClient,
    owner_id: str = OWNER,
    *,
    publish: bool = True,
    pay_amount_cents: int = 8000,
    scheduled_at: str | None = None,
) -> Response:
    """Create a task, published by default."""
    return await post_as(
        client,
        owner_id,
        "/tasks",
        {
            "title": "Fix leaking tap",
            "description": "Kitchen mixer tap drips constantly",
            "category": "plumbing",
            "location": "Leipzig",
            "pay_amount_cents": pay_amount_cents,
            "budget_type": "fixed",
            "scheduled_at": scheduled_at,
            "publish": publish,
        },
    )


async def open_task_id(client: AsyncClient, **kwargs: Any) -> str:
    """Create a published task and return its ID."""
    response = await create_task(client, **kwargs)
    assert response.status_code == 201, response.text
    return str(response.json()["task_id"])


async def submit_bid(
    client: AsyncClient,
    task_id: str,
    bidder_id: str = WORKER,
    amount_cents: int = 7500,
    **extra: Any,
) -> Response:
    """Submit a bid on a task."""
    return await post_as(
        client,
        bidder_id,
        f"/tasks/{task_id}/bids",
        {"amount_cents": amount_cents, **extra},
    )


async def accept_bid(client: AsyncClient, task_id: str, bid_id: str, owner_id: str = OWNER) -> Response:
    """Accept a bid as the task owner."""
    return await post_as(client, owner_id, f"/tasks/{task_id}/bids/{bid_id}/accept")


async def hire(
    client: AsyncClient,
    task_id: str,
    worker_id: str = WORKER,
    amount_cents: int = 8000,
    owner_id: str = OWNER,
) -> Response:
    """Send a direct hire request."""
    return await post_as(
        client,
        owner_id,
        f"/tasks/{task_id}/hire",
        {"worker_id": worker_id, "amount_cents": amount_cents, "message": "Free on Monday?"},
    )


async def accepted_booking_id(client: AsyncClient, task_id: str, worker_id: str = WORKER) -> str:
    """Hire a worker for the task, have them accept, and return the booking ID."""
    response = await hire(client, task_id, worker_id)
    assert response.status_code == 201, response.text
    booking_id = str(response.json()["booking_id"])
    accepted = await post_as(client, worker_id, f"/bookings/{booking_id}/accept")
    assert accepted.status_code == 200, accepted.text
    return booking_id


async def add_item(
    client: AsyncClient,
    task_id: str,
    title: str,
    owner_id: str = OWNER,
    **extra: Any,
) -> Response:
    """Define a checklist item on a task."""
    return await post_as(client, owner_id, f"/tasks/{task_id}/checklist", {"title": title, **extra})
