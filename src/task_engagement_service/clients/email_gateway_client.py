"""Async HTTP client for the outbound email gateway."""

from __future__ import annotations

from typing import Any

import httpx

from task_engagement_service.core.exceptions import ServiceError
from task_engagement_service.logging import get_logger


class EmailGatewayClient:
    """
    Relays notification emails to an external gateway.

    The gateway accepts POST /messages with a JSON body and answers
    202 Accepted. Any other outcome surfaces as
    NOTIFICATION_GATEWAY_UNAVAILABLE so the dispatcher can log and move on.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def send(
        self,
        recipient_id: str,
        subject: str,
        body: str,
        metadata: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Submit one message to the gateway.

        Returns:
            The gateway's acknowledgement body (may be empty)

        Raises:
            ServiceError: NOTIFICATION_GATEWAY_UNAVAILABLE (502) on connection,
                timeout or non-2xx responses
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                "/messages",
                json={
                    "recipient_id": recipient_id,
                    "subject": subject,
                    "body": body,
                    "metadata": metadata,
                },
            )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Email gateway connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="NOTIFICATION_GATEWAY_UNAVAILABLE",
                message="Cannot connect to email gateway",
                status_code=502,
                details={},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Email gateway HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="NOTIFICATION_GATEWAY_UNAVAILABLE",
                message="Email gateway request failed",
                status_code=502,
                details={},
            ) from exc

        if response.status_code in (200, 201, 202):
            if len(response.content) == 0:
                return {}
            result: dict[str, Any] = response.json()
            return result

        logger.warning(
            "Email gateway rejected message",
            extra={"status_code": response.status_code, "recipient_id": recipient_id},
        )
        raise ServiceError(
            error="NOTIFICATION_GATEWAY_UNAVAILABLE",
            message=f"Email gateway returned unexpected status {response.status_code}",
            status_code=502,
            details={"gateway_status": response.status_code},
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
