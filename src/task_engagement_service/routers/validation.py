"""Shared request validation helpers for engagement routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from task_engagement_service.core.exceptions import ServiceError, ValidationError

if TYPE_CHECKING:
    from fastapi import Request

ACTOR_HEADER = "x-actor-id"


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


async def read_json_body(request: Request) -> dict[str, Any]:
    """Read and parse the request body; an empty body counts as {}."""
    body = await request.body()
    if not body.strip():
        return {}
    return parse_json_body(body)


def require_actor(request: Request) -> str:
    """Return the authenticated actor ID forwarded by the gateway."""
    actor_id = request.headers.get(ACTOR_HEADER, "").strip()
    if not actor_id:
        raise ServiceError(
            "MISSING_ACTOR",
            "Missing X-Actor-Id header",
            401,
            {},
        )
    return actor_id


def require_str(data: dict[str, Any], field_name: str) -> str:
    """Extract a required, non-empty string field."""
    if field_name not in data or data[field_name] is None:
        raise ValidationError(f"Missing required field: {field_name}", {"field": field_name})

    value = data[field_name]
    if not isinstance(value, str):
        raise ValidationError(f"Field '{field_name}' must be a string", {"field": field_name})
    if not value.strip():
        raise ValidationError(f"Field '{field_name}' must not be empty", {"field": field_name})
    return value


def optional_str(data: dict[str, Any], field_name: str) -> str | None:
    """Extract an optional string field; null and absent both mean None."""
    value = data.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Field '{field_name}' must be a string", {"field": field_name})
    return value


def require_int(data: dict[str, Any], field_name: str) -> int:
    """Extract a required integer field (bools are rejected)."""
    if field_name not in data or data[field_name] is None:
        raise ValidationError(f"Missing required field: {field_name}", {"field": field_name})

    value = data[field_name]
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"Field '{field_name}' must be an integer", {"field": field_name})
    return value


def optional_number(data: dict[str, Any], field_name: str) -> float | None:
    """Extract an optional int or float field."""
    value = data.get(field_name)
    if value is None:
        return None
    if not isinstance(value, int | float) or isinstance(value, bool):
        raise ValidationError(f"Field '{field_name}' must be a number", {"field": field_name})
    return value


def optional_bool(data: dict[str, Any], field_name: str, *, default: bool) -> bool:
    """Extract an optional boolean field."""
    value = data.get(field_name)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"Field '{field_name}' must be a boolean", {"field": field_name})
    return value


def parse_query_int(value: str | None, field_name: str, *, minimum: int) -> int | None:
    """Parse an optional integer query parameter."""
    if value is None:
        return None
    try:
        parsed = int(value)
    except ValueError:
        raise ValidationError(f"{field_name} must be an integer", {"field": field_name}) from None
    if parsed < minimum:
        raise ValidationError(f"{field_name} must be >= {minimum}", {"field": field_name})
    return parsed
