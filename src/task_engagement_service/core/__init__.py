"""Core infrastructure components."""

from task_engagement_service.core.exceptions import ServiceError
from task_engagement_service.core.state import AppState, get_app_state, init_app_state

__all__ = ["AppState", "ServiceError", "get_app_state", "init_app_state"]
