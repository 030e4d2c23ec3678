"""HTTP clients for external service communication."""

from task_engagement_service.clients.email_gateway_client import EmailGatewayClient

__all__ = ["EmailGatewayClient"]
