"""
Request-scoped dependencies.

Collaborators are built once by the app factory and stored on app.state;
these helpers hand them to routes. The account identity is set by the
upstream auth layer in X-Account-ID and is never read from request bodies.
"""

from typing import Optional

from fastapi import Header, Request

from heartheals.entitlements.service import EntitlementService
from heartheals.platform.errors import AuthenticationError, ServiceUnavailableError
from heartheals.webhooks.gateway import WebhookGateway

UNKNOWN_CLIENT = "unknown-ip"


def get_entitlement_service(request: Request) -> EntitlementService:
    service = getattr(request.app.state, "entitlement_service", None)
    if service is None:
        raise ServiceUnavailableError("Entitlement service not configured")
    return service


def get_webhook_gateway(request: Request) -> WebhookGateway:
    gateway = getattr(request.app.state, "webhook_gateway", None)
    if gateway is None:
        raise ServiceUnavailableError("Webhook gateway not configured")
    return gateway


def get_account_id(x_account_id: Optional[str] = Header(None, alias="X-Account-ID")) -> str:
    if not x_account_id or not x_account_id.strip():
        raise AuthenticationError()
    return x_account_id.strip()


def get_client_identity(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT
