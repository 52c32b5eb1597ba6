"""Inbound payment webhooks.

Each webhook is signature-verified, rate limited per sender and only then
handed to the billing event handler.
"""

from heartheals.webhooks.gateway import GatewayOutcome, GatewayState, WebhookGateway
from heartheals.webhooks.handlers import BillingEventHandler
from heartheals.webhooks.models import (
    RejectionReason,
    StripeEvent,
    VerificationFailure,
    WebhookRequest,
)
from heartheals.webhooks.rate_limit import (
    InMemoryRateLimitStore,
    RateLimitDecision,
    RateLimiter,
    RedisRateLimitStore,
)
from heartheals.webhooks.verification import (
    SignatureVerifier,
    VerificationResult,
    generate_signature_header,
)

__all__ = [
    "BillingEventHandler",
    "GatewayOutcome",
    "GatewayState",
    "InMemoryRateLimitStore",
    "RateLimitDecision",
    "RateLimiter",
    "RedisRateLimitStore",
    "RejectionReason",
    "SignatureVerifier",
    "StripeEvent",
    "VerificationFailure",
    "VerificationResult",
    "WebhookGateway",
    "WebhookRequest",
    "generate_signature_header",
]
