"""
Stripe webhook endpoint.

SECURITY:
- The raw body is read once and verified byte-exact before any parsing
- No user authentication (webhooks come from Stripe, not users)
- Rejected requests never reach the billing handler
"""

import logging
import time

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from heartheals.api.dependencies import get_client_identity, get_webhook_gateway
from heartheals.platform.errors import (
    AppError,
    MalformedPayloadError,
    RateLimitError,
    WebhookSignatureError,
)
from heartheals.webhooks.gateway import WebhookGateway
from heartheals.webhooks.models import RejectionReason, WebhookRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "stripe-signature"


@router.post("/stripe")
async def handle_stripe_webhook(
    request: Request,
    gateway: WebhookGateway = Depends(get_webhook_gateway),
    client_identity: str = Depends(get_client_identity),
):
    """
    Receive a Stripe billing event.

    Returns 200 once the event is accepted and handled, 400 for a bad
    signature or payload, 429 when the sender is over its rate limit and
    500 when the handler fails (Stripe retries those).
    """
    body = await request.body()
    webhook_request = WebhookRequest(
        raw_payload=body,
        provided_signature=request.headers.get(SIGNATURE_HEADER, ""),
        received_at_epoch_ms=int(time.time() * 1000),
        client_identity=client_identity,
    )

    try:
        # Handlers hit the subscription store; keep that off the event loop.
        outcome = await run_in_threadpool(gateway.process, webhook_request)
    except Exception as e:
        logger.error(
            "Error handling webhook event",
            extra={"client_identity": client_identity, "error": str(e)},
        )
        raise AppError(
            code="WEBHOOK_PROCESSING_FAILED",
            message="Failed to process webhook",
        ) from e

    if outcome.reason == RejectionReason.INVALID_SIGNATURE:
        raise WebhookSignatureError()
    if outcome.reason == RejectionReason.RATE_LIMITED:
        decision = outcome.rate_limit
        raise RateLimitError(
            retry_after=decision.retry_after_seconds if decision else None,
            limit=decision.limit if decision else None,
        )
    if outcome.reason == RejectionReason.MALFORMED_PAYLOAD:
        raise MalformedPayloadError()

    return {
        "received": True,
        "event_id": outcome.event.id,
        "event_type": outcome.event.type,
    }
