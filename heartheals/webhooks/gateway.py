"""
Webhook gateway: authenticate, throttle, then hand off.

State machine per request:

    received -> signature_checked -> rate_limit_checked -> accepted
        \\               \\                  \\
         +-> rejected    +-> rejected       +-> rejected (malformed_payload)

The first failing check decides the single rejection reason. A rejected
request never reaches the event handler, so no subscription state changes.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .models import RejectionReason, StripeEvent, VerificationFailure, WebhookRequest
from .rate_limit import RateLimitDecision, RateLimiter
from .verification import SignatureVerifier

logger = logging.getLogger(__name__)


class GatewayState(str, Enum):
    RECEIVED = "received"
    SIGNATURE_CHECKED = "signature_checked"
    RATE_LIMIT_CHECKED = "rate_limit_checked"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass
class GatewayOutcome:
    state: GatewayState
    reason: Optional[RejectionReason] = None
    verification_failure: Optional[VerificationFailure] = None
    rate_limit: Optional[RateLimitDecision] = None
    event: Optional[StripeEvent] = None
    handler_result: Any = None
    transitions: List[GatewayState] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.state == GatewayState.ACCEPTED


class WebhookGateway:
    """Composes SignatureVerifier and RateLimiter in front of the billing handler."""

    def __init__(
        self,
        *,
        verifier: SignatureVerifier,
        rate_limiter: RateLimiter,
        event_handler: Callable[[StripeEvent], Any],
        shared_secret: str,
        rate_limit: Optional[int] = None,
        rate_limit_window_ms: Optional[int] = None,
        rate_limit_enabled: bool = True,
    ) -> None:
        self.verifier = verifier
        self.rate_limiter = rate_limiter
        self.event_handler = event_handler
        self._shared_secret = shared_secret
        self._rate_limit = rate_limit
        self._rate_limit_window_ms = rate_limit_window_ms
        self._rate_limit_enabled = rate_limit_enabled

    def process(self, request: WebhookRequest) -> GatewayOutcome:
        outcome = GatewayOutcome(state=GatewayState.RECEIVED, transitions=[GatewayState.RECEIVED])

        verification = self.verifier.verify(
            request.raw_payload,
            request.provided_signature,
            self._shared_secret,
            request.received_at_epoch_ms,
        )
        if not verification.valid:
            logger.warning(
                "Invalid webhook signature",
                extra={
                    "client_identity": request.client_identity,
                    "verification_failure": verification.reason.value if verification.reason else None,
                },
            )
            outcome.verification_failure = verification.reason
            return self._reject(outcome, RejectionReason.INVALID_SIGNATURE)
        self._advance(outcome, GatewayState.SIGNATURE_CHECKED)

        if self._rate_limit_enabled:
            decision = self.rate_limiter.check(
                request.client_identity,
                limit=self._rate_limit,
                window_ms=self._rate_limit_window_ms,
                now_ms=request.received_at_epoch_ms,
            )
            outcome.rate_limit = decision
            if not decision.allowed:
                logger.warning(
                    "Rate limit triggered",
                    extra={
                        "action": "rate_limit.triggered",
                        "client_identity": request.client_identity,
                        "limit": decision.limit,
                        "count": decision.count,
                        "retry_after": decision.retry_after_seconds,
                    },
                )
                return self._reject(outcome, RejectionReason.RATE_LIMITED)
        self._advance(outcome, GatewayState.RATE_LIMIT_CHECKED)

        try:
            event = StripeEvent.model_validate_json(request.raw_payload)
        except PydanticValidationError as exc:
            logger.error(
                "Invalid webhook JSON payload",
                extra={"client_identity": request.client_identity, "error_count": exc.error_count()},
            )
            return self._reject(outcome, RejectionReason.MALFORMED_PAYLOAD)

        outcome.event = event
        self._advance(outcome, GatewayState.ACCEPTED)
        logger.info(
            "Webhook accepted",
            extra={"event_id": event.id, "event_type": event.type, "client_identity": request.client_identity},
        )
        outcome.handler_result = self.event_handler(event)
        return outcome

    @staticmethod
    def _advance(outcome: GatewayOutcome, state: GatewayState) -> None:
        outcome.state = state
        outcome.transitions.append(state)

    def _reject(self, outcome: GatewayOutcome, reason: RejectionReason) -> GatewayOutcome:
        outcome.reason = reason
        self._advance(outcome, GatewayState.REJECTED)
        return outcome
