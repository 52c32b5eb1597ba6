"""
Billing event handler for accepted Stripe webhooks.

Called by the WebhookGateway only after signature and rate limit checks
have passed. This is the only place subscription tier/status change.

SECURITY:
- account_id comes from subscription metadata set at checkout, or from the
  stored provider customer id; never from free-form payload fields
- Events for unknown accounts are logged and ignored

Every change is applied through repository.update, so a billing event and a
concurrent usage write for the same account never overwrite each other.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from heartheals.entitlements.models import SubscriptionState, SubscriptionStatus, SubscriptionTier
from heartheals.entitlements.repository import StateUpdate, SubscriptionRepository
from heartheals.platform.redaction import redact_payment_data

from .models import StripeEvent

logger = logging.getLogger(__name__)


# Stripe subscription.status -> local status
STRIPE_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "incomplete": SubscriptionStatus.INACTIVE,
    "paused": SubscriptionStatus.INACTIVE,
}


def _period_end(obj: Dict[str, Any]) -> Optional[datetime]:
    raw = obj.get("current_period_end")
    if raw is None:
        return None
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        logger.warning("Ignoring invalid current_period_end", extra={"value": raw})
        return None


class BillingEventHandler:
    """Maps Stripe subscription and invoice events onto SubscriptionState."""

    def __init__(self, repository: SubscriptionRepository) -> None:
        self.repository = repository
        self._handlers: Dict[str, Callable[[StripeEvent], Optional[SubscriptionState]]] = {
            "customer.subscription.created": self._handle_subscription_upsert,
            "customer.subscription.updated": self._handle_subscription_upsert,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.payment_succeeded": self._handle_invoice_payment_succeeded,
            "invoice.payment_failed": self._handle_invoice_payment_failed,
        }

    def __call__(self, event: StripeEvent) -> Optional[SubscriptionState]:
        return self.handle(event)

    def handle(self, event: StripeEvent) -> Optional[SubscriptionState]:
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("Unhandled event type", extra={"event_id": event.id, "event_type": event.type})
            return None

        logger.info(
            "Processing billing event",
            extra={
                "event_id": event.id,
                "event_type": event.type,
                "object": redact_payment_data(event.data_object),
            },
        )
        return handler(event)

    def _resolve_account_id(self, obj: Dict[str, Any]) -> Optional[str]:
        metadata = obj.get("metadata") or {}
        account_id = metadata.get("account_id") if isinstance(metadata, dict) else None
        if account_id and str(account_id).strip():
            return str(account_id).strip()

        customer_id = obj.get("customer")
        if isinstance(customer_id, str) and customer_id:
            state = self.repository.find_by_customer_id(customer_id)
            if state is not None:
                return state.account_id
        return None

    def _apply(self, event: StripeEvent, transition: StateUpdate) -> Optional[SubscriptionState]:
        """Run ``transition`` atomically on the event's account."""
        account_id = self._resolve_account_id(event.data_object)
        if account_id is None:
            logger.warning(
                "Billing event for unknown account - ignoring",
                extra={
                    "event_id": event.id,
                    "event_type": event.type,
                    "customer": event.data_object.get("customer"),
                },
            )
            return None

        changed = []

        def tracked(current: SubscriptionState) -> SubscriptionState:
            updated = transition(current)
            changed.append(updated is not current)
            return updated

        state = self.repository.update(account_id, tracked)
        if changed and changed[-1]:
            logger.info(
                "Subscription state updated",
                extra={
                    "event_id": event.id,
                    "event_type": event.type,
                    "account_id": state.account_id,
                    "tier": state.tier.value,
                    "status": state.status.value,
                },
            )
        return state

    def _handle_subscription_upsert(self, event: StripeEvent) -> Optional[SubscriptionState]:
        obj = event.data_object
        stripe_status = str(obj.get("status", "")).lower()
        status = STRIPE_STATUS_MAP.get(stripe_status)
        if status is None:
            logger.warning(
                "Unknown Stripe subscription status - marking inactive",
                extra={"event_id": event.id, "stripe_status": stripe_status},
            )
            status = SubscriptionStatus.INACTIVE
        period_end = _period_end(obj)

        def transition(state: SubscriptionState) -> SubscriptionState:
            return replace(
                state,
                tier=SubscriptionTier.PREMIUM,
                status=status,
                provider_customer_id=obj.get("customer") or state.provider_customer_id,
                provider_subscription_id=obj.get("id") or state.provider_subscription_id,
                current_period_end=period_end or state.current_period_end,
            )

        return self._apply(event, transition)

    def _handle_subscription_deleted(self, event: StripeEvent) -> Optional[SubscriptionState]:
        def transition(state: SubscriptionState) -> SubscriptionState:
            return replace(
                state,
                tier=SubscriptionTier.FREE,
                status=SubscriptionStatus.CANCELED,
                current_period_end=None,
            )

        return self._apply(event, transition)

    def _handle_invoice_payment_succeeded(self, event: StripeEvent) -> Optional[SubscriptionState]:
        def transition(state: SubscriptionState) -> SubscriptionState:
            if state.tier != SubscriptionTier.PREMIUM:
                # invoice without a premium subscription on record; nothing to reactivate
                logger.info(
                    "Invoice paid for non-premium account",
                    extra={"event_id": event.id, "account_id": state.account_id},
                )
                return state
            return replace(state, status=SubscriptionStatus.ACTIVE)

        return self._apply(event, transition)

    def _handle_invoice_payment_failed(self, event: StripeEvent) -> Optional[SubscriptionState]:
        def transition(state: SubscriptionState) -> SubscriptionState:
            if state.tier != SubscriptionTier.PREMIUM:
                return state
            logger.warning(
                "Invoice payment failed - subscription past due",
                extra={"event_id": event.id, "account_id": state.account_id},
            )
            return replace(state, status=SubscriptionStatus.PAST_DUE)

        return self._apply(event, transition)
