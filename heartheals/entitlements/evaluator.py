"""
Feature entitlement evaluation.

Queries (can_use_feature, evaluate) are pure functions of the subscription
state and the feature descriptor. Usage recording is a separate command and
must be called once per genuine feature use, never on a render or a check.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from .models import (
    DenialReason,
    EntitlementDecision,
    FeatureDescriptor,
    FeatureUsage,
    SubscriptionState,
    SubscriptionTier,
)


def evaluate(state: SubscriptionState, feature: FeatureDescriptor) -> EntitlementDecision:
    """Resolve access in order: premium gate -> free-tier usage limit -> grant."""
    if feature.required_tier == SubscriptionTier.PREMIUM:
        if state.is_premium_active:
            return EntitlementDecision(feature_id=feature.feature_id, granted=True)
        # tier alone never grants premium access; status must be active too
        reason = (
            DenialReason.SUBSCRIPTION_INACTIVE
            if state.tier == SubscriptionTier.PREMIUM
            else DenialReason.PREMIUM_REQUIRED
        )
        return EntitlementDecision(feature_id=feature.feature_id, granted=False, reason=reason)

    if state.is_premium_active or not feature.is_usage_limited:
        return EntitlementDecision(feature_id=feature.feature_id, granted=True)

    if state.usage_count(feature.feature_id) < feature.usage_limit_for_free_tier:
        return EntitlementDecision(feature_id=feature.feature_id, granted=True)

    return EntitlementDecision(
        feature_id=feature.feature_id,
        granted=False,
        reason=DenialReason.USAGE_LIMIT_REACHED,
    )


def can_use_feature(state: SubscriptionState, feature: FeatureDescriptor) -> bool:
    return evaluate(state, feature).granted


def record_feature_usage(
    state: SubscriptionState,
    feature_id: str,
    now: Optional[datetime] = None,
) -> SubscriptionState:
    """Return a new state with one more recorded use of ``feature_id``."""
    normalized = str(feature_id).strip()
    if not normalized:
        raise ValueError("feature_id is required")

    usage = dict(state.feature_usage)
    previous = usage.get(normalized, FeatureUsage())
    usage[normalized] = FeatureUsage(
        count=previous.count + 1,
        last_used_at=now or datetime.now(timezone.utc),
    )
    return state.with_usage(usage)


def reset_feature_usage(state: SubscriptionState, feature_id: str) -> SubscriptionState:
    usage = dict(state.feature_usage)
    usage.pop(str(feature_id).strip(), None)
    return state.with_usage(usage)


def reset_all_feature_usage(state: SubscriptionState) -> SubscriptionState:
    return state.with_usage({})


class EntitlementEvaluator:
    """Object wrapper so the evaluator can be injected like the other collaborators."""

    def evaluate(self, state: SubscriptionState, feature: FeatureDescriptor) -> EntitlementDecision:
        return evaluate(state, feature)

    def can_use_feature(self, state: SubscriptionState, feature: FeatureDescriptor) -> bool:
        return can_use_feature(state, feature)

    def record_feature_usage(
        self,
        state: SubscriptionState,
        feature_id: str,
        now: Optional[datetime] = None,
    ) -> SubscriptionState:
        return record_feature_usage(state, feature_id, now=now)
