from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional


class SubscriptionTier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class DenialReason(str, Enum):
    """Why a feature check came back negative. The UI maps these to paywall copy."""

    PREMIUM_REQUIRED = "premium_required"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"
    USAGE_LIMIT_REACHED = "usage_limit_reached"


@dataclass(frozen=True)
class FeatureUsage:
    count: int = 0
    last_used_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.count < 0:
            raise ValueError("usage count cannot be negative")


@dataclass(frozen=True)
class FeatureDescriptor:
    """Static description of a gated feature, loaded from config/features.json."""

    feature_id: str
    required_tier: SubscriptionTier
    usage_limit_for_free_tier: Optional[int] = None  # None means unlimited

    def __post_init__(self) -> None:
        feature_id = str(self.feature_id).strip()
        if not feature_id:
            raise ValueError("feature_id is required")
        object.__setattr__(self, "feature_id", feature_id)
        object.__setattr__(self, "required_tier", SubscriptionTier(self.required_tier))
        if self.usage_limit_for_free_tier is not None and self.usage_limit_for_free_tier < 0:
            raise ValueError("usage_limit_for_free_tier must be >= 0 or None")

    @property
    def is_usage_limited(self) -> bool:
        return self.usage_limit_for_free_tier is not None


@dataclass(frozen=True)
class SubscriptionState:
    """Typed subscription snapshot for an account.

    Instances are never mutated; billing events and usage recording
    produce a new state via ``dataclasses.replace``.
    """

    account_id: str
    tier: SubscriptionTier = SubscriptionTier.FREE
    status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    feature_usage: Mapping[str, FeatureUsage] = field(default_factory=dict)
    provider_customer_id: Optional[str] = None
    provider_subscription_id: Optional[str] = None
    current_period_end: Optional[datetime] = None

    def __post_init__(self) -> None:
        account_id = str(self.account_id).strip()
        if not account_id:
            raise ValueError("account_id is required")
        if self.current_period_end is not None and self.current_period_end.tzinfo is None:
            raise ValueError("current_period_end must be timezone-aware")
        object.__setattr__(self, "account_id", account_id)
        object.__setattr__(self, "tier", SubscriptionTier(self.tier))
        object.__setattr__(self, "status", SubscriptionStatus(self.status))
        object.__setattr__(self, "feature_usage", MappingProxyType(dict(self.feature_usage)))

    @property
    def is_premium_active(self) -> bool:
        return self.tier == SubscriptionTier.PREMIUM and self.status == SubscriptionStatus.ACTIVE

    def usage_count(self, feature_id: str) -> int:
        usage = self.feature_usage.get(feature_id)
        return usage.count if usage else 0

    def remaining_days(self, now: Optional[datetime] = None) -> Optional[int]:
        if self.current_period_end is None:
            return None
        compare_at = now or datetime.now(timezone.utc)
        return max(0, (self.current_period_end - compare_at).days)

    def with_usage(self, usage: Dict[str, FeatureUsage]) -> "SubscriptionState":
        return replace(self, feature_usage=usage)


@dataclass(frozen=True)
class EntitlementDecision:
    """Resolution for a single feature check."""

    feature_id: str
    granted: bool
    reason: Optional[DenialReason] = None
