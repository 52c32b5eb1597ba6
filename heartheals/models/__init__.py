"""Database models for subscriptions and feature usage."""

from heartheals.models.subscription import FeatureUsageRecord, SubscriptionRecord

__all__ = [
    "FeatureUsageRecord",
    "SubscriptionRecord",
]
