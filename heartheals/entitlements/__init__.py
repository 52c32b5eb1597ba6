"""
Feature entitlement evaluation for the HeartHeals paywall.

This module provides:
- Subscription and feature models (SubscriptionState, FeatureDescriptor)
- Pure evaluation: can_use_feature / evaluate / record_feature_usage
- FeatureCatalogLoader: feature descriptors from config/features.json
- Subscription repositories (in-memory and SQLAlchemy)
- EntitlementService: account-level API for the UI layer
"""

from heartheals.entitlements.errors import (
    EntitlementError,
    EntitlementEvaluationError,
    UnknownFeatureError,
)
from heartheals.entitlements.evaluator import (
    EntitlementEvaluator,
    can_use_feature,
    evaluate,
    record_feature_usage,
    reset_all_feature_usage,
    reset_feature_usage,
)
from heartheals.entitlements.loader import FeatureCatalog, FeatureCatalogLoader
from heartheals.entitlements.models import (
    DenialReason,
    EntitlementDecision,
    FeatureDescriptor,
    FeatureUsage,
    SubscriptionState,
    SubscriptionStatus,
    SubscriptionTier,
)
from heartheals.entitlements.repository import (
    InMemorySubscriptionRepository,
    SqlAlchemySubscriptionRepository,
    SubscriptionRepository,
)
from heartheals.entitlements.service import EntitlementService

__all__ = [
    # Models
    "DenialReason",
    "EntitlementDecision",
    "FeatureDescriptor",
    "FeatureUsage",
    "SubscriptionState",
    "SubscriptionStatus",
    "SubscriptionTier",
    # Evaluation
    "EntitlementEvaluator",
    "can_use_feature",
    "evaluate",
    "record_feature_usage",
    "reset_all_feature_usage",
    "reset_feature_usage",
    # Loader
    "FeatureCatalog",
    "FeatureCatalogLoader",
    # Repository
    "InMemorySubscriptionRepository",
    "SqlAlchemySubscriptionRepository",
    "SubscriptionRepository",
    # Service
    "EntitlementService",
    # Errors
    "EntitlementError",
    "EntitlementEvaluationError",
    "UnknownFeatureError",
]
