"""
Entitlement routes consumed by the UI layer.

GET answers "may this account use the feature?" without side effects.
POST .../usage records one genuine use and is the only write path for
usage counters.
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from heartheals.api.dependencies import get_account_id, get_entitlement_service
from heartheals.entitlements.errors import EntitlementEvaluationError, UnknownFeatureError
from heartheals.entitlements.models import EntitlementDecision
from heartheals.entitlements.service import EntitlementService
from heartheals.platform.errors import NotFoundError, PaymentRequiredError, ServiceUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["entitlements"])


class EntitlementCheckResponse(BaseModel):
    """Entitlement check response."""
    feature_id: str
    granted: bool
    reason: Optional[str] = None


class FeatureUsageResponse(BaseModel):
    feature_id: str
    granted: bool
    usage_count: int


class SubscriptionResponse(BaseModel):
    """Subscription summary for the account page."""
    account_id: str
    tier: str
    status: str
    is_active: bool
    current_period_end: Optional[datetime]
    remaining_days: Optional[int]
    feature_usage: Dict[str, int]


def _to_response(decision: EntitlementDecision) -> EntitlementCheckResponse:
    return EntitlementCheckResponse(
        feature_id=decision.feature_id,
        granted=decision.granted,
        reason=decision.reason.value if decision.reason else None,
    )


@router.get("/entitlements/{feature_id}", response_model=EntitlementCheckResponse)
def check_entitlement(
    feature_id: str,
    account_id: str = Depends(get_account_id),
    service: EntitlementService = Depends(get_entitlement_service),
):
    try:
        decision = service.check_feature(account_id, feature_id)
    except UnknownFeatureError as e:
        raise NotFoundError("Feature", e.feature_id) from e
    except EntitlementEvaluationError as e:
        raise ServiceUnavailableError(e.detail) from e
    return _to_response(decision)


@router.post("/entitlements/{feature_id}/usage", response_model=FeatureUsageResponse)
def record_usage(
    feature_id: str,
    account_id: str = Depends(get_account_id),
    service: EntitlementService = Depends(get_entitlement_service),
):
    try:
        decision = service.use_feature(account_id, feature_id)
    except UnknownFeatureError as e:
        raise NotFoundError("Feature", e.feature_id) from e
    except EntitlementEvaluationError as e:
        raise ServiceUnavailableError(e.detail) from e

    if not decision.granted:
        raise PaymentRequiredError(
            details={
                "feature_id": decision.feature_id,
                "reason": decision.reason.value if decision.reason else None,
            }
        )

    state = service.get_subscription(account_id)
    return FeatureUsageResponse(
        feature_id=decision.feature_id,
        granted=True,
        usage_count=state.usage_count(decision.feature_id),
    )


@router.get("/subscription", response_model=SubscriptionResponse)
def get_subscription(
    account_id: str = Depends(get_account_id),
    service: EntitlementService = Depends(get_entitlement_service),
):
    try:
        state = service.get_subscription(account_id)
    except EntitlementEvaluationError as e:
        raise ServiceUnavailableError(e.detail) from e

    return SubscriptionResponse(
        account_id=state.account_id,
        tier=state.tier.value,
        status=state.status.value,
        is_active=state.is_premium_active,
        current_period_end=state.current_period_end,
        remaining_days=state.remaining_days(),
        feature_usage={feature_id: usage.count for feature_id, usage in state.feature_usage.items()},
    )
