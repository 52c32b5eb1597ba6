from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from .errors import EntitlementError, EntitlementEvaluationError, UnknownFeatureError
from .evaluator import (
    EntitlementEvaluator,
    reset_all_feature_usage,
    reset_feature_usage,
)
from .loader import FeatureCatalogLoader
from .models import EntitlementDecision, FeatureDescriptor, SubscriptionState
from .repository import InMemorySubscriptionRepository, StateUpdate, SubscriptionRepository

logger = logging.getLogger(__name__)


class EntitlementService:
    """Account-level entitlement API consumed by the UI layer.

    ``check_feature``/``can_use_feature`` never touch usage counters.
    ``use_feature`` is the single command that records a genuine use.
    Commands run through ``repository.update`` so they never overwrite a
    concurrent billing change for the same account.
    """

    def __init__(
        self,
        *,
        catalog_loader: Optional[FeatureCatalogLoader] = None,
        repository: Optional[SubscriptionRepository] = None,
        evaluator: Optional[EntitlementEvaluator] = None,
        audit_sink: Optional[Callable[[str, dict], None]] = None,
    ) -> None:
        self.catalog_loader = catalog_loader or FeatureCatalogLoader()
        self.repository = repository or InMemorySubscriptionRepository()
        self.evaluator = evaluator or EntitlementEvaluator()
        self._audit_sink = audit_sink or (lambda event, payload: None)

    def get_subscription(self, account_id: str) -> SubscriptionState:
        return self._call_repository(account_id, self.repository.get, account_id)

    def check_feature(self, account_id: str, feature_id: str) -> EntitlementDecision:
        feature = self._get_feature(feature_id)
        state = self.get_subscription(account_id)
        decision = self.evaluator.evaluate(state, feature)
        if not decision.granted:
            self._audit_sink(
                "entitlements.feature_denied",
                {
                    "account_id": state.account_id,
                    "feature_id": feature.feature_id,
                    "reason": decision.reason.value if decision.reason else None,
                },
            )
        return decision

    def can_use_feature(self, account_id: str, feature_id: str) -> bool:
        return self.check_feature(account_id, feature_id).granted

    def use_feature(self, account_id: str, feature_id: str) -> EntitlementDecision:
        """Check access and, when granted, record exactly one use."""
        feature = self._get_feature(feature_id)
        decisions: List[EntitlementDecision] = []

        def apply(state: SubscriptionState) -> SubscriptionState:
            decision = self.evaluator.evaluate(state, feature)
            decisions.append(decision)
            if not decision.granted:
                return state
            return self.evaluator.record_feature_usage(state, feature.feature_id)

        self._update(account_id, apply)
        decision = decisions[-1]
        if not decision.granted:
            logger.info(
                "Feature use denied",
                extra={
                    "account_id": str(account_id).strip(),
                    "feature_id": feature.feature_id,
                    "reason": decision.reason.value if decision.reason else None,
                },
            )
        return decision

    def reset_feature_usage(self, account_id: str, feature_id: str) -> SubscriptionState:
        return self._update(account_id, lambda state: reset_feature_usage(state, feature_id))

    def reset_all_feature_usage(self, account_id: str) -> SubscriptionState:
        return self._update(account_id, reset_all_feature_usage)

    def _get_feature(self, feature_id: str) -> FeatureDescriptor:
        try:
            return self.catalog_loader.get_feature(feature_id)
        except KeyError as exc:
            raise UnknownFeatureError(str(feature_id).strip()) from exc

    def _update(self, account_id: str, apply: StateUpdate) -> SubscriptionState:
        return self._call_repository(account_id, self.repository.update, account_id, apply)

    def _call_repository(self, account_id: str, operation: Callable[..., Any], *args: Any) -> SubscriptionState:
        try:
            return operation(*args)
        except (ValueError, EntitlementError):
            raise
        except Exception as exc:
            payload = {
                "account_id": account_id,
                "error": str(exc),
                "occurred_at": datetime.now(timezone.utc).isoformat(),
            }
            self._audit_sink("entitlements.evaluation_failed", payload)
            logger.error("Subscription lookup failed", extra=payload)
            raise EntitlementEvaluationError(
                account_id=account_id,
                detail="Entitlements unavailable. Access denied.",
                cause=exc,
            ) from exc
