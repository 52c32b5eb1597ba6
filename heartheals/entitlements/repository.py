"""
Subscription state persistence.

Two backings share the same interface:
- InMemorySubscriptionRepository: tests and single-process development
- SqlAlchemySubscriptionRepository: subscriptions + feature_usage tables

Unknown accounts resolve to a free/inactive state so entitlement checks
fail closed for premium features.

Writers that derive the new state from the stored one (usage recording,
billing events) must go through ``update`` so the read and the write happen
as one step per account. ``save`` overwrites unconditionally.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from heartheals.models.subscription import FeatureUsageRecord, SubscriptionRecord

from .models import FeatureUsage, SubscriptionState

logger = logging.getLogger(__name__)

# Receives the current state and returns the state to store. Returning the
# same object leaves the account untouched.
StateUpdate = Callable[[SubscriptionState], SubscriptionState]


class SubscriptionRepository(Protocol):
    def get(self, account_id: str) -> SubscriptionState: ...

    def save(self, state: SubscriptionState) -> None: ...

    def update(self, account_id: str, apply: StateUpdate) -> SubscriptionState: ...

    def find_by_customer_id(self, customer_id: str) -> Optional[SubscriptionState]: ...


class InMemorySubscriptionRepository:
    def __init__(self) -> None:
        self._lock = RLock()
        self._states: Dict[str, SubscriptionState] = {}

    def get(self, account_id: str) -> SubscriptionState:
        normalized = _require_account_id(account_id)
        with self._lock:
            state = self._states.get(normalized)
        return state or SubscriptionState(account_id=normalized)

    def save(self, state: SubscriptionState) -> None:
        with self._lock:
            self._states[state.account_id] = state

    def update(self, account_id: str, apply: StateUpdate) -> SubscriptionState:
        normalized = _require_account_id(account_id)
        with self._lock:
            current = self._states.get(normalized) or SubscriptionState(account_id=normalized)
            updated = apply(current)
            if updated is not current:
                self._states[normalized] = updated
        return updated

    def find_by_customer_id(self, customer_id: str) -> Optional[SubscriptionState]:
        if not customer_id:
            return None
        with self._lock:
            for state in self._states.values():
                if state.provider_customer_id == customer_id:
                    return state
        return None


class SqlAlchemySubscriptionRepository:
    """Repository over the subscriptions/feature_usage tables.

    Takes a session factory so each call runs in its own short transaction.
    ``update`` locks the subscription row (SELECT ... FOR UPDATE) for the
    length of that transaction; the process-local lock covers backends
    without row locks, such as SQLite.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory
        self._lock = RLock()

    def get(self, account_id: str) -> SubscriptionState:
        normalized = _require_account_id(account_id)
        with self._session_factory() as session:
            record = session.get(SubscriptionRecord, normalized)
            if record is None:
                return SubscriptionState(account_id=normalized)
            return _to_state(record)

    def save(self, state: SubscriptionState) -> None:
        with self._lock, self._session_factory() as session:
            record = session.get(SubscriptionRecord, state.account_id)
            _write(session, record, state)
            session.commit()
        _log_saved(state)

    def update(self, account_id: str, apply: StateUpdate) -> SubscriptionState:
        normalized = _require_account_id(account_id)
        with self._lock, self._session_factory() as session:
            record = session.execute(
                select(SubscriptionRecord)
                .where(SubscriptionRecord.account_id == normalized)
                .with_for_update()
            ).scalar_one_or_none()
            current = _to_state(record) if record is not None else SubscriptionState(account_id=normalized)

            updated = apply(current)
            if updated is current:
                session.rollback()
                return current

            _write(session, record, updated)
            session.commit()
        _log_saved(updated)
        return updated

    def find_by_customer_id(self, customer_id: str) -> Optional[SubscriptionState]:
        if not customer_id:
            return None
        with self._session_factory() as session:
            record = (
                session.query(SubscriptionRecord)
                .filter(SubscriptionRecord.provider_customer_id == customer_id)
                .first()
            )
            return _to_state(record) if record else None


def _require_account_id(account_id: str) -> str:
    normalized = str(account_id).strip()
    if not normalized:
        raise ValueError("account_id is required")
    return normalized


def _write(session: Session, record: Optional[SubscriptionRecord], state: SubscriptionState) -> None:
    if record is None:
        record = SubscriptionRecord(account_id=state.account_id)
        session.add(record)

    record.tier = state.tier.value
    record.status = state.status.value
    record.provider_customer_id = state.provider_customer_id
    record.provider_subscription_id = state.provider_subscription_id
    record.current_period_end = state.current_period_end

    existing = {usage.feature_id: usage for usage in record.usage}
    for feature_id, usage in state.feature_usage.items():
        row = existing.pop(feature_id, None)
        if row is None:
            row = FeatureUsageRecord(account_id=state.account_id, feature_id=feature_id)
            record.usage.append(row)
        row.count = usage.count
        row.last_used_at = usage.last_used_at
    for stale in existing.values():
        record.usage.remove(stale)


def _log_saved(state: SubscriptionState) -> None:
    logger.debug(
        "Subscription state saved",
        extra={"account_id": state.account_id, "tier": state.tier.value, "status": state.status.value},
    )


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on round-trip; values are always stored as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_state(record: SubscriptionRecord) -> SubscriptionState:
    return SubscriptionState(
        account_id=record.account_id,
        tier=record.tier,
        status=record.status,
        feature_usage={
            usage.feature_id: FeatureUsage(count=usage.count, last_used_at=_aware(usage.last_used_at))
            for usage in record.usage
        },
        provider_customer_id=record.provider_customer_id,
        provider_subscription_id=record.provider_subscription_id,
        current_period_end=_aware(record.current_period_end),
    )
