"""
Tests for subscription repositories.

Both backings are exercised through the same cases; the SQLAlchemy one runs
against an in-memory SQLite database.
"""

from datetime import datetime, timezone

import pytest

from heartheals.entitlements.evaluator import record_feature_usage, reset_feature_usage
from heartheals.entitlements.models import SubscriptionState, SubscriptionStatus, SubscriptionTier
from heartheals.entitlements.repository import (
    InMemorySubscriptionRepository,
    SqlAlchemySubscriptionRepository,
)
from heartheals.models.subscription import FeatureUsageRecord

PERIOD_END = datetime(2030, 1, 31, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sqlalchemy"])
def repo(request, session_factory):
    if request.param == "memory":
        return InMemorySubscriptionRepository()
    return SqlAlchemySubscriptionRepository(session_factory)


def _premium_state():
    return SubscriptionState(
        account_id="account-1",
        tier=SubscriptionTier.PREMIUM,
        status=SubscriptionStatus.ACTIVE,
        provider_customer_id="cus_123",
        provider_subscription_id="sub_123",
        current_period_end=PERIOD_END,
    )


def test_unknown_account_defaults_to_free_inactive(repo):
    state = repo.get("account-unknown")

    assert state.account_id == "account-unknown"
    assert state.tier == SubscriptionTier.FREE
    assert state.status == SubscriptionStatus.INACTIVE


def test_save_then_get_round_trips_state(repo):
    repo.save(_premium_state())

    state = repo.get("account-1")

    assert state.tier == SubscriptionTier.PREMIUM
    assert state.status == SubscriptionStatus.ACTIVE
    assert state.provider_subscription_id == "sub_123"
    assert state.current_period_end == PERIOD_END


def test_usage_counters_persist(repo):
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    state = record_feature_usage(_premium_state(), "emotional-log", now=now)
    state = record_feature_usage(state, "emotional-log", now=now)
    repo.save(state)

    loaded = repo.get("account-1")

    assert loaded.usage_count("emotional-log") == 2
    assert loaded.feature_usage["emotional-log"].last_used_at == now


def test_reset_usage_removes_counter(repo):
    repo.save(record_feature_usage(_premium_state(), "emotional-log"))
    repo.save(reset_feature_usage(repo.get("account-1"), "emotional-log"))

    assert repo.get("account-1").usage_count("emotional-log") == 0


def test_find_by_customer_id(repo):
    repo.save(_premium_state())

    assert repo.find_by_customer_id("cus_123").account_id == "account-1"
    assert repo.find_by_customer_id("cus_other") is None
    assert repo.find_by_customer_id("") is None


def test_blank_account_id_rejected(repo):
    with pytest.raises(ValueError):
        repo.get("  ")


def test_stale_usage_rows_are_deleted(session_factory):
    repo = SqlAlchemySubscriptionRepository(session_factory)
    state = record_feature_usage(_premium_state(), "emotional-log")
    state = record_feature_usage(state, "breathing-exercise")
    repo.save(state)

    repo.save(reset_feature_usage(repo.get("account-1"), "emotional-log"))

    with session_factory() as session:
        rows = session.query(FeatureUsageRecord).filter_by(account_id="account-1").all()
    assert [row.feature_id for row in rows] == ["breathing-exercise"]


def test_update_applies_change_to_stored_state(repo):
    repo.save(record_feature_usage(_premium_state(), "emotional-log"))

    result = repo.update("account-1", lambda state: record_feature_usage(state, "emotional-log"))

    assert result.usage_count("emotional-log") == 2
    assert repo.get("account-1").usage_count("emotional-log") == 2
    assert repo.get("account-1").tier == SubscriptionTier.PREMIUM


def test_update_that_returns_same_state_writes_nothing(repo):
    result = repo.update("account-new", lambda state: state)

    assert result.account_id == "account-new"
    assert repo.find_by_customer_id("cus_123") is None
    assert repo.get("account-new").tier == SubscriptionTier.FREE


def test_update_error_leaves_state_untouched(repo):
    repo.save(_premium_state())

    def fail(state):
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        repo.update("account-1", fail)

    assert repo.get("account-1").status == SubscriptionStatus.ACTIVE
