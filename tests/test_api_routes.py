"""
HTTP tests for the billing API.

Covers status codes and error shapes of the webhook, entitlement, subscription
and health endpoints through the FastAPI TestClient.
"""

import time

import pytest
from fastapi.testclient import TestClient

from heartheals.api.app import create_app, main
from heartheals.config.settings import Settings
from heartheals.entitlements.models import SubscriptionState, SubscriptionStatus, SubscriptionTier
from heartheals.entitlements.repository import InMemorySubscriptionRepository
from heartheals.webhooks.verification import generate_signature_header

from conftest import FEATURES_PATH, WEBHOOK_SECRET, make_event

ACCOUNT_HEADERS = {"X-Account-ID": "account-1"}


@pytest.fixture
def api_repository():
    return InMemorySubscriptionRepository()


def _client(repository, **settings_overrides):
    settings = Settings(
        webhook_secret=WEBHOOK_SECRET,
        feature_catalog_path=str(FEATURES_PATH),
        **settings_overrides,
    )
    return TestClient(create_app(settings, repository=repository))


@pytest.fixture
def client(api_repository):
    return _client(api_repository)


def _post_webhook(client, payload, secret=WEBHOOK_SECRET, headers=None):
    signature = generate_signature_header(payload, secret, timestamp=int(time.time()))
    return client.post(
        "/webhooks/stripe",
        content=payload,
        headers={"Stripe-Signature": signature, "Content-Type": "application/json", **(headers or {})},
    )


class TestStripeWebhook:

    def test_accepted_event_updates_subscription(self, client, api_repository):
        payload = make_event(
            "customer.subscription.created",
            {"id": "sub_1", "customer": "cus_1", "status": "active", "metadata": {"account_id": "account-1"}},
        )

        response = _post_webhook(client, payload)

        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "event_id": "evt_test_1",
            "event_type": "customer.subscription.created",
        }
        assert api_repository.get("account-1").tier == SubscriptionTier.PREMIUM

    def test_invalid_signature_returns_400(self, client, api_repository):
        payload = make_event(
            "customer.subscription.created",
            {"id": "sub_1", "customer": "cus_1", "status": "active", "metadata": {"account_id": "account-1"}},
        )

        response = _post_webhook(client, payload, secret="whsec_wrong")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"
        assert api_repository.get("account-1").tier == SubscriptionTier.FREE

    def test_missing_signature_header_returns_400(self, client):
        response = client.post("/webhooks/stripe", content=make_event())

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"

    def test_malformed_payload_returns_400(self, client):
        response = _post_webhook(client, b'{"hello": "world"}')

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MALFORMED_PAYLOAD"

    def test_rate_limited_returns_429_with_retry_after(self, api_repository):
        client = _client(api_repository, rate_limit=2)
        payload = make_event("ping")

        statuses = [_post_webhook(client, payload).status_code for _ in range(3)]
        response = _post_webhook(client, payload)

        assert statuses == [200, 200, 429]
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"
        assert int(response.headers["Retry-After"]) >= 1
        assert response.headers["X-RateLimit-Limit"] == "2"

    def test_forwarded_for_sets_client_identity(self, api_repository):
        client = _client(api_repository, rate_limit=1)
        payload = make_event("ping")

        first = _post_webhook(client, payload, headers={"X-Forwarded-For": "198.51.100.1, 10.0.0.1"})
        second = _post_webhook(client, payload, headers={"X-Forwarded-For": "198.51.100.2"})
        third = _post_webhook(client, payload, headers={"X-Forwarded-For": "198.51.100.1"})

        assert (first.status_code, second.status_code, third.status_code) == (200, 200, 429)

    def test_gateway_runs_in_threadpool(self, client, api_repository, monkeypatch):
        from heartheals.api.routes import webhooks_stripe

        dispatched = []
        original = webhooks_stripe.run_in_threadpool

        async def spy(func, *args, **kwargs):
            dispatched.append(func)
            return await original(func, *args, **kwargs)

        monkeypatch.setattr(webhooks_stripe, "run_in_threadpool", spy)
        payload = make_event(
            "customer.subscription.created",
            {"id": "sub_1", "customer": "cus_1", "status": "active", "metadata": {"account_id": "account-1"}},
        )

        response = _post_webhook(client, payload)

        assert response.status_code == 200
        assert [func.__name__ for func in dispatched] == ["process"]
        assert api_repository.get("account-1").tier == SubscriptionTier.PREMIUM

    def test_handler_failure_returns_500(self, client, api_repository, monkeypatch):
        def boom(account_id, apply):
            raise RuntimeError("db down")

        monkeypatch.setattr(api_repository, "update", boom)
        payload = make_event(
            "customer.subscription.created",
            {"id": "sub_1", "customer": "cus_1", "status": "active", "metadata": {"account_id": "account-1"}},
        )

        response = _post_webhook(client, payload)

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "WEBHOOK_PROCESSING_FAILED"


class TestEntitlementRoutes:

    def test_check_free_feature(self, client):
        response = client.get("/api/entitlements/emotional-log", headers=ACCOUNT_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"feature_id": "emotional-log", "granted": True, "reason": None}

    def test_check_premium_feature_denied(self, client):
        response = client.get("/api/entitlements/premium-content", headers=ACCOUNT_HEADERS)

        assert response.status_code == 200
        assert response.json()["granted"] is False
        assert response.json()["reason"] == "premium_required"

    def test_check_does_not_consume_usage(self, client, api_repository):
        for _ in range(3):
            client.get("/api/entitlements/emotional-log", headers=ACCOUNT_HEADERS)

        assert api_repository.get("account-1").usage_count("emotional-log") == 0

    def test_record_usage_until_limit(self, client):
        responses = [
            client.post("/api/entitlements/emotional-log/usage", headers=ACCOUNT_HEADERS) for _ in range(6)
        ]

        assert [r.status_code for r in responses] == [200] * 5 + [402]
        assert responses[4].json()["usage_count"] == 5
        assert responses[5].json()["error"]["details"] == {
            "feature_id": "emotional-log",
            "reason": "usage_limit_reached",
        }

    def test_unknown_feature_returns_404(self, client):
        response = client.get("/api/entitlements/teleport", headers=ACCOUNT_HEADERS)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_missing_account_header_returns_401(self, client):
        response = client.get("/api/entitlements/emotional-log")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTHENTICATION_ERROR"

    def test_repository_failure_returns_503(self, client, api_repository, monkeypatch):
        def boom(account_id):
            raise RuntimeError("db down")

        monkeypatch.setattr(api_repository, "get", boom)

        response = client.get("/api/entitlements/emotional-log", headers=ACCOUNT_HEADERS)

        assert response.status_code == 503

    def test_subscription_summary(self, client, api_repository):
        api_repository.save(
            SubscriptionState(
                account_id="account-1",
                tier=SubscriptionTier.PREMIUM,
                status=SubscriptionStatus.ACTIVE,
            )
        )
        client.post("/api/entitlements/emotional-log/usage", headers=ACCOUNT_HEADERS)

        response = client.get("/api/subscription", headers=ACCOUNT_HEADERS)

        body = response.json()
        assert response.status_code == 200
        assert body["tier"] == "premium"
        assert body["status"] == "active"
        assert body["is_active"] is True
        assert body["remaining_days"] is None
        assert body["feature_usage"] == {"emotional-log": 1}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["checks"]["feature_catalog"]["feature_count"] == 5
    assert body["checks"]["rate_limit_store"] == "InMemoryRateLimitStore"
    assert "X-Correlation-ID" in response.headers


def test_app_starts_eviction_task_on_lifespan(api_repository):
    with _client(api_repository) as client:
        assert client.get("/health").status_code == 200


def test_main_serves_app_factory_with_uvicorn(monkeypatch):
    calls = []
    monkeypatch.setattr("uvicorn.run", lambda app, **kwargs: calls.append((app, kwargs)))
    monkeypatch.setenv("PORT", "9001")
    monkeypatch.delenv("HOST", raising=False)

    main()

    assert calls == [("heartheals.api.app:create_app", {"factory": True, "host": "0.0.0.0", "port": 9001})]
