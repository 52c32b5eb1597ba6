"""
Shared pytest fixtures.

These fixtures are automatically available to all tests in this directory.
"""

import json
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from heartheals.db_base import Base
from heartheals.entitlements.loader import FeatureCatalogLoader
from heartheals.entitlements.repository import InMemorySubscriptionRepository
from heartheals.entitlements.service import EntitlementService

REPO_ROOT = Path(__file__).resolve().parent.parent
FEATURES_PATH = REPO_ROOT / "config" / "features.json"

WEBHOOK_SECRET = "whsec_test_secret"
NOW_SECONDS = 1_700_000_000
NOW_MS = NOW_SECONDS * 1000


def make_event(event_type="customer.subscription.updated", obj=None, event_id="evt_test_1") -> bytes:
    """Serialize a Stripe-shaped event the way Stripe sends it."""
    return json.dumps(
        {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": NOW_SECONDS,
            "livemode": False,
            "data": {"object": obj or {}},
        }
    ).encode("utf-8")


@pytest.fixture
def features_path():
    return str(FEATURES_PATH)


@pytest.fixture
def catalog_loader(features_path):
    return FeatureCatalogLoader(features_path)


@pytest.fixture
def repository():
    return InMemorySubscriptionRepository()


@pytest.fixture
def audit_events():
    return []


@pytest.fixture
def entitlement_service(catalog_loader, repository, audit_events):
    return EntitlementService(
        catalog_loader=catalog_loader,
        repository=repository,
        audit_sink=lambda event, payload: audit_events.append((event, payload)),
    )


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()
