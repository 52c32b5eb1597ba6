"""
Application factory.

Run with:
    heartheals-api
or:
    uvicorn heartheals.api.app:create_app --factory

All collaborators are built here and injected explicitly; nothing is
resolved from module globals at request time. Bad configuration raises
ConfigurationError while the app is built.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from heartheals.api.routes import entitlements, health, webhooks_stripe
from heartheals.config.settings import Settings, load_settings
from heartheals.db_base import Base
from heartheals.entitlements.loader import FeatureCatalogLoader
from heartheals.entitlements.repository import (
    InMemorySubscriptionRepository,
    SqlAlchemySubscriptionRepository,
    SubscriptionRepository,
)
from heartheals.entitlements.service import EntitlementService
from heartheals.platform.errors import ErrorHandlerMiddleware
from heartheals.webhooks.gateway import WebhookGateway
from heartheals.webhooks.handlers import BillingEventHandler
from heartheals.webhooks.rate_limit import RateLimiter, RateLimitStore, build_rate_limit_store
from heartheals.webhooks.verification import SignatureVerifier
from heartheals.workers.rate_limit_eviction_job import run_periodically

logger = logging.getLogger(__name__)


def _audit_log(event: str, payload: dict) -> None:
    logger.info(event, extra=payload)


def build_repository(database_url: Optional[str]) -> SubscriptionRepository:
    if not database_url:
        logger.warning("DATABASE_URL not set - subscription state is in memory only")
        return InMemorySubscriptionRepository()
    engine = create_engine(database_url, pool_pre_ping=True)
    Base.metadata.create_all(engine)
    return SqlAlchemySubscriptionRepository(sessionmaker(bind=engine, expire_on_commit=False))


def create_app(
    settings: Optional[Settings] = None,
    *,
    repository: Optional[SubscriptionRepository] = None,
    rate_limit_store: Optional[RateLimitStore] = None,
) -> FastAPI:
    settings = settings or load_settings()

    catalog_loader = FeatureCatalogLoader(settings.feature_catalog_path)
    if repository is None:
        repository = build_repository(settings.database_url)
    entitlement_service = EntitlementService(
        catalog_loader=catalog_loader,
        repository=repository,
        audit_sink=_audit_log,
    )

    rate_limiter = RateLimiter(
        store=rate_limit_store if rate_limit_store is not None else build_rate_limit_store(settings.redis_url),
        default_limit=settings.rate_limit,
        window_ms=settings.rate_limit_window_ms,
    )
    gateway = WebhookGateway(
        verifier=SignatureVerifier(tolerance_seconds=settings.timestamp_tolerance_seconds),
        rate_limiter=rate_limiter,
        event_handler=BillingEventHandler(repository),
        shared_secret=settings.webhook_secret,
        rate_limit=settings.rate_limit,
        rate_limit_window_ms=settings.rate_limit_window_ms,
        rate_limit_enabled=settings.rate_limit_enabled,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        eviction_task = asyncio.create_task(run_periodically(rate_limiter))
        try:
            yield
        finally:
            eviction_task.cancel()
            with suppress(asyncio.CancelledError):
                await eviction_task

    app = FastAPI(title="HeartHeals Billing API", lifespan=lifespan)
    app.state.settings = settings
    app.state.feature_catalog_loader = catalog_loader
    app.state.entitlement_service = entitlement_service
    app.state.rate_limiter = rate_limiter
    app.state.webhook_gateway = gateway

    app.add_middleware(ErrorHandlerMiddleware)
    app.include_router(health.router)
    app.include_router(webhooks_stripe.router)
    app.include_router(entitlements.router)

    logger.info(
        "HeartHeals billing API configured",
        extra={
            "rate_limit": settings.rate_limit,
            "rate_limit_window_ms": settings.rate_limit_window_ms,
            "rate_limit_enabled": settings.rate_limit_enabled,
            "rate_limit_store": type(rate_limiter.store).__name__,
        },
    )
    return app


def main() -> None:
    """Serve the API with uvicorn. HOST and PORT default to 0.0.0.0:8000."""
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    logger.info("Starting HeartHeals billing API", extra={"host": host, "port": port})
    uvicorn.run("heartheals.api.app:create_app", factory=True, host=host, port=port)


if __name__ == "__main__":
    main()
