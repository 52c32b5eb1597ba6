"""Liveness endpoint for the load balancer."""

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request):
    state = request.app.state
    loader = getattr(state, "feature_catalog_loader", None)
    limiter = getattr(state, "rate_limiter", None)
    return {
        "status": "ok",
        "service": "heartheals-billing",
        "checks": {
            "feature_catalog": {
                "status": "ok" if loader is not None else "error",
                "feature_count": len(loader.catalog) if loader is not None else 0,
            },
            "rate_limit_store": type(limiter.store).__name__ if limiter is not None else None,
        },
    }
