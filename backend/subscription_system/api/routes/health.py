import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint for the load balancer.

    Returns 503 during graceful shutdown so traffic drains.
    """
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": "subscription-system"},
        )
    return {"status": "healthy", "service": "subscription-system"}


@router.get("/ready")
async def readiness_check(request: Request):
    """Readiness check - verifies the subscription store answers."""
    checks = {"store": False}

    store = getattr(request.app.state, "store", None)
    if store is not None:
        try:
            checks["store"] = await store.ping()
        except Exception as e:
            logger.error("store_health_check_failed", error=str(e))

    all_healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content={"status": "ready" if all_healthy else "degraded", "checks": checks},
    )
