"""
Health check endpoint.

GET /health checks MongoDB, Redis and the credential store.
Rules:
- MongoDB or credential store failure → "unhealthy" (503); no code can be
  issued or verified without them.
- Redis failure or absence → "degraded" (200) unless Redis is the store.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from shared.logging import get_logger

log = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> JSONResponse:
    checks: dict[str, str] = {}
    overall = "healthy"

    try:
        db = request.app.state.db
        await db.client.admin.command("ping")
        checks["mongodb"] = "ok"
    except Exception as e:
        log.warning("health_check_failed", component="mongodb", error=str(e))
        checks["mongodb"] = "error"
        overall = "unhealthy"

    redis = request.app.state.redis
    if redis is None:
        checks["redis"] = "not_configured"
        if overall == "healthy":
            overall = "degraded"
    else:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception as e:
            log.warning("health_check_failed", component="redis", error=str(e))
            checks["redis"] = "error"
            if overall == "healthy":
                overall = "degraded"

    store = request.app.state.otp_store
    if await store.ping():
        checks["otp_store"] = "ok"
    else:
        checks["otp_store"] = "error"
        overall = "unhealthy"

    status_code = 503 if overall == "unhealthy" else 200
    return JSONResponse(
        status_code=status_code,
        content={"status": overall, "checks": checks},
    )
