"""
Health Check Endpoints

Provides health and readiness checks for orchestration systems.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy import text

from settlement.config import get_settings
from settlement.environment import Environment
from settlement.serving.api.dependencies import get_environment

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


async def _check_store(env: Environment) -> Dict[str, Any]:
    try:
        start = time.perf_counter()
        async with env.store.transaction() as session:
            await session.execute(text("SELECT 1"))
        latency_ms = (time.perf_counter() - start) * 1000
        return {"status": "healthy", "latency_ms": round(latency_ms, 2)}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


@router.get("/health", response_model=HealthResponse)
async def health_check(env: Environment = Depends(get_environment)) -> HealthResponse:
    """
    Comprehensive health check endpoint.

    Only the order store is probed; the gateway and ERP are checked by their
    own calls, never by health traffic.
    """
    settings = get_settings()
    checks = {"database": await _check_store(env)}
    overall_status = "healthy" if checks["database"]["status"] == "healthy" else "unhealthy"

    return HealthResponse(
        status=overall_status,
        version=settings.version,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    """
    Kubernetes liveness probe endpoint.

    Returns 200 if the application is running.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(response: Response, env: Environment = Depends(get_environment)) -> Dict[str, str]:
    """
    Kubernetes readiness probe endpoint.

    Returns 200 if the application is ready to receive traffic.
    """
    db_health = await _check_store(env)
    if db_health.get("status") != "healthy":
        response.status_code = 503
        return {"status": "not_ready", "reason": "database_unavailable"}
    return {"status": "ready"}
