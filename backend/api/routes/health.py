"""Health check endpoints.

Provides:
- Basic liveness probe (/health/)
- Database check (/health/health)
"""

import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
import logging

from app.config import get_settings
from db import database

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_start_datetime = datetime.now(timezone.utc).isoformat()


@router.get("/", response_model=dict[str, Any])
async def root() -> dict[str, Any]:
    """
    Get API root information and version.
    Used as a simple liveness probe.
    """
    settings = get_settings()
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "ok",
    }


@router.get("/health", response_model=dict[str, Any])
async def health_check():
    """
    Health check with dependency verification.
    Returns 503 if the database is unreachable.
    """
    checks: dict[str, str] = {}

    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        checks["database"] = "unavailable"

    settings = get_settings()
    checks["n8n"] = "configured" if settings.N8N_URL and settings.N8N_WEBHOOK_API_KEY else "not configured"

    healthy = checks["database"] == "ok"
    body = {
        "status": "healthy" if healthy else "unhealthy",
        "checks": checks,
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "started_at": _start_datetime,
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)
