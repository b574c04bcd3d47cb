"""Health check endpoints.

/health is a liveness check with no dependencies. /health/ready also
checks the database and reports whether the reconciliation scheduler is
running.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.rentsync.config import get_settings
from src.rentsync.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness: database reachable and credentials configured."""
    checks: dict = {"database": "ok"}
    try:
        engine = getattr(request.app.state, "engine", None) or get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    missing = get_settings().missing_credentials()
    if missing:
        checks["missing_credentials"] = missing

    scheduler = getattr(request.app.state, "scheduler", None)
    checks["reconciliation_scheduler"] = "running" if scheduler and scheduler.started else "stopped"

    ready = checks["database"] == "ok" and not missing
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "not_ready", "checks": checks},
    )
