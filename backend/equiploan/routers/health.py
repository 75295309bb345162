"""Health check endpoints for load balancers and monitoring."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from equiploan.config import settings
from equiploan.database import engine, utcnow

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Lightweight liveness check, no database round trip."""
    return {
        "status": "ok",
        "service": "EquipLoan",
        "timestamp": utcnow().isoformat(),
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check():
    """Returns 200 only when the database answers."""
    checks = {"service": "ok", "database": "unknown"}
    healthy = True

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {str(e)[:100]}"
        healthy = False

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "service": "EquipLoan",
            "checks": checks,
            "timestamp": utcnow().isoformat(),
        },
    )
