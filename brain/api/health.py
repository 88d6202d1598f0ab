from typing import Any

from fastapi import APIRouter
from starlette.responses import Response

from brain.config import get_settings
from brain.db.postgres import PostgresClient
from brain.models import HealthServiceStatus, HealthStatus
from brain.observability.metrics import render_latest

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    # Keep this endpoint fast and dependency-free: do not connect to Postgres here.
    return HealthStatus(
        ok=True,
        status="healthy",
        services={
            "api": HealthServiceStatus(status="up"),
            "postgres": HealthServiceStatus(status="unknown"),
        },
    )


@router.get("/ready")
async def readiness_check() -> dict[str, Any]:
    """Readiness probe: the context/config store must answer."""
    out: dict[str, Any] = {
        "ready": True,
        "dependencies": {
            "postgres": {"ok": False, "error": None},
        },
    }

    try:
        pg = PostgresClient(get_settings().postgres_dsn)
        out["dependencies"]["postgres"]["ok"] = await pg.ping()
        await pg.disconnect()
    except Exception as e:
        out["dependencies"]["postgres"]["error"] = str(e)

    if not out["dependencies"]["postgres"]["ok"]:
        out["ready"] = False
    return out


@router.get("/metrics")
async def prometheus_metrics() -> Response:
    # Alias for Prometheus scrape; prefer /metrics (no /api prefix).
    body, content_type = render_latest()
    return Response(content=body, media_type=content_type)
