from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv


# Load repo-root .env early so env-backed secrets (API keys, DSN) are available
# when the service is started directly with uvicorn.
#
# IMPORTANT:
# - Never override already-set environment variables.
# - No error if .env is missing (CI/prod).
def _load_dotenv_file(dotenv_path: Path) -> bool:
    """Returns True if a file existed and was loaded, otherwise False."""
    if not dotenv_path.exists():
        return False
    return bool(load_dotenv(dotenv_path=dotenv_path, override=False))


_load_dotenv_file(Path(__file__).resolve().parents[1] / ".env")

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import Response

from brain.api.brain import router as brain_router
from brain.api.health import router as health_router
from brain.config import get_settings
from brain.db.postgres import PostgresClient
from brain.observability.metrics import BRAIN_REQUEST_LATENCY_SECONDS, render_latest

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await PostgresClient.close_shared_pools()


app = FastAPI(title="Brain", version="0.1.0", lifespan=lifespan)

# The chat UI is served from another origin; it only needs POST + SSE.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/metrics")
async def metrics() -> Response:
    body, content_type = render_latest()
    return Response(content=body, media_type=content_type)


@app.middleware("http")
async def metrics_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    # Only /api/brain is measured; streams are timed until the response opens.
    if request.url.path == "/api/brain":
        with BRAIN_REQUEST_LATENCY_SECONDS.time():
            return await call_next(request)
    return await call_next(request)


app.include_router(health_router, prefix="/api")
app.include_router(brain_router, prefix="/api")
