"""Brain API endpoint."""
import logging
from typing import Any

from fastapi import APIRouter, Header, HTTPException
from starlette.responses import StreamingResponse

from brain.chat.handler import SSE_HEADERS, BrainPipeline, build_default_pipeline
from brain.config import get_settings
from brain.errors import BrainError, ContextError, DownstreamError, QueryValidationError
from brain.models import BrainRequest
from brain.observability.metrics import BRAIN_REQUEST_ERRORS_TOTAL, BRAIN_REQUESTS_TOTAL

logger = logging.getLogger(__name__)

router = APIRouter(tags=["brain"])


# Dependency holder (can be overridden for testing)
_pipeline: BrainPipeline | None = None


def get_pipeline() -> BrainPipeline:
    """Get the request pipeline. Override with set_pipeline() for testing."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_default_pipeline(get_settings())
    return _pipeline


def set_pipeline(pipeline: BrainPipeline | None) -> None:
    """Set the pipeline for dependency injection (primarily for testing)."""
    global _pipeline
    _pipeline = pipeline


def _error_kind(e: BrainError) -> str:
    if isinstance(e, QueryValidationError):
        return "validation"
    if isinstance(e, ContextError):
        return "context"
    if isinstance(e, DownstreamError):
        return "downstream"
    return "internal"


@router.post("/brain")
async def brain(
    request: BrainRequest,
    authorization: str | None = Header(default=None),
) -> Any:
    """Analyze a message, then answer it directly or through the downstream agent.

    With `stream=true` (default) the response is a Server-Sent Events stream
    of `step`, `message`, `done` and `error` frames, or the downstream
    agent's own frames proxied verbatim.
    """
    pipeline = get_pipeline()
    mode = "stream" if request.stream else "buffered"
    BRAIN_REQUESTS_TOTAL.labels(mode=mode).inc()
    logger.info("Brain request (%s): %r", mode, (request.query or "")[:60])

    try:
        if not request.stream:
            return await pipeline.respond_buffered(request, authorization)
        body = await pipeline.open_stream(request, authorization)
    except BrainError as e:
        BRAIN_REQUEST_ERRORS_TOTAL.labels(kind=_error_kind(e)).inc()
        if e.status_code >= 500:
            logger.error("Brain request failed (%d): %s", e.status_code, e.message)
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    except Exception as e:
        BRAIN_REQUEST_ERRORS_TOTAL.labels(kind="internal").inc()
        logger.exception("Brain request failed")
        raise HTTPException(status_code=500, detail=str(e) or "Internal server error") from e

    return StreamingResponse(body, media_type="text/event-stream", headers=SSE_HEADERS)
