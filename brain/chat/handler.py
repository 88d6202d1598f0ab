"""Request pipeline and response coordination.

One request runs config -> context -> analysis -> safety gate -> route, then
answers in one of three ways: a canned conversational reply, a buffered JSON
body from the downstream agent, or the downstream agent's event stream
proxied byte for byte. In streaming mode with acknowledgements enabled the
response opens first and the pipeline runs as the stream's only producer;
from then on failures can only be reported as an `error` frame.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any, assert_never

from brain.chat.analyzer import QueryAnalyzer
from brain.chat.downstream import DownstreamClient, DownstreamStream
from brain.chat.llm_client import ChatCompletionsClient
from brain.chat.router import (
    build_delegation_payload,
    choose_route,
    conversational_body,
    resolve_agent_url,
    select_agent,
)
from brain.chat.safety_gate import apply_safety_gate
from brain.config import BrainSettings
from brain.db.postgres import PostgresClient
from brain.errors import BrainError, DownstreamError, QueryValidationError, StreamWriteError
from brain.models import AgentContext, AnalysisResult, BrainConfig, BrainRequest, Route
from brain.observability.metrics import (
    BRAIN_ROUTES_TOTAL,
    BRAIN_SAFETY_OVERRIDES_TOTAL,
    BRAIN_STAGE_LATENCY_SECONDS,
    BRAIN_STREAM_ERRORS_TOTAL,
    timed,
)
from brain.services.config_resolver import ConfigResolver
from brain.services.context_loader import ContextLoader

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class Stage(str, Enum):
    received = "RECEIVED"
    config_loaded = "CONFIG_LOADED"
    context_loaded = "CONTEXT_LOADED"
    analyzed = "ANALYZED"
    safety_gated = "SAFETY_GATED"
    conversational_replied = "CONVERSATIONAL_REPLIED"
    delegated_streaming = "DELEGATED_STREAMING"
    delegated_buffered = "DELEGATED_BUFFERED"
    done = "DONE"
    error = "ERROR"


def sse_event(event: str, data: dict[str, Any]) -> bytes:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n".encode()


def error_frame(exc: BaseException) -> bytes:
    payload: dict[str, Any] = {"message": str(exc) or "Erreur interne"}
    if isinstance(exc, DownstreamError):
        payload["status"] = exc.status_code
    return sse_event("error", payload)


@dataclass(frozen=True)
class PreparedTurn:
    """Everything decided before the response body is produced."""

    query: str
    context: AgentContext
    analysis: AnalysisResult
    route: Route
    agent_url: str | None = None
    payload: dict[str, Any] | None = None


class BrainPipeline:
    def __init__(
        self,
        *,
        settings: BrainSettings,
        config_resolver: ConfigResolver,
        context_loader: ContextLoader,
        analyzer: QueryAnalyzer,
        downstream: DownstreamClient,
    ):
        self.settings = settings
        self._config_resolver = config_resolver
        self._context_loader = context_loader
        self._analyzer = analyzer
        self._downstream = downstream

    # ---------------------------------------------------------------------
    # Stages
    # ---------------------------------------------------------------------

    @staticmethod
    def validate(request: BrainRequest) -> tuple[str, str]:
        query = (request.query or "").strip()
        if not query:
            raise QueryValidationError("Query is required")
        user_id = (request.user_id or "").strip()
        if not user_id:
            raise QueryValidationError("user_id is required")
        return query, user_id

    async def load_config(self, request: BrainRequest) -> BrainConfig:
        with timed(BRAIN_STAGE_LATENCY_SECONDS.labels(stage="config")):
            config = await self._config_resolver.resolve(request.app_id, request.org_id)
        logger.debug("Stage %s (source=%s)", Stage.config_loaded.value, config.config_source)
        return config

    async def prepare(self, request: BrainRequest, config: BrainConfig) -> PreparedTurn:
        """Load context, analyze, gate and route one validated request."""
        query, user_id = self.validate(request)
        t0 = time.perf_counter()

        with timed(BRAIN_STAGE_LATENCY_SECONDS.labels(stage="context")):
            context = await self._context_loader.load(
                user_id=user_id,
                org_id=request.org_id,
                project_id=request.project_id,
                app_id=request.app_id,
                conversation_id=request.conversation_id,
                window=config.context,
            )
        logger.debug("Stage %s", Stage.context_loaded.value)

        with timed(BRAIN_STAGE_LATENCY_SECONDS.labels(stage="analysis")):
            raw_analysis = await self._analyzer.analyze(query, context, config)
        logger.debug("Stage %s (source=%s)", Stage.analyzed.value, raw_analysis.source)

        analysis, overridden = apply_safety_gate(query, raw_analysis)
        if overridden:
            BRAIN_SAFETY_OVERRIDES_TOTAL.inc()
        logger.info(
            "Analysis done in %.0fms: source=%s intent=%s requires_search=%s (raw=%s)",
            (time.perf_counter() - t0) * 1000,
            analysis.source,
            analysis.intent.value,
            analysis.requires_search,
            raw_analysis.requires_search,
        )

        route = choose_route(analysis, config)
        BRAIN_ROUTES_TOTAL.labels(route=route.value).inc()

        if route is Route.conversational:
            logger.info("Route: conversational (verified salutation)")
            return PreparedTurn(query=query, context=context, analysis=analysis, route=route)
        if route is Route.delegated:
            agent = select_agent(analysis, config)
            url = resolve_agent_url(agent, self.settings.agent_urls, self.settings.downstream_url)
            logger.info("Route: delegated to %s", agent)
            return PreparedTurn(
                query=query,
                context=context,
                analysis=analysis,
                route=route,
                agent_url=url,
                payload=build_delegation_payload(request, context, analysis),
            )
        assert_never(route)

    async def _connect(self, turn: PreparedTurn, authorization: str | None) -> DownstreamStream:
        assert turn.agent_url is not None and turn.payload is not None
        with timed(BRAIN_STAGE_LATENCY_SECONDS.labels(stage="downstream_connect")):
            return await self._downstream.open_stream(turn.agent_url, turn.payload, authorization)

    # ---------------------------------------------------------------------
    # Response modes
    # ---------------------------------------------------------------------

    async def respond_buffered(self, request: BrainRequest, authorization: str | None) -> dict[str, Any]:
        """Run the whole pipeline and return a single JSON body."""
        self.validate(request)
        config = await self.load_config(request)
        turn = await self.prepare(request, config)

        if turn.route is Route.conversational:
            return conversational_body(turn.query, turn.context.conversation_id)

        assert turn.agent_url is not None and turn.payload is not None
        data = await self._downstream.fetch_json(turn.agent_url, turn.payload, authorization)
        data["analysis"] = turn.analysis.model_dump(mode="json")
        logger.debug("Stage %s", Stage.delegated_buffered.value)
        return data

    async def open_stream(self, request: BrainRequest, authorization: str | None) -> AsyncIterator[bytes]:
        """Return the body iterator for a streaming response.

        Errors raised here happen before the response opens. With both
        acknowledgements disabled the turn and the downstream connection are
        prepared here, so their failures keep an HTTP status.
        """
        self.validate(request)
        config = await self.load_config(request)
        if config.sse.send_immediate_ack or config.sse.send_analysis_step:
            return self._event_stream(request, config, authorization)

        turn = await self.prepare(request, config)
        upstream = await self._connect(turn, authorization) if turn.route is Route.delegated else None
        return self._event_stream(request, config, authorization, turn=turn, upstream=upstream)

    async def _event_stream(
        self,
        request: BrainRequest,
        config: BrainConfig,
        authorization: str | None,
        *,
        turn: PreparedTurn | None = None,
        upstream: DownstreamStream | None = None,
    ) -> AsyncIterator[bytes]:
        try:
            if turn is None:
                if config.sse.send_immediate_ack:
                    yield sse_event(
                        "step",
                        {"step": "received", "message": "Question reçue", "conversation_id": request.conversation_id},
                    )
                if config.sse.send_analysis_step:
                    yield sse_event("step", {"step": "analyzing", "message": "Analyse de la question..."})
                turn = await self.prepare(request, config)

            if turn.route is Route.conversational:
                for frame in self._conversational_frames(turn):
                    yield frame
                return

            if upstream is None:
                upstream = await self._connect(turn, authorization)
            logger.debug("Stage %s", Stage.delegated_streaming.value)
            async for chunk in upstream.iter_bytes():
                yield chunk
            logger.debug("Stage %s", Stage.done.value)
        except Exception as e:
            err = e if isinstance(e, BrainError) else StreamWriteError(str(e) or type(e).__name__)
            BRAIN_STREAM_ERRORS_TOTAL.inc()
            logger.error(
                "Stage %s after stream opened: %s",
                Stage.error.value,
                err.message,
                exc_info=not isinstance(e, BrainError),
            )
            yield error_frame(err)
        finally:
            if upstream is not None:
                await upstream.aclose()

    @staticmethod
    def _conversational_frames(turn: PreparedTurn) -> Iterator[bytes]:
        body = conversational_body(turn.query, turn.context.conversation_id)
        yield sse_event("step", {"step": "done", "message": "Mode conversationnel"})
        yield sse_event("message", {"content": body["response"], "conversation_id": body["conversation_id"]})
        yield sse_event("done", {"conversation_id": body["conversation_id"]})
        logger.debug("Stage %s", Stage.conversational_replied.value)


def build_default_pipeline(settings: BrainSettings) -> BrainPipeline:
    """Wire the production collaborators from settings."""
    store = PostgresClient(settings.postgres_dsn)
    return BrainPipeline(
        settings=settings,
        config_resolver=ConfigResolver(store, agent_type=settings.agent_type, default_app_id=settings.default_app_id),
        context_loader=ContextLoader(
            store,
            agent_type=settings.context_agent_type,
            default_app_id=settings.default_app_id,
        ),
        analyzer=QueryAnalyzer(
            ChatCompletionsClient(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                timeout_s=settings.llm_timeout_s,
            )
        ),
        downstream=DownstreamClient(service_key=settings.service_key, timeout_s=settings.downstream_timeout_s),
    )
