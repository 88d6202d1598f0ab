"""Pydantic models for the Brain query-orchestration engine.

Every type that crosses a component boundary lives here:
- BrainConfig: per-request behavior parameters (merged over defaults)
- AgentContext: conversation context loaded once per request (frozen)
- AnalysisResult: the routing decision produced by an analyzer
- BrainRequest: the client-facing request payload

Other modules re-export from this one (see `brain.models`).
"""
from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# =============================================================================
# ENUMS
# =============================================================================


class Intent(str, Enum):
    """Classified purpose of a query."""

    synthesis = "synthesis"
    factual = "factual"
    comparison = "comparison"
    citation = "citation"
    conversational = "conversational"


class Route(str, Enum):
    """Outcome of the router for one request."""

    conversational = "conversational"
    delegated = "delegated"


Scope = Literal["narrow", "broad"]
AnswerFormat = Literal["paragraph", "list", "table", "quote"]
GenerationMode = Literal["chunks", "gemini", "auto"]
AnalysisSource = Literal["llm", "fallback"]
ConfigSource = Literal["org", "app", "default"]


# =============================================================================
# BRAIN CONFIG - behavior parameters, one row per (agent_type, app, org?)
# =============================================================================


class ContextWindowConfig(BaseModel):
    """How much conversation context is gathered per request."""

    messages_count: int = Field(default=4, ge=0, le=100, description="Number of recent messages to load")
    timeout_minutes: int = Field(
        default=30,
        ge=0,
        description="Idle minutes after which a conversation is no longer reused",
    )
    include_key_documents: bool = Field(
        default=True,
        # Console rows store this toggle as `include_documents_cles`.
        validation_alias=AliasChoices("include_key_documents", "include_documents_cles"),
        description="List the org's key documents in the analysis prompt",
    )


class AnalysisToggles(BaseModel):
    enable_query_rewriting: bool = Field(default=True, description="Keep the LLM's context-enriched query")
    enable_intent_detection: bool = Field(default=True, description="Keep the LLM's intent (else factual)")
    enable_document_detection: bool = Field(default=True, description="Keep the LLM's detected documents")
    enable_search_config: bool = Field(
        default=True,
        description="Keep the LLM's search tuning (else the intent preset)",
    )


class RoutingConfig(BaseModel):
    skip_search_for_conversational: bool = Field(
        default=True,
        description="Answer verified salutations without calling the downstream agent",
    )
    default_agent: str = Field(default="librarian", description="Downstream agent used when no mapping matches")
    agents: dict[str, list[Intent]] = Field(
        default_factory=dict,
        description="Agent name -> intents it serves (first match wins)",
    )


class FallbackConfig(BaseModel):
    on_parse_error: Intent = Field(
        default=Intent.factual,
        description="Intent used when keyword extraction is disabled and the LLM path fails",
    )
    use_keywords_extraction: bool = Field(
        default=True,
        description="Use the keyword analyzer when the LLM path fails",
    )


class StreamEventsConfig(BaseModel):
    send_immediate_ack: bool = Field(default=True, description="Emit step:received as soon as the stream opens")
    send_analysis_step: bool = Field(default=True, description="Emit step:analyzing before analysis starts")


class BrainConfig(BaseModel):
    """Behavior parameters for one request."""

    model: str = Field(default="gpt-4o-mini", description="Chat model used for analysis")
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, ge=1, le=32768)
    system_prompt: str | None = Field(
        default=None,
        description="Analysis instruction override (None = compiled-in instruction)",
    )
    context: ContextWindowConfig = Field(default_factory=ContextWindowConfig)
    analysis: AnalysisToggles = Field(default_factory=AnalysisToggles)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    sse: StreamEventsConfig = Field(default_factory=StreamEventsConfig)
    config_source: ConfigSource = Field(default="default", description="Which row the config came from")


# =============================================================================
# AGENT CONTEXT - loaded once per request, never mutated
# =============================================================================


class KeyDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    slug: str
    label: str


class RecentMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str
    content: str
    created_at: str | None = None
    sources: list[Any] | None = None


class AgentContext(BaseModel):
    """Conversation context resolved for a single request."""

    model_config = ConfigDict(frozen=True)

    conversation_id: str
    effective_org_id: str | None = None
    effective_app_id: str
    system_prompt: str | None = None
    generation_system_prompt: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    config_source: str = "fallback"
    project_identity: dict[str, Any] | None = None
    conversation_summary: str | None = None
    conversation_first_message: str | None = None
    recent_messages: list[RecentMessage] = Field(default_factory=list)
    message_count: int = 0
    previous_source_file_ids: list[str] = Field(default_factory=list)
    key_documents: list[KeyDocument] = Field(default_factory=list)


# =============================================================================
# ANALYSIS RESULT - produced once, consumed once
# =============================================================================


class SearchConfig(BaseModel):
    """Retrieval tuning passed to the downstream agent."""

    scope: Scope = "narrow"
    max_files: int = Field(default=3, ge=0)
    min_similarity: float = Field(default=0.4, ge=0.0, le=1.0)
    boost_documents: list[str] = Field(default_factory=list)
    file_filter: list[str] | None = None


class AnalysisResult(BaseModel):
    intent: Intent = Intent.factual
    requires_search: bool = True
    rewritten_query: str
    detected_documents: list[str] = Field(default_factory=list)
    search_config: SearchConfig = Field(default_factory=SearchConfig)
    answer_format: AnswerFormat = "paragraph"
    key_concepts: list[str] = Field(default_factory=list)
    reasoning: str = ""
    source: AnalysisSource = Field(default="llm", exclude=True)


# =============================================================================
# API MODELS
# =============================================================================


class BrainRequest(BaseModel):
    """Request payload for POST /api/brain.

    `query` and `user_id` are optional at the schema level so that missing
    values are rejected with a 400 by the pipeline rather than a 422.
    """

    query: str | None = Field(default=None, description="User question")
    user_id: str | None = Field(default=None, description="Caller user id")
    org_id: str | None = None
    project_id: str | None = None
    app_id: str | None = None
    conversation_id: str | None = Field(default=None, description="Continue an existing conversation")
    stream: bool = Field(default=True, description="Stream SSE frames instead of one JSON body")
    generation_mode: GenerationMode = "auto"
    include_app_layer: bool | None = None
    include_org_layer: bool | None = None
    include_project_layer: bool | None = None
    include_user_layer: bool | None = None
    filter_source_types: list[str] | None = None
    filter_concepts: list[str] | None = None


class HealthServiceStatus(BaseModel):
    """Per-service status entry for /api/health."""

    status: str = Field(description="Service health status label (e.g., up/unknown/down).")
    error: str | None = Field(default=None, description="Optional error message if unhealthy/unreachable.")


class HealthStatus(BaseModel):
    """System health status payload for /api/health."""

    ok: bool = Field(default=True, description="Overall health boolean.")
    status: Literal["healthy", "unhealthy", "unknown"] = Field(default="healthy", description="Overall status label.")
    ts: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Timestamp for this health snapshot (UTC).",
    )
    services: dict[str, HealthServiceStatus] = Field(
        default_factory=dict,
        description="Map of service name -> status entry.",
    )
