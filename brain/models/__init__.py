"""Brain models - all types exported from brain_model.py.

Import domain models and config types from this module.
"""
from brain.models.brain_model import (
    # Config types
    AnalysisToggles,
    BrainConfig,
    ContextWindowConfig,
    FallbackConfig,
    RoutingConfig,
    StreamEventsConfig,
    # Context types
    AgentContext,
    KeyDocument,
    RecentMessage,
    # Analysis types
    AnalysisResult,
    AnswerFormat,
    Intent,
    Route,
    Scope,
    SearchConfig,
    # API models
    BrainRequest,
    GenerationMode,
    HealthServiceStatus,
    HealthStatus,
)

__all__ = [
    "AnalysisToggles",
    "BrainConfig",
    "ContextWindowConfig",
    "FallbackConfig",
    "RoutingConfig",
    "StreamEventsConfig",
    "AgentContext",
    "KeyDocument",
    "RecentMessage",
    "AnalysisResult",
    "AnswerFormat",
    "Intent",
    "Route",
    "Scope",
    "SearchConfig",
    "BrainRequest",
    "GenerationMode",
    "HealthServiceStatus",
    "HealthStatus",
]
