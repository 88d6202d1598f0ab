from __future__ import annotations

import logging
from typing import Any

from brain.chat.safety_gate import normalize_query
from brain.models import AgentContext, AnalysisResult, BrainConfig, BrainRequest, Route

logger = logging.getLogger(__name__)

# Canned replies for verified salutations, keyed by normalized salutation.
CONVERSATIONAL_REPLIES: dict[str, str] = {
    "bonjour": "Bonjour ! Comment puis-je vous aider avec vos documents ?",
    "bonsoir": "Bonsoir ! Comment puis-je vous aider avec vos documents ?",
    "salut": "Salut ! Je suis prêt à répondre à vos questions sur les documents du projet.",
    "coucou": "Salut ! Je suis prêt à répondre à vos questions sur les documents du projet.",
    "hello": "Hello! How can I help you with your project documents?",
    "hi": "Hello! How can I help you with your project documents?",
    "hey": "Hello! How can I help you with your project documents?",
    "merci": "Je vous en prie ! N'hésitez pas si vous avez d'autres questions.",
    "merci beaucoup": "Je vous en prie ! N'hésitez pas si vous avez d'autres questions.",
    "merci bien": "Je vous en prie ! N'hésitez pas si vous avez d'autres questions.",
    "thanks": "You're welcome! Feel free to ask if you have more questions.",
    "thank you": "You're welcome! Feel free to ask if you have more questions.",
    "ok": "Parfait ! N'hésitez pas si vous avez d'autres questions.",
    "okay": "Parfait ! N'hésitez pas si vous avez d'autres questions.",
    "d'accord": "Parfait ! N'hésitez pas si vous avez d'autres questions.",
    "daccord": "Parfait ! N'hésitez pas si vous avez d'autres questions.",
    "compris": "Parfait ! N'hésitez pas si vous avez d'autres questions.",
    "parfait": "Super ! Je reste disponible si besoin.",
    "super": "Super ! Je reste disponible si besoin.",
}

GENERIC_REPLY = "Je suis là pour répondre à vos questions sur les documents du projet."

_PREFIX_SLACK = 5


def choose_route(analysis: AnalysisResult, config: BrainConfig) -> Route:
    if not analysis.requires_search and config.routing.skip_search_for_conversational:
        return Route.conversational
    return Route.delegated


def conversational_reply(query: str) -> str:
    """Canned reply for a salutation, exact or short-prefix match, else the generic one."""
    q = normalize_query(query)
    reply = CONVERSATIONAL_REPLIES.get(q)
    if reply:
        return reply
    # Longest key first so "merci beaucoup" wins over "merci".
    for key in sorted(CONVERSATIONAL_REPLIES, key=len, reverse=True):
        if q.startswith(key) and len(q) <= len(key) + _PREFIX_SLACK:
            return CONVERSATIONAL_REPLIES[key]
    return GENERIC_REPLY


def conversational_body(query: str, conversation_id: str) -> dict[str, Any]:
    return {"response": conversational_reply(query), "conversation_id": conversation_id, "sources": []}


def select_agent(analysis: AnalysisResult, config: BrainConfig) -> str:
    """First configured agent serving the intent, else the default agent."""
    for agent, intents in config.routing.agents.items():
        if analysis.intent in intents:
            logger.debug("Intent %s mapped to agent %s", analysis.intent.value, agent)
            return agent
    return config.routing.default_agent


def resolve_agent_url(agent: str, agent_urls: dict[str, str], default_url: str) -> str:
    return agent_urls.get(agent) or default_url


def preloaded_context_block(context: AgentContext) -> dict[str, Any]:
    """The context as the downstream agent reads it (its own field names)."""
    data = context.model_dump(mode="json")
    data["gemini_system_prompt"] = data.pop("generation_system_prompt")
    data["documents_cles"] = data.pop("key_documents")
    return data


def build_delegation_payload(
    request: BrainRequest,
    context: AgentContext,
    analysis: AnalysisResult,
) -> dict[str, Any]:
    """Payload for the downstream agent: the query, the decision and the preloaded context.

    The downstream agent reuses `preloaded_context` instead of querying the
    context store a second time.
    """
    payload: dict[str, Any] = {
        "query": request.query,
        **analysis.model_dump(mode="json"),
        "user_id": request.user_id,
        "org_id": request.org_id,
        "project_id": request.project_id,
        "app_id": request.app_id,
        "conversation_id": context.conversation_id,
        "generation_mode": request.generation_mode,
        "stream": request.stream,
        "include_app_layer": request.include_app_layer,
        "include_org_layer": request.include_org_layer,
        "include_project_layer": request.include_project_layer,
        "include_user_layer": request.include_user_layer,
        "filter_source_types": request.filter_source_types,
        "filter_concepts": request.filter_concepts,
        "preloaded_context": preloaded_context_block(context),
    }
    return payload

