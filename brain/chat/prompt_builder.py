from __future__ import annotations

from brain.models import AgentContext, BrainConfig

MAX_TURN_CHARS = 800

ANALYSIS_INSTRUCTION = """You are the query analyzer of a document assistant for construction projects.
For each user question, decide how the documents must be searched. You never answer the question.

Reply with ONE JSON object and nothing else:
{
  "intent": "synthesis" | "factual" | "comparison" | "citation" | "conversational",
  "requires_search": true | false,
  "rewritten_query": "the question rewritten as a standalone search query",
  "detected_documents": ["document labels named or implied by the question"],
  "search_config": {
    "scope": "narrow" | "broad",
    "max_files": 0-10,
    "min_similarity": 0.0-1.0,
    "boost_documents": ["document labels to favour"],
    "file_filter": null
  },
  "answer_format": "paragraph" | "list" | "table" | "quote",
  "key_concepts": ["up to 5 key terms"],
  "reasoning": "one short sentence"
}

Intent rules:
- synthesis: summarize, explain or present a document or topic.
- factual: a precise fact (date, amount, name, duration, obligation).
- comparison: differences, inconsistencies or conformity between documents.
- citation: the exact text of a clause or passage.
- conversational: greetings, thanks, acknowledgements with no question.

requires_search rules:
- false ONLY for a pure greeting, thanks or acknowledgement ("bonjour", "merci", "ok").
- true as soon as the message contains a question or any project subject,
  even when it starts with a greeting ("Bonjour, quelle est l'équipe ?").
- When in doubt, true.

Comparison markers: incohérence, écart, différence, comparer, conforme,
conformité, cohérence, "entre X et Y", versus, vs, par rapport.

search_config rules:
- factual: narrow, max_files 2, min_similarity 0.5
- synthesis and comparison: broad, max_files 5, min_similarity 0.35
- citation: narrow, max_files 1, min_similarity 0.6
- conversational: max_files 0

Rewrite the query with the conversation context: resolve pronouns and implicit
references ("et pour le lot 2 ?") into a self-contained search query, in the
user's language."""


def get_analysis_instruction(config: BrainConfig) -> str:
    """The configured override, else the compiled-in instruction."""
    override = (config.system_prompt or "").strip()
    return override or ANALYSIS_INSTRUCTION


def _format_identity(identity: dict) -> str:
    lines: list[str] = []
    for key, label in (
        ("market_type", "Type de marché"),
        ("project_type", "Type de projet"),
        ("description", "Description"),
    ):
        value = identity.get(key)
        if value:
            lines.append(f"- {label}: {value}")
    return "\n".join(lines)


def build_analysis_message(query: str, context: AgentContext, config: BrainConfig) -> str:
    """Build the single user message sent to the analysis model.

    Layers appear in a fixed order and each is omitted when empty:
    key documents, conversation summary, recent turns, project identity,
    then the question itself.
    """
    parts: list[str] = []

    if config.context.include_key_documents and context.key_documents:
        labels = ", ".join(doc.label for doc in context.key_documents)
        parts.append(f"DOCUMENTS CLÉS DISPONIBLES:\n{labels}")

    history: list[str] = []
    if context.conversation_summary:
        history.append(f"RÉSUMÉ DE LA CONVERSATION:\n{context.conversation_summary}")
    # Recent turns are shown in the reverse of the store's order.
    for msg in reversed(context.recent_messages):
        role = "USER" if msg.role == "user" else "ASSISTANT"
        history.append(f"{role}: {msg.content[:MAX_TURN_CHARS]}")
    if history:
        parts.append("HISTORIQUE CONVERSATION:\n" + "\n\n".join(history))

    identity = _format_identity(context.project_identity or {})
    if identity:
        parts.append(f"CONTEXTE PROJET:\n{identity}")

    parts.append(f"QUESTION UTILISATEUR:\n{query}")
    return "\n\n".join(parts)
