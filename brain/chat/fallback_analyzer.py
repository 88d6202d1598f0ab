from __future__ import annotations

import re
from collections.abc import Sequence

from brain.chat.safety_gate import is_true_salutation
from brain.models import AnalysisResult, AnswerFormat, Intent, KeyDocument, SearchConfig

# -----------------------------------------------------------------------------
# Keyword banks (compiled once). French first, with the common English forms.
# -----------------------------------------------------------------------------

COMPARISON_PATTERNS = re.compile(
    r"incohéren|écart|différen|differen|compar|conforme|conformité|cohéren|"
    r"entre\s.+\set\s|versus|\bvs\b|par\s+rapport",
    re.IGNORECASE,
)

SYNTHESIS_PATTERNS = re.compile(
    r"résume|résumé|synthèse|synthétise|explique|présente|décris|parle-moi|"
    r"summari[sz]e|summary|explain|describe|overview",
    re.IGNORECASE,
)

CITATION_PATTERNS = re.compile(
    r"\bcite|citation|extrait|texte\s+exact|mot\s+pour\s+mot|\bquote|verbatim",
    re.IGNORECASE,
)

_TOKEN_SPLIT = re.compile(r"[\s,;:!?.()\[\]\"«»]+")

STOPWORDS = frozenset(
    {
        "dans",
        "pour",
        "avec",
        "cette",
        "quel",
        "quelle",
        "quelles",
        "quels",
        "comment",
        "pourquoi",
        "about",
        "which",
        "where",
        "there",
    }
)

MAX_KEY_CONCEPTS = 5
_MIN_CONCEPT_LEN = 5

# intent -> (scope, max_files, min_similarity)
SEARCH_PRESETS: dict[Intent, tuple[str, int, float]] = {
    Intent.factual: ("narrow", 2, 0.5),
    Intent.synthesis: ("broad", 5, 0.35),
    Intent.comparison: ("broad", 5, 0.35),
    Intent.citation: ("narrow", 1, 0.6),
    Intent.conversational: ("narrow", 0, 0.5),
}

ANSWER_FORMATS: dict[Intent, AnswerFormat] = {
    Intent.comparison: "table",
    Intent.citation: "quote",
}


def preset_for(intent: Intent, boost_documents: Sequence[str] = ()) -> tuple[SearchConfig, AnswerFormat]:
    """Search config and answer format preset for an intent."""
    scope, max_files, min_similarity = SEARCH_PRESETS[intent]
    return (
        SearchConfig(
            scope=scope,  # type: ignore[arg-type]
            max_files=max_files,
            min_similarity=min_similarity,
            boost_documents=list(boost_documents),
        ),
        ANSWER_FORMATS.get(intent, "paragraph"),
    )


def detect_intent_by_keywords(query: str) -> Intent:
    if is_true_salutation(query):
        return Intent.conversational
    if COMPARISON_PATTERNS.search(query):
        return Intent.comparison
    if SYNTHESIS_PATTERNS.search(query):
        return Intent.synthesis
    if CITATION_PATTERNS.search(query):
        return Intent.citation
    return Intent.factual


def detect_documents(query: str, key_documents: Sequence[KeyDocument]) -> list[str]:
    """Labels of key documents named in the query (slug or label, case-insensitive)."""
    q = query.lower()
    found: list[str] = []
    for doc in key_documents:
        if (doc.slug and doc.slug.lower() in q) or (doc.label and doc.label.lower() in q):
            if doc.label not in found:
                found.append(doc.label)
    return found


def extract_key_concepts(query: str) -> list[str]:
    """Up to five longest non-stopword tokens; ties keep query order."""
    seen: set[str] = set()
    tokens: list[str] = []
    for tok in _TOKEN_SPLIT.split(query.lower()):
        if len(tok) < _MIN_CONCEPT_LEN or tok in STOPWORDS or tok in seen:
            continue
        seen.add(tok)
        tokens.append(tok)
    # sorted() is stable, so equal lengths stay in query order.
    return sorted(tokens, key=len, reverse=True)[:MAX_KEY_CONCEPTS]


def build_fallback_analysis(query: str, key_documents: Sequence[KeyDocument] = ()) -> AnalysisResult:
    """Deterministic keyword analysis used when the LLM path is unavailable."""
    intent = detect_intent_by_keywords(query)
    documents = detect_documents(query, key_documents)
    search_config, answer_format = preset_for(intent, documents)
    return AnalysisResult(
        intent=intent,
        requires_search=intent != Intent.conversational,
        rewritten_query=query,
        detected_documents=documents,
        search_config=search_config,
        answer_format=answer_format,
        key_concepts=extract_key_concepts(query),
        reasoning=f"Keyword fallback: {intent.value}",
        source="fallback",
    )


def build_minimal_analysis(query: str, intent: Intent) -> AnalysisResult:
    """Analysis used when keyword extraction is disabled: the configured intent and its preset."""
    search_config, answer_format = preset_for(intent)
    return AnalysisResult(
        intent=intent,
        requires_search=intent != Intent.conversational,
        rewritten_query=query,
        search_config=search_config,
        answer_format=answer_format,
        reasoning=f"Parse-error fallback: {intent.value}",
        source="fallback",
    )
