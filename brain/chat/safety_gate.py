from __future__ import annotations

import logging
import re

from brain.models import AnalysisResult, Intent

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Salutation allow-list. Anything not on this list goes to retrieval: a false
# "skip" costs a wrong answer, a false "search" only costs latency.
# -----------------------------------------------------------------------------

SALUTATIONS: tuple[str, ...] = (
    "bonjour",
    "bonsoir",
    "salut",
    "hello",
    "hi",
    "hey",
    "coucou",
    "merci",
    "thanks",
    "thank you",
    "merci beaucoup",
    "merci bien",
    "au revoir",
    "bye",
    "goodbye",
    "à bientôt",
    "a bientot",
    "ok",
    "okay",
    "d'accord",
    "daccord",
    "compris",
    "parfait",
    "super",
)

_SALUTATION_SET = frozenset(SALUTATIONS)

# Longest remainder allowed after a salutation prefix ("bonjour !!", "merci :)" is rejected).
_PREFIX_SLACK = 5

_TRAILING_PUNCT = re.compile(r"[\s?!.,;:]+$")
_PUNCT_ONLY = re.compile(r"^[?!.,\s]*$")


def normalize_query(query: str) -> str:
    """Lowercase, trim, and drop trailing punctuation."""
    return _TRAILING_PUNCT.sub("", (query or "").strip().lower())


def is_true_salutation(query: str) -> bool:
    """True only for a bare greeting/thanks/acknowledgement.

    Exact match after trimming trailing punctuation, or a listed salutation
    followed by at most a few punctuation/whitespace characters.
    """
    q = normalize_query(query)
    if not q:
        return False
    if q in _SALUTATION_SET:
        return True

    raw = (query or "").strip().lower()
    for s in SALUTATIONS:
        if raw.startswith(s) and len(raw) <= len(s) + _PREFIX_SLACK and _PUNCT_ONLY.match(raw[len(s):]):
            return True
    return False


def safe_requires_search(query: str, verdict: object) -> bool:
    """Gate an analyzer verdict through the salutation re-check.

    Only a literal False counts as "skip", and it is honored only for true
    salutations. Everything else searches.
    """
    if verdict is not False:
        return True
    if is_true_salutation(query):
        return False
    logger.warning("Analyzer wanted to skip search for a non-salutation; forcing search: %r", query[:80])
    return True


def apply_safety_gate(query: str, analysis: AnalysisResult) -> tuple[AnalysisResult, bool]:
    """Gate a full analysis.

    Returns the (possibly updated) analysis and whether the verdict was
    overridden. An honored skip is always conversational; a forced search
    never stays conversational.
    """
    # Imported here: the fallback analyzer imports this module.
    from brain.chat.fallback_analyzer import preset_for

    requires_search = safe_requires_search(query, analysis.requires_search)
    overridden = requires_search != analysis.requires_search

    if not requires_search:
        if analysis.intent == Intent.conversational:
            return analysis, overridden
        return analysis.model_copy(update={"intent": Intent.conversational}), overridden

    if analysis.intent == Intent.conversational:
        search_config, answer_format = preset_for(Intent.factual)
        logger.info("Conversational verdict needs search; remapping intent to factual")
        return (
            analysis.model_copy(
                update={
                    "intent": Intent.factual,
                    "requires_search": True,
                    "search_config": search_config,
                    "answer_format": answer_format,
                }
            ),
            True,
        )

    if overridden:
        return analysis.model_copy(update={"requires_search": True}), True
    return analysis, False
