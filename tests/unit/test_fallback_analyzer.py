"""Unit tests for the keyword fallback analyzer."""

import pytest

from brain.chat.fallback_analyzer import (
    build_fallback_analysis,
    build_minimal_analysis,
    detect_documents,
    detect_intent_by_keywords,
    extract_key_concepts,
)
from brain.models import Intent, KeyDocument

_DOCS = [KeyDocument(slug="ccap", label="CCAP"), KeyDocument(slug="cctp-lot-2", label="CCTP Lot 2")]


@pytest.mark.parametrize(
    ("query", "intent"),
    [
        ("Bonjour !", Intent.conversational),
        ("incohérences entre le CCAG et le CCAP", Intent.comparison),
        ("Le planning est-il conforme au CCAP ?", Intent.comparison),
        ("CCTP vs CCAP", Intent.comparison),
        ("Résume le CCTP", Intent.synthesis),
        ("Explique les pénalités", Intent.synthesis),
        ("Cite l'article 4.2", Intent.citation),
        ("Donne-moi le texte exact de la clause", Intent.citation),
        ("Quel est le montant des pénalités ?", Intent.factual),
    ],
)
def test_intent_by_keywords(query: str, intent: Intent) -> None:
    assert detect_intent_by_keywords(query) == intent


def test_comparison_takes_precedence_over_synthesis() -> None:
    assert detect_intent_by_keywords("Explique la différence entre le CCAP et le CCTP") == Intent.comparison


def test_comparison_scenario_uses_broad_preset_and_table() -> None:
    analysis = build_fallback_analysis("incohérences entre le CCAG et le CCAP")

    assert analysis.intent == Intent.comparison
    assert analysis.requires_search is True
    assert analysis.search_config.scope == "broad"
    assert analysis.search_config.max_files == 5
    assert analysis.search_config.min_similarity == pytest.approx(0.35)
    assert analysis.answer_format == "table"
    assert analysis.rewritten_query == "incohérences entre le CCAG et le CCAP"
    assert analysis.source == "fallback"


def test_salutation_fallback_skips_search() -> None:
    analysis = build_fallback_analysis("merci")

    assert analysis.intent == Intent.conversational
    assert analysis.requires_search is False
    assert analysis.search_config.max_files == 0


def test_citation_preset() -> None:
    analysis = build_fallback_analysis("Cite l'article 12")

    assert analysis.search_config.scope == "narrow"
    assert analysis.search_config.max_files == 1
    assert analysis.search_config.min_similarity == pytest.approx(0.6)
    assert analysis.answer_format == "quote"


def test_detect_documents_by_slug_or_label() -> None:
    assert detect_documents("que dit le ccap ?", _DOCS) == ["CCAP"]
    assert detect_documents("Dans le CCTP LOT 2, quelle est la norme ?", _DOCS) == ["CCTP Lot 2"]
    assert detect_documents("Quel est le délai ?", _DOCS) == []


def test_detected_documents_are_boosted() -> None:
    analysis = build_fallback_analysis("Résume le CCAP", _DOCS)

    assert analysis.detected_documents == ["CCAP"]
    assert analysis.search_config.boost_documents == ["CCAP"]


def test_key_concepts_longest_first_with_stable_ties() -> None:
    concepts = extract_key_concepts("Quelle est la durée de garantie pour les menuiseries extérieures ?")

    assert concepts == ["menuiseries", "extérieures", "garantie", "durée"]


def test_key_concepts_skip_stopwords_and_cap_at_five() -> None:
    concepts = extract_key_concepts(
        "comment pourquoi alpha1 bravo2 charlie3 delta44 echo555 foxtrot6 golf777"
    )

    assert "comment" not in concepts
    assert "pourquoi" not in concepts
    assert len(concepts) == 5
    assert concepts == ["charlie3", "foxtrot6", "delta44", "echo555", "golf777"]


def test_minimal_analysis_uses_configured_intent() -> None:
    analysis = build_minimal_analysis("n'importe quoi", Intent.synthesis)

    assert analysis.intent == Intent.synthesis
    assert analysis.search_config.scope == "broad"
    assert analysis.key_concepts == []
    assert analysis.detected_documents == []
