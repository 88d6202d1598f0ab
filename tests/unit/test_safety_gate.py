"""Unit tests for the retrieval safety gate."""

import pytest

from brain.chat.safety_gate import apply_safety_gate, is_true_salutation, safe_requires_search
from brain.models import AnalysisResult, Intent, SearchConfig


@pytest.mark.parametrize(
    "query",
    ["Bonjour", "bonjour !", "Merci beaucoup.", "  OK  ", "thank you!!", "À bientôt", "d'accord", "Salut ?"],
)
def test_bare_salutations_are_recognized(query: str) -> None:
    assert is_true_salutation(query) is True


@pytest.mark.parametrize(
    "query",
    [
        "",
        "Bonjour, quelle est l'équipe ?",
        "merci, et le planning ?",
        "ok pour le lot 2",
        "hier",
        "hello world",
        "Quel est le délai ?",
    ],
)
def test_questions_are_not_salutations(query: str) -> None:
    assert is_true_salutation(query) is False


def test_true_verdict_is_never_overridden() -> None:
    assert safe_requires_search("Bonjour", True) is True


def test_false_verdict_honored_only_for_salutations() -> None:
    assert safe_requires_search("Bonjour", False) is False
    assert safe_requires_search("Bonjour, quelle est l'équipe ?", False) is True


def test_only_literal_false_counts_as_skip() -> None:
    assert safe_requires_search("Bonjour", None) is True
    assert safe_requires_search("Bonjour", 0) is True
    assert safe_requires_search("Bonjour", "false") is True


def test_gate_marks_honored_skip_conversational() -> None:
    analysis = AnalysisResult(intent=Intent.factual, requires_search=False, rewritten_query="Merci")

    gated, overridden = apply_safety_gate("Merci", analysis)

    assert overridden is False
    assert gated.requires_search is False
    assert gated.intent == Intent.conversational


def test_gate_remaps_conversational_question_to_factual_preset() -> None:
    analysis = AnalysisResult(
        intent=Intent.conversational,
        requires_search=False,
        rewritten_query="quelle est l'équipe",
        search_config=SearchConfig(max_files=0),
    )

    gated, overridden = apply_safety_gate("Bonjour, quelle est l'équipe ?", analysis)

    assert overridden is True
    assert gated.requires_search is True
    assert gated.intent == Intent.factual
    assert gated.search_config.scope == "narrow"
    assert gated.search_config.max_files == 2
    assert gated.search_config.min_similarity == pytest.approx(0.5)
    assert gated.rewritten_query == "quelle est l'équipe"


def test_gate_forces_search_but_keeps_other_intents() -> None:
    analysis = AnalysisResult(intent=Intent.synthesis, requires_search=False, rewritten_query="résumé du CCAP")

    gated, overridden = apply_safety_gate("Résume le CCAP", analysis)

    assert overridden is True
    assert gated.requires_search is True
    assert gated.intent == Intent.synthesis


def test_gate_is_deterministic() -> None:
    analysis = AnalysisResult(intent=Intent.conversational, requires_search=False, rewritten_query="ok")
    assert apply_safety_gate("ok", analysis) == apply_safety_gate("ok", analysis)
