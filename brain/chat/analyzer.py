"""LLM query analysis.

The analyzer asks the chat model for one JSON decision per query. Its output
is never trusted as-is: the first balanced JSON object is extracted, every
field is checked individually and replaced by its default when missing or
wrong, and any failure of the LLM path falls back to the keyword analyzer.
The analyzer never raises; the safety gate runs afterwards in the pipeline.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from brain.chat.fallback_analyzer import build_fallback_analysis, build_minimal_analysis, preset_for
from brain.chat.llm_client import LLMClient
from brain.chat.prompt_builder import build_analysis_message, get_analysis_instruction
from brain.errors import AnalysisError
from brain.models import AgentContext, AnalysisResult, BrainConfig, Intent, SearchConfig
from brain.observability.metrics import BRAIN_ANALYSIS_TOTAL

logger = logging.getLogger(__name__)

_SCOPES = ("narrow", "broad")
_ANSWER_FORMATS = ("paragraph", "list", "table", "quote")


def extract_first_json_object(text: str) -> str | None:
    """Return the first balanced {...} substring, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        # Unbalanced from this brace; try the next one.
        start = text.find("{", start + 1)
    return None


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


def _parse_search_config(raw: Any) -> SearchConfig:
    data = raw if isinstance(raw, dict) else {}
    defaults = SearchConfig()

    scope = data.get("scope")
    max_files = data.get("max_files")
    min_similarity = data.get("min_similarity")
    file_filter = _str_list(data.get("file_filter"))

    return SearchConfig(
        scope=scope if scope in _SCOPES else defaults.scope,
        max_files=(
            int(max_files)
            if isinstance(max_files, (int, float)) and not isinstance(max_files, bool) and max_files >= 0
            else defaults.max_files
        ),
        min_similarity=(
            float(min_similarity)
            if isinstance(min_similarity, (int, float))
            and not isinstance(min_similarity, bool)
            and 0.0 <= min_similarity <= 1.0
            else defaults.min_similarity
        ),
        boost_documents=_str_list(data.get("boost_documents")),
        file_filter=file_filter or None,
    )


def parse_analysis(raw: str, query: str) -> AnalysisResult:
    """Parse a model reply into an AnalysisResult, field by field.

    Raises AnalysisError only when no JSON object can be found or decoded.
    """
    blob = extract_first_json_object(raw or "")
    if blob is None:
        raise AnalysisError("No JSON object in analysis reply")
    try:
        data = json.loads(blob)
    except ValueError as e:
        raise AnalysisError(f"Invalid JSON in analysis reply: {e}") from e
    if not isinstance(data, dict):
        raise AnalysisError("Analysis reply is not a JSON object")

    try:
        intent = Intent(data.get("intent"))
    except ValueError:
        intent = Intent.factual

    # Only an explicit boolean is a verdict; anything else means search.
    requires_search = data.get("requires_search")
    if not isinstance(requires_search, bool):
        requires_search = True

    rewritten = data.get("rewritten_query")
    answer_format = data.get("answer_format")
    reasoning = data.get("reasoning")

    return AnalysisResult(
        intent=intent,
        requires_search=requires_search,
        rewritten_query=rewritten.strip() if isinstance(rewritten, str) and rewritten.strip() else query,
        detected_documents=_str_list(data.get("detected_documents")),
        search_config=_parse_search_config(data.get("search_config")),
        answer_format=answer_format if answer_format in _ANSWER_FORMATS else "paragraph",
        key_concepts=_str_list(data.get("key_concepts")),
        reasoning=reasoning if isinstance(reasoning, str) else "",
        source="llm",
    )


def apply_analysis_toggles(analysis: AnalysisResult, query: str, config: BrainConfig) -> AnalysisResult:
    """Discard the parts of an LLM analysis the config does not want."""
    toggles = config.analysis
    update: dict[str, Any] = {}
    intent = analysis.intent

    if not toggles.enable_query_rewriting:
        update["rewritten_query"] = query
    if not toggles.enable_intent_detection:
        intent = Intent.factual
        update["intent"] = intent
    if not toggles.enable_document_detection:
        update["detected_documents"] = []
    if not toggles.enable_search_config:
        boost = [] if not toggles.enable_document_detection else analysis.detected_documents
        search_config, _ = preset_for(intent, boost)
        update["search_config"] = search_config

    return analysis.model_copy(update=update) if update else analysis


class QueryAnalyzer:
    """Analyze a query with the chat model, falling back to keywords on any failure."""

    def __init__(self, llm: LLMClient):
        self._llm = llm

    async def analyze(self, query: str, context: AgentContext, config: BrainConfig) -> AnalysisResult:
        try:
            analysis = await self._analyze_with_llm(query, context, config)
        except Exception as e:
            return self.fallback(query, context, config, reason=str(e))

        BRAIN_ANALYSIS_TOTAL.labels(path="llm").inc()
        logger.info(
            "LLM analysis: intent=%s, requires_search=%s, scope=%s, max_files=%d",
            analysis.intent.value,
            analysis.requires_search,
            analysis.search_config.scope,
            analysis.search_config.max_files,
        )
        return analysis

    async def _analyze_with_llm(self, query: str, context: AgentContext, config: BrainConfig) -> AnalysisResult:
        raw = await self._llm.complete(
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            system_prompt=get_analysis_instruction(config),
            user_message=build_analysis_message(query, context, config),
        )
        return apply_analysis_toggles(parse_analysis(raw, query), query, config)

    @staticmethod
    def fallback(query: str, context: AgentContext, config: BrainConfig, *, reason: str) -> AnalysisResult:
        if config.fallback.use_keywords_extraction:
            logger.warning("LLM analysis failed, using keyword fallback: %s", reason)
            BRAIN_ANALYSIS_TOTAL.labels(path="keywords").inc()
            return build_fallback_analysis(query, context.key_documents)

        logger.warning(
            "LLM analysis failed, using %s fallback (keyword extraction disabled): %s",
            config.fallback.on_parse_error.value,
            reason,
        )
        BRAIN_ANALYSIS_TOTAL.labels(path="minimal").inc()
        return build_minimal_analysis(query, config.fallback.on_parse_error)
