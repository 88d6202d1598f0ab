"""Pytest fixtures for Brain tests."""

import json
from collections.abc import AsyncGenerator, Callable, Iterator
from typing import Any

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from brain.api.brain import set_pipeline
from brain.chat.analyzer import QueryAnalyzer
from brain.chat.downstream import DownstreamClient
from brain.chat.handler import BrainPipeline
from brain.config import BrainSettings
from brain.main import app
from brain.services.config_resolver import ConfigResolver
from brain.services.context_loader import ContextLoader


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# -----------------------------------------------------------------------------
# Collaborator doubles
# -----------------------------------------------------------------------------


class FakeBehaviorStore:
    def __init__(self, row: dict[str, Any] | None = None, exc: Exception | None = None):
        self.row = row
        self.exc = exc
        self.calls: list[dict[str, Any]] = []

    async def fetch_behavior_row(self, *, agent_type: str, app_id: str, org_id: str | None) -> dict[str, Any] | None:
        self.calls.append({"agent_type": agent_type, "app_id": app_id, "org_id": org_id})
        if self.exc is not None:
            raise self.exc
        return self.row


class FakeContextStore:
    def __init__(self, row: dict[str, Any] | None = None, exc: Exception | None = None):
        self.row = row
        self.exc = exc
        self.calls: list[dict[str, Any]] = []

    async def get_agent_context(self, **kwargs: Any) -> dict[str, Any] | None:
        self.calls.append(kwargs)
        if self.exc is not None:
            raise self.exc
        return self.row


class FakeLLM:
    """Returns a canned reply; with no reply configured it fails like an unreachable provider."""

    def __init__(self, reply: str | None = None, exc: Exception | None = None):
        self.reply = reply
        self.exc = exc
        self.calls: list[dict[str, Any]] = []

    async def complete(self, **kwargs: Any) -> str:
        self.calls.append(kwargs)
        if self.exc is not None:
            raise self.exc
        if self.reply is None:
            raise RuntimeError("Analysis LLM is not configured (OPENAI_API_KEY is not set)")
        return self.reply


def make_context_row(**overrides: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "out_conversation_id": "conv-1",
        "out_effective_org_id": "org-1",
        "out_effective_app_id": "arpet",
        "out_system_prompt": "Tu es un assistant documentaire.",
        "out_gemini_system_prompt": None,
        "out_parameters": "{}",
        "out_config_source": "app",
        "out_project_identity": json.dumps({"market_type": "public", "project_type": "logement"}),
        "out_conversation_summary": None,
        "out_conversation_first_message": None,
        "out_recent_messages": "[]",
        "out_message_count": 0,
        "out_previous_source_file_ids": "[]",
        "out_documents_cles": json.dumps(
            [{"slug": "ccap", "label": "CCAP"}, {"slug": "ccag", "label": "CCAG"}]
        ),
    }
    row.update(overrides)
    return row


def llm_reply(**fields: Any) -> str:
    data: dict[str, Any] = {
        "intent": "factual",
        "requires_search": True,
        "rewritten_query": "quelle est la durée du chantier",
        "detected_documents": [],
        "search_config": {"scope": "narrow", "max_files": 2, "min_similarity": 0.5},
        "answer_format": "paragraph",
        "key_concepts": ["durée", "chantier"],
        "reasoning": "Question factuelle",
    }
    data.update(fields)
    return "```json\n" + json.dumps(data, ensure_ascii=False) + "\n```"


def parse_sse(text: str) -> list[tuple[str, dict[str, Any]]]:
    """Split an event stream into (event, data) pairs."""
    frames: list[tuple[str, dict[str, Any]]] = []
    for block in text.split("\n\n"):
        if not block.strip():
            continue
        event = ""
        data: dict[str, Any] = {}
        for line in block.split("\n"):
            if line.startswith("event: "):
                event = line[len("event: ") :]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: ") :])
        frames.append((event, data))
    return frames


@pytest.fixture
def make_pipeline() -> Callable[..., BrainPipeline]:
    """Build a BrainPipeline over in-memory doubles and an httpx.MockTransport downstream."""

    def _make(
        *,
        behavior_row: dict[str, Any] | None = None,
        behavior_store: FakeBehaviorStore | None = None,
        context_store: FakeContextStore | None = None,
        llm: FakeLLM | None = None,
        downstream: Callable[[httpx.Request], httpx.Response] | None = None,
        settings: BrainSettings | None = None,
    ) -> BrainPipeline:
        settings = settings or BrainSettings(downstream_url="http://librarian.test/librarian", service_key="svc-key")

        def _unexpected(request: httpx.Request) -> httpx.Response:
            raise AssertionError(f"unexpected downstream call: {request.url}")

        return BrainPipeline(
            settings=settings,
            config_resolver=ConfigResolver(
                behavior_store or FakeBehaviorStore(behavior_row),
                agent_type=settings.agent_type,
                default_app_id=settings.default_app_id,
            ),
            context_loader=ContextLoader(
                context_store or FakeContextStore(make_context_row()),
                agent_type=settings.context_agent_type,
                default_app_id=settings.default_app_id,
            ),
            analyzer=QueryAnalyzer(llm or FakeLLM()),
            downstream=DownstreamClient(
                service_key=settings.service_key,
                timeout_s=5.0,
                transport=httpx.MockTransport(downstream or _unexpected),
            ),
        )

    return _make


@pytest.fixture
def install_pipeline() -> Iterator[Callable[[BrainPipeline], None]]:
    """Install a pipeline on the API for one test."""
    yield set_pipeline
    set_pipeline(None)
