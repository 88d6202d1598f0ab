"""Unit tests for the chat-completions client."""

import json

import httpx
import pytest

from brain.chat.llm_client import ChatCompletionsClient, _assistant_text


def _complete_kwargs() -> dict[str, object]:
    return {
        "model": "gpt-4o-mini",
        "temperature": 0.3,
        "max_tokens": 1024,
        "system_prompt": "sys",
        "user_message": "QUESTION UTILISATEUR:\nDurée ?",
    }


@pytest.mark.asyncio
async def test_complete_posts_openai_payload() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"intent": "factual"}'}}]})

    client = ChatCompletionsClient(
        api_key="sk-test", base_url="http://llm.test/v1/", transport=httpx.MockTransport(handler)
    )
    text = await client.complete(**_complete_kwargs())

    assert text == '{"intent": "factual"}'
    assert seen["url"] == "http://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    body = seen["body"]
    assert isinstance(body, dict)
    assert body["model"] == "gpt-4o-mini"
    assert body["max_tokens"] == 1024
    assert body["messages"][0] == {"role": "system", "content": "sys"}


@pytest.mark.asyncio
async def test_complete_requires_api_key() -> None:
    with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
        await ChatCompletionsClient(api_key="").complete(**_complete_kwargs())


@pytest.mark.asyncio
async def test_complete_surfaces_provider_error_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "Rate limit reached"}})

    client = ChatCompletionsClient(api_key="sk-test", transport=httpx.MockTransport(handler))
    with pytest.raises(RuntimeError, match="HTTP 429.*Rate limit reached"):
        await client.complete(**_complete_kwargs())


def test_assistant_text_variants() -> None:
    assert _assistant_text({"choices": [{"message": {"content": "a"}}]}) == "a"
    parts = {"choices": [{"message": {"content": [{"type": "text", "text": "b"}, "c"]}}]}
    assert _assistant_text(parts) == "b\nc"
    with pytest.raises(RuntimeError, match="quota"):
        _assistant_text({"error": {"message": "quota"}})
    with pytest.raises(RuntimeError, match="choices"):
        _assistant_text({"choices": []})
    with pytest.raises(RuntimeError, match="assistant content"):
        _assistant_text({"choices": [{"text": "legacy completion"}]})
