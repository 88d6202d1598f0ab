from __future__ import annotations

from typing import Any, Protocol

import httpx


class LLMClient(Protocol):
    async def complete(
        self,
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        system_prompt: str,
        user_message: str,
    ) -> str: ...


def _provider_error_message(data: Any) -> str:
    """The `error` text of an OpenAI-style body, or "" when there is none."""
    if not isinstance(data, dict):
        return ""
    err = data.get("error")
    if isinstance(err, dict):
        err = err.get("message")
    return err.strip() if isinstance(err, str) else ""


def _summarize_provider_error(resp: httpx.Response) -> str:
    try:
        msg = _provider_error_message(resp.json())
    except ValueError:
        msg = ""
    return msg or resp.text.strip()[:400]


def _assistant_text(data: Any) -> str:
    """Assistant content of the first choice.

    Some gateways answer HTTP 200 with an error body; that is raised too.
    """
    err = _provider_error_message(data)
    if err:
        raise RuntimeError(err)

    choices = data.get("choices") if isinstance(data, dict) else None
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise RuntimeError("Provider response missing choices[]")

    message = choices[0].get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if isinstance(content, str):
        return content
    # Content parts: [{"type": "text", "text": "..."}]
    if isinstance(content, list):
        parts = [p.get("text") if isinstance(p, dict) else p for p in content]
        text = "\n".join(p for p in parts if isinstance(p, str) and p.strip())
        if text:
            return text

    raise RuntimeError("Provider response missing assistant content")



class ChatCompletionsClient:
    """Non-streaming client for an OpenAI-compatible /chat/completions endpoint."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    async def complete(
        self,
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        system_prompt: str,
        user_message: str,
    ) -> str:
        if not self.api_key:
            raise RuntimeError("Analysis LLM is not configured (OPENAI_API_KEY is not set)")

        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "temperature": float(temperature),
            "max_tokens": int(max_tokens),
            "stream": False,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
            try:
                resp = await client.post(f"{self.base_url}/chat/completions", headers=headers, json=payload)
                resp.raise_for_status()
                data: Any = resp.json()
            except httpx.HTTPStatusError as e:
                status = int(e.response.status_code)
                msg = _summarize_provider_error(e.response)
                detail = f": {msg}" if msg else ""
                if status == 401:
                    raise RuntimeError("LLM unauthorized (check OPENAI_API_KEY)") from e
                raise RuntimeError(f"LLM request failed (HTTP {status}){detail}") from e
            except httpx.RequestError as e:
                raise RuntimeError(f"LLM request failed ({self.base_url}): {type(e).__name__}: {e}") from e
            except ValueError as e:
                raise RuntimeError("LLM returned a non-JSON body") from e

