from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from brain.errors import DownstreamError
from brain.observability.metrics import BRAIN_DOWNSTREAM_ERRORS_TOTAL

logger = logging.getLogger(__name__)

_MAX_ERROR_TEXT = 1000


class DownstreamStream:
    """An open streamed response from the downstream agent.

    Owns the httpx client and response; `aclose()` must run exactly once,
    which `iter_bytes()` guarantees when it is consumed or closed.
    """

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response):
        self._client = client
        self._response = response
        self._closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield body chunks in arrival order, with any content-encoding undone."""
        try:
            async for chunk in self._response.aiter_bytes():
                if chunk:
                    yield chunk
        except httpx.HTTPError as e:
            BRAIN_DOWNSTREAM_ERRORS_TOTAL.inc()
            raise DownstreamError(f"Downstream stream interrupted: {type(e).__name__}: {e}") from e
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


def _auth_headers(authorization: str | None, service_key: str) -> dict[str, str]:
    # The body is relayed as plain text/event-stream, so ask for it unencoded.
    headers = {"Content-Type": "application/json", "Accept-Encoding": "identity"}
    token = (authorization or "").strip()
    if token:
        headers["Authorization"] = token
    elif service_key:
        headers["Authorization"] = f"Bearer {service_key}"
    return headers


def _error_detail(status: int, text: str) -> str:
    text = (text or "").strip()[:_MAX_ERROR_TEXT]
    return f"Downstream error (HTTP {status}): {text}" if text else f"Downstream error (HTTP {status})"


class DownstreamClient:
    """HTTP client for the downstream retrieval+generation agent."""

    def __init__(
        self,
        *,
        service_key: str = "",
        timeout_s: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.service_key = service_key
        self.timeout_s = timeout_s
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)

    async def open_stream(self, url: str, payload: dict[str, Any], authorization: str | None) -> DownstreamStream:
        """POST the payload and return the open response once headers arrived.

        HTTP errors are read, closed and raised as DownstreamError carrying
        the downstream status; transport failures map to 502.
        """
        client = self._client()
        try:
            request = client.build_request(
                "POST", url, json=payload, headers=_auth_headers(authorization, self.service_key)
            )
            response = await client.send(request, stream=True)
        except httpx.RequestError as e:
            await client.aclose()
            BRAIN_DOWNSTREAM_ERRORS_TOTAL.inc()
            logger.error("Downstream request to %s failed: %s", url, e)
            raise DownstreamError(f"Downstream unreachable: {type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            try:
                await response.aread()
                text = response.text
            finally:
                await response.aclose()
                await client.aclose()
            BRAIN_DOWNSTREAM_ERRORS_TOTAL.inc()
            logger.error("Downstream returned HTTP %d: %s", response.status_code, text[:200])
            raise DownstreamError(_error_detail(response.status_code, text), status_code=response.status_code)

        return DownstreamStream(client, response)

    async def fetch_json(self, url: str, payload: dict[str, Any], authorization: str | None) -> dict[str, Any]:
        """POST the payload and return the downstream JSON object."""
        async with self._client() as client:
            try:
                resp = await client.post(url, json=payload, headers=_auth_headers(authorization, self.service_key))
            except httpx.RequestError as e:
                BRAIN_DOWNSTREAM_ERRORS_TOTAL.inc()
                logger.error("Downstream request to %s failed: %s", url, e)
                raise DownstreamError(f"Downstream unreachable: {type(e).__name__}: {e}") from e

            if resp.status_code >= 400:
                BRAIN_DOWNSTREAM_ERRORS_TOTAL.inc()
                logger.error("Downstream returned HTTP %d: %s", resp.status_code, resp.text[:200])
                raise DownstreamError(_error_detail(resp.status_code, resp.text), status_code=resp.status_code)

            try:
                data: Any = resp.json()
            except ValueError as e:
                BRAIN_DOWNSTREAM_ERRORS_TOTAL.inc()
                raise DownstreamError("Downstream returned a non-JSON body") from e

        if not isinstance(data, dict):
            raise DownstreamError("Downstream returned a non-object JSON body")
        return data
