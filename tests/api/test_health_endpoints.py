"""Tests for health endpoints."""

from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient

import brain.api.health as health_api
from brain.config import BrainSettings


@pytest.mark.asyncio
async def test_health_endpoint_returns_pydantic_shape(client: AsyncClient) -> None:
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()

    assert data["ok"] is True
    assert data["status"] in {"healthy", "unhealthy", "unknown"}
    assert "ts" in data
    assert isinstance(data.get("services"), dict)
    assert data["services"]["api"]["status"] == "up"


@pytest.mark.asyncio
async def test_ready_reports_postgres_ok(client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    class _FakePostgres:
        def __init__(self, dsn: str) -> None:
            assert dsn == "postgresql://ready-test"

        async def ping(self) -> bool:
            return True

        async def disconnect(self) -> None:
            return None

    monkeypatch.setattr(health_api, "get_settings", lambda: BrainSettings(postgres_dsn="postgresql://ready-test"))
    monkeypatch.setattr(health_api, "PostgresClient", _FakePostgres, raising=True)

    resp = await client.get("/api/ready")
    assert resp.status_code == 200
    data = resp.json()
    assert data["ready"] is True
    assert data["dependencies"]["postgres"] == {"ok": True, "error": None}


@pytest.mark.asyncio
async def test_ready_unreachable_postgres_does_not_crash(client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """GET /api/ready with Postgres down should return 200 + ready=false (not 500)."""

    class _DownPostgres:
        def __init__(self, dsn: str) -> None:
            pass

        async def ping(self) -> bool:
            raise OSError("connection refused")

        async def disconnect(self) -> None:
            return None

    monkeypatch.setattr(health_api, "PostgresClient", _DownPostgres, raising=True)

    resp = await client.get("/api/ready")
    assert resp.status_code == 200
    data = resp.json()
    assert data["ready"] is False
    assert data["dependencies"]["postgres"]["ok"] is False
    assert "connection refused" in data["dependencies"]["postgres"]["error"]


@pytest.mark.asyncio
async def test_lifespan_closes_shared_pools_on_shutdown(monkeypatch) -> None:
    import brain.main as main_mod

    close_pools = AsyncMock()
    monkeypatch.setattr(main_mod.PostgresClient, "close_shared_pools", close_pools)

    async with main_mod.lifespan(main_mod.app):
        close_pools.assert_not_awaited()
    close_pools.assert_awaited_once()
