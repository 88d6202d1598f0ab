from __future__ import annotations

import asyncio
import json
import os
from typing import Any

import asyncpg

# -----------------------------------------------------------------------------
# Shared asyncpg pool caching (process-wide)
#
# The config resolver, the context loader and /api/ready each hold a
# PostgresClient. We keep one pool per DSN and reuse it across all instances.
# -----------------------------------------------------------------------------
_POOLS_BY_DSN: dict[str, asyncpg.Pool] = {}
_POOL_LOCKS_BY_DSN: dict[str, asyncio.Lock] = {}


def _json_object(value: Any) -> dict[str, Any]:
    """jsonb columns arrive as text unless a codec is registered on the pool."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return {}
    return dict(value) if isinstance(value, dict) else {}


class PostgresClient:
    """Context/config store backed by Postgres.

    Implements the two store calls the Brain needs:
    - the active behavior row for (agent_type, app_id, org_id-or-null)
    - the aggregate resolve-or-create conversation call (rag.get_agent_context)

    The schema itself is owned by the console's migrations, not by this service.
    """

    def __init__(self, connection_string: str):
        self.connection_string = connection_string
        self._pool: asyncpg.Pool | None = None
        self._resolved_dsn: str | None = None

    # ---------------------------------------------------------------------
    # Connection
    # ---------------------------------------------------------------------

    async def connect(self) -> None:
        if self._pool is not None:
            return

        dsn = self._resolve_dsn(self.connection_string)
        self._resolved_dsn = dsn

        # Fast path: pool already exists for this DSN (no locking needed).
        existing = _POOLS_BY_DSN.get(dsn)
        if existing is not None:
            self._pool = existing
            return

        # Lazily create a lock per DSN (locks bind to the running loop).
        lock = _POOL_LOCKS_BY_DSN.get(dsn)
        if lock is None:
            lock = asyncio.Lock()
            _POOL_LOCKS_BY_DSN[dsn] = lock

        async with lock:
            pool = _POOLS_BY_DSN.get(dsn)
            if pool is None:
                pool = await asyncpg.create_pool(dsn=dsn, min_size=1, max_size=10)
                _POOLS_BY_DSN[dsn] = pool
            self._pool = pool

    async def disconnect(self) -> None:
        # Pools are shared per DSN; per-instance disconnect only drops the reference.
        if self._pool is None:
            return
        self._pool = None
        self._resolved_dsn = None

    @classmethod
    async def close_shared_pools(cls) -> None:
        """Close every shared pool. Called from the app shutdown hook."""
        pools = list(_POOLS_BY_DSN.values())
        _POOLS_BY_DSN.clear()
        _POOL_LOCKS_BY_DSN.clear()
        for pool in pools:
            await pool.close()

    @staticmethod
    def _resolve_dsn(connection_string: str) -> str:
        """Resolve a connection string, preferring env vars when available."""
        env_dsn = os.getenv("POSTGRES_DSN")
        if env_dsn:
            return env_dsn

        host = os.getenv("POSTGRES_HOST")
        if host:
            port = int(os.getenv("POSTGRES_PORT", "5432"))
            db = os.getenv("POSTGRES_DB", "postgres")
            user = os.getenv("POSTGRES_USER", "postgres")
            password = os.getenv("POSTGRES_PASSWORD", "postgres")
            return f"postgresql://{user}:{password}@{host}:{port}/{db}"

        return connection_string

    async def _require_pool(self) -> None:
        if self._pool is None:
            await self.connect()

    async def ping(self) -> bool:
        await self._require_pool()
        assert self._pool is not None
        async with self._pool.acquire() as conn:
            return bool(await conn.fetchval("SELECT 1;"))

    # ---------------------------------------------------------------------
    # Behavior rows
    # ---------------------------------------------------------------------

    async def fetch_behavior_row(
        self,
        *,
        agent_type: str,
        app_id: str,
        org_id: str | None,
    ) -> dict[str, Any] | None:
        """Return the active behavior row, org-specific rows first.

        With org_id=None the `org_id = $3` branch is NULL, so only the
        app-wide row can match.
        """
        await self._require_pool()
        assert self._pool is not None
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT system_prompt, parameters, org_id
                FROM config.agent_prompts
                WHERE agent_type = $1
                  AND app_id = $2
                  AND is_active = true
                  AND (org_id::text = $3 OR org_id IS NULL)
                ORDER BY org_id NULLS LAST
                LIMIT 1;
                """,
                agent_type,
                app_id,
                org_id,
            )
        if not row:
            return None
        return {
            "system_prompt": row["system_prompt"],
            "parameters": _json_object(row["parameters"]),
            "org_id": str(row["org_id"]) if row["org_id"] is not None else None,
        }

    # ---------------------------------------------------------------------
    # Conversation context
    # ---------------------------------------------------------------------

    async def get_agent_context(
        self,
        *,
        user_id: str,
        org_id: str | None,
        project_id: str | None,
        app_id: str | None,
        agent_type: str,
        conversation_id: str | None,
        timeout_minutes: int,
        messages_count: int,
    ) -> dict[str, Any] | None:
        """Resolve-or-create the conversation and return the raw context row.

        Sub-fields may come back as JSON text depending on the function's
        declared types; decoding happens in the context loader.
        """
        await self._require_pool()
        assert self._pool is not None
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM rag.get_agent_context(
                  p_user_id => $1::uuid,
                  p_org_id => $2::uuid,
                  p_project_id => $3::uuid,
                  p_app_id => $4::text,
                  p_agent_type => $5::text,
                  p_conversation_id => $6::uuid,
                  p_conversation_timeout_minutes => $7::int,
                  p_context_messages_count => $8::int
                );
                """,
                user_id,
                org_id,
                project_id,
                app_id,
                agent_type,
                conversation_id,
                int(timeout_minutes),
                int(messages_count),
            )
        return dict(row) if row else None
