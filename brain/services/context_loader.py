"""Per-request conversation context.

One aggregate store call resolves (or starts) the conversation and returns
everything the analyzer and the downstream agent need. This module is the
single place where the store's loosely-typed row is decoded: sub-fields may
arrive as JSON text or as native values, and anything unusable becomes an
empty collection. Nothing downstream of `ContextLoader.load` sees raw rows.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Protocol

from brain.errors import ContextError
from brain.models import AgentContext, ContextWindowConfig, KeyDocument, RecentMessage

logger = logging.getLogger(__name__)


class ContextStore(Protocol):
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
    ) -> dict[str, Any] | None: ...


def _decode(value: Any, expected: type, default: Any) -> Any:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return default
    return value if isinstance(value, expected) else default


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _decode_messages(value: Any) -> list[RecentMessage]:
    out: list[RecentMessage] = []
    for item in _decode(value, list, []):
        if not isinstance(item, dict):
            continue
        role = item.get("role")
        content = item.get("content")
        if not isinstance(role, str) or content is None:
            continue
        created_at = item.get("created_at")
        if isinstance(created_at, datetime):
            created_at = created_at.isoformat()
        sources = _decode(item.get("sources"), list, None)
        out.append(
            RecentMessage(
                role=role,
                content=str(content),
                created_at=str(created_at) if created_at is not None else None,
                sources=sources,
            )
        )
    return out


def _decode_key_documents(value: Any) -> list[KeyDocument]:
    out: list[KeyDocument] = []
    for item in _decode(value, list, []):
        if not isinstance(item, dict):
            continue
        slug = _opt_str(item.get("slug"))
        label = _opt_str(item.get("label"))
        if not slug and not label:
            continue
        out.append(KeyDocument(slug=slug or str(label), label=label or str(slug)))
    return out


def _decode_id_list(value: Any) -> list[str]:
    return [str(x) for x in _decode(value, list, []) if x]


def build_agent_context(row: dict[str, Any], *, fallback_app_id: str) -> AgentContext:
    """Decode a raw store row into an AgentContext."""
    conversation_id = _opt_str(row.get("out_conversation_id"))
    if not conversation_id:
        raise ContextError("Context error: store returned no conversation id")

    try:
        message_count = int(row.get("out_message_count") or 0)
    except (TypeError, ValueError):
        message_count = 0

    return AgentContext(
        conversation_id=conversation_id,
        effective_org_id=_opt_str(row.get("out_effective_org_id")),
        effective_app_id=_opt_str(row.get("out_effective_app_id")) or fallback_app_id,
        system_prompt=_opt_str(row.get("out_system_prompt")),
        generation_system_prompt=_opt_str(row.get("out_gemini_system_prompt")),
        parameters=_decode(row.get("out_parameters"), dict, {}),
        config_source=_opt_str(row.get("out_config_source")) or "fallback",
        project_identity=_decode(row.get("out_project_identity"), dict, None) or None,
        conversation_summary=_opt_str(row.get("out_conversation_summary")),
        conversation_first_message=_opt_str(row.get("out_conversation_first_message")),
        recent_messages=_decode_messages(row.get("out_recent_messages")),
        message_count=max(0, message_count),
        previous_source_file_ids=_decode_id_list(row.get("out_previous_source_file_ids")),
        key_documents=_decode_key_documents(row.get("out_documents_cles")),
    )


class ContextLoader:
    """Load the AgentContext for one request. Failures are fatal."""

    def __init__(self, store: ContextStore, *, agent_type: str, default_app_id: str):
        self._store = store
        self._agent_type = agent_type
        self._default_app_id = default_app_id

    async def load(
        self,
        *,
        user_id: str,
        org_id: str | None,
        project_id: str | None,
        app_id: str | None,
        conversation_id: str | None,
        window: ContextWindowConfig,
    ) -> AgentContext:
        logger.info("Loading agent context (conversation_id=%s)", conversation_id or "auto")
        try:
            row = await self._store.get_agent_context(
                user_id=user_id,
                org_id=org_id or None,
                project_id=project_id or None,
                app_id=app_id or None,
                agent_type=self._agent_type,
                conversation_id=conversation_id or None,
                timeout_minutes=window.timeout_minutes,
                messages_count=window.messages_count,
            )
        except Exception as e:
            logger.error("Context store call failed: %s", e)
            raise ContextError(f"Context error: {e}") from e

        if not row:
            raise ContextError("Context error: store returned no context row")

        context = build_agent_context(row, fallback_app_id=app_id or self._default_app_id)
        logger.info(
            "Context: config=%s, conversation=%s, messages=%d (loaded %d), key_documents=%d",
            context.config_source,
            context.conversation_id,
            context.message_count,
            len(context.recent_messages),
            len(context.key_documents),
        )
        return context
