"""Brain behavior config resolution.

Behavior rows live in the console's config store, one per
(agent_type, app_id, org_id-or-null). An org-specific row wins over the
app-wide row. Whatever the row provides is merged over the compiled-in
defaults field by field; a missing or broken row is never fatal.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

from pydantic import ValidationError

from brain.models import BrainConfig

logger = logging.getLogger(__name__)

_MAX_REPAIR_PASSES = 8


class BehaviorStore(Protocol):
    async def fetch_behavior_row(
        self,
        *,
        agent_type: str,
        app_id: str,
        org_id: str | None,
    ) -> dict[str, Any] | None: ...


# Stored key -> field name, per section. The field name wins when both are set.
_STORED_KEY_ALIASES: dict[str, dict[str, str]] = {
    "context": {"include_documents_cles": "include_key_documents"},
}


def _overlay(defaults: dict[str, Any], raw: Any, aliases: dict[str, str] | None = None) -> dict[str, Any]:
    """Overlay raw values on defaults, keeping only keys the defaults know.

    Non-empty default dicts are sub-configs and are merged recursively; a
    null or wrongly-shaped raw value keeps the default.
    """
    out: dict[str, Any] = {}
    raw_dict = dict(raw) if isinstance(raw, dict) else {}
    for stored, field in (aliases or {}).items():
        if raw_dict.get(field) is None and stored in raw_dict:
            raw_dict[field] = raw_dict[stored]
    for key, default_value in defaults.items():
        value = raw_dict.get(key)
        if value is None:
            out[key] = default_value
        elif isinstance(default_value, dict) and default_value:
            out[key] = _overlay(default_value, value, _STORED_KEY_ALIASES.get(key))
        else:
            out[key] = value
    return out


def _reset_path(candidate: dict[str, Any], defaults: dict[str, Any], loc: Sequence[Any]) -> bool:
    """Reset the deepest default-known prefix of `loc` back to its default."""
    cand_node: dict[str, Any] = candidate
    default_node: dict[str, Any] = defaults
    for i, key in enumerate(loc):
        if key not in default_node:
            return False
        child_default = default_node[key]
        child_cand = cand_node.get(key)
        descend = (
            i + 1 < len(loc)
            and isinstance(child_default, dict)
            and loc[i + 1] in child_default
            and isinstance(child_cand, dict)
        )
        if not descend:
            cand_node[key] = child_default
            return True
        cand_node, default_node = child_cand, child_default
    return False


def merge_brain_config(row: dict[str, Any] | None) -> BrainConfig:
    """Merge a (possibly partial) behavior row over the defaults."""
    if not row:
        return BrainConfig()

    source = "org" if row.get("org_id") else "app"
    defaults = BrainConfig(config_source=source).model_dump(mode="json")
    candidate = _overlay(defaults, row.get("parameters"))
    candidate["config_source"] = source

    prompt = row.get("system_prompt")
    candidate["system_prompt"] = prompt.strip() if isinstance(prompt, str) and prompt.strip() else None

    for _ in range(_MAX_REPAIR_PASSES):
        try:
            return BrainConfig.model_validate(candidate)
        except ValidationError as e:
            repaired = False
            for err in e.errors():
                loc = tuple(err.get("loc") or ())
                logger.warning("Ignoring invalid brain config field %s: %s", ".".join(map(str, loc)), err.get("msg"))
                repaired = _reset_path(candidate, defaults, loc) or repaired
            if not repaired:
                break

    logger.warning("Brain config row could not be repaired; using defaults")
    return BrainConfig()


class ConfigResolver:
    """Resolve the BrainConfig for one request."""

    def __init__(self, store: BehaviorStore, *, agent_type: str, default_app_id: str):
        self._store = store
        self._agent_type = agent_type
        self._default_app_id = default_app_id

    async def resolve(self, app_id: str | None, org_id: str | None = None) -> BrainConfig:
        app = (app_id or "").strip() or self._default_app_id
        org = (org_id or "").strip() or None
        logger.info("Loading %s config (app=%s, org=%s)", self._agent_type, app, org or "global")

        try:
            row = await self._store.fetch_behavior_row(agent_type=self._agent_type, app_id=app, org_id=org)
        except Exception as e:
            logger.warning("Behavior row lookup failed, using defaults: %s", e)
            return BrainConfig()

        if row is None:
            logger.warning("No active %s config row for app=%s, using defaults", self._agent_type, app)
            return BrainConfig()

        config = merge_brain_config(row)
        logger.info("Brain config loaded (source=%s, model=%s)", config.config_source, config.model)
        return config
