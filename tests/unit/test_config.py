"""Tests for process settings and the behavior config model."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from brain.config import BrainSettings, load_settings
from brain.models import BrainConfig, Intent


def test_brain_config_defaults() -> None:
    config = BrainConfig()
    assert config.model == "gpt-4o-mini"
    assert config.temperature == pytest.approx(0.3)
    assert config.max_tokens == 1024
    assert config.context.messages_count == 4
    assert config.context.timeout_minutes == 30
    assert config.routing.skip_search_for_conversational is True
    assert config.routing.default_agent == "librarian"
    assert config.fallback.on_parse_error == Intent.factual
    assert config.sse.send_immediate_ack is True
    assert config.sse.send_analysis_step is True
    assert config.config_source == "default"


def test_brain_config_validation() -> None:
    with pytest.raises(ValidationError):
        BrainConfig(temperature=3.0)
    with pytest.raises(ValidationError):
        BrainConfig.model_validate({"context": {"messages_count": -1}})


def test_load_settings_defaults_without_file(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "missing.json", env={})
    assert settings == BrainSettings()


def test_load_settings_env_overrides_file(tmp_path: Path) -> None:
    path = tmp_path / "brain_config.json"
    path.write_text(
        json.dumps(
            {
                "downstream_url": "http://file.test/librarian",
                "agent_urls": {"comparator": "http://comparator.test"},
                "llm_timeout_s": 20,
            }
        )
    )

    settings = load_settings(
        path,
        env={
            "BRAIN_DOWNSTREAM_URL": "http://env.test/librarian",
            "BRAIN_LLM_TIMEOUT_S": "15",
            "OPENAI_API_KEY": "  ",
        },
    )

    assert settings.downstream_url == "http://env.test/librarian"
    assert settings.llm_timeout_s == pytest.approx(15.0)
    assert settings.agent_urls == {"comparator": "http://comparator.test"}
    # Blank env values do not override.
    assert settings.openai_api_key == ""


def test_settings_are_frozen() -> None:
    with pytest.raises(ValidationError):
        BrainSettings().service_key = "x"  # type: ignore[misc]
