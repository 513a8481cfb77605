"""Tests for config: .env discovery and environment-driven options."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

import config
from config import PipelineOptions, load_environment, require_env
from errors import ConfigurationError


def test_defaults_without_environment() -> None:
    with patch.dict(os.environ, {}, clear=True):
        options = PipelineOptions.from_env()

    assert options.reasoning_provider == "anthropic"
    assert options.reasoning_api_key is None
    assert options.fetch.pool_size == 10
    assert options.fetch.retry.max_attempts == 3
    assert options.enrich.pool_size == 2
    assert options.enrich.retry.max_attempts == 5
    assert options.content_char_budget == 10_000
    assert options.call_spacing_seconds == 0.5


def test_environment_overrides() -> None:
    env = {
        "REASONING_PROVIDER": "OpenAI",
        "OPENAI_API_KEY": "sk-oa",
        "ANTHROPIC_API_KEY": "sk-ant",
        "REASONING_MODEL": "gpt-test",
        "FETCH_POOL_SIZE": "4",
        "ENRICH_POOL_SIZE": "1",
        "ENRICH_SPACING_SECONDS": "0",
    }
    with patch.dict(os.environ, env, clear=True):
        options = PipelineOptions.from_env()

    assert options.reasoning_provider == "openai"
    assert options.require_reasoning_key() == "sk-oa"
    assert options.reasoning_model == "gpt-test"
    assert options.fetch.pool_size == 4
    assert options.enrich.pool_size == 1
    assert options.call_spacing_seconds == 0.0


@pytest.mark.parametrize(
    "env",
    [
        {"FETCH_POOL_SIZE": "ten"},
        {"ENRICH_POOL_SIZE": "0"},
        {"ENRICH_SPACING_SECONDS": "-1"},
        {"REASONING_PROVIDER": "perplexity"},
    ],
)
def test_invalid_values_are_configuration_errors(env: dict[str, str]) -> None:
    with patch.dict(os.environ, env, clear=True), pytest.raises(ConfigurationError):
        PipelineOptions.from_env()


def test_missing_key_is_reported_by_name() -> None:
    with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY"):
        PipelineOptions().require_reasoning_key()


def test_require_env_lists_dotenv_locations() -> None:
    with patch.dict(os.environ, {}, clear=True), \
         pytest.raises(ConfigurationError, match="podcast-briefing"):
        require_env("RAINDROP_API_TOKEN")


def test_load_environment_prefers_current_directory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    home = tmp_path / "home"
    (home / ".config" / config.APP_DIR_NAME).mkdir(parents=True)
    (home / ".config" / config.APP_DIR_NAME / ".env").write_text("RAINDROP_API_TOKEN=from-home\n")
    workdir = tmp_path / "work"
    workdir.mkdir()
    (workdir / ".env").write_text("RAINDROP_API_TOKEN=from-cwd\n")
    monkeypatch.chdir(workdir)

    with patch.dict(os.environ, {"HOME": str(home)}, clear=True):
        loaded = load_environment()
        token = os.environ.get("RAINDROP_API_TOKEN")

    assert loaded == workdir / ".env"
    assert token == "from-cwd"


def test_load_environment_falls_back_to_app_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    home = tmp_path / "home"
    app_env = home / ".config" / config.APP_DIR_NAME / ".env"
    app_env.parent.mkdir(parents=True)
    app_env.write_text("RAINDROP_API_TOKEN=from-home\n")
    monkeypatch.chdir(tmp_path)

    with patch.dict(os.environ, {"HOME": str(home)}, clear=True):
        loaded = load_environment()
        token = os.environ.get("RAINDROP_API_TOKEN")

    assert loaded == app_env
    assert token == "from-home"
