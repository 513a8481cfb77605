"""Environment-driven configuration for the enrichment pipeline."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from errors import ConfigurationError
from retry import FETCH_RETRY_POLICY, REASONING_RETRY_POLICY, RetryPolicy
from worker_pool import StagePolicy

LOGGER = logging.getLogger(__name__)

APP_DIR_NAME = "podcast-briefing"
FAILURE_LOG_PATH = os.getenv("FAILURE_LOG_PATH", "/tmp/collect-stories-errors.csv")

_API_KEY_VARS: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


def dotenv_candidates() -> list[Path]:
    """Locations checked for a .env file, in order of preference."""
    return [
        Path.cwd() / ".env",
        Path.home() / ".config" / APP_DIR_NAME / ".env",
        Path.home() / ".env",
    ]


def load_environment() -> Path | None:
    """Load the first .env file found; variables already set are kept."""
    for path in dotenv_candidates():
        if path.is_file():
            load_dotenv(path)
            LOGGER.debug("Loaded environment from %s", path)
            return path
    return None


def require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        locations = "\n  ".join(str(path) for path in dotenv_candidates())
        raise ConfigurationError(
            f"{name} not found. Set it as an environment variable or add it to one of:\n  {locations}"
        )
    return value


def api_key_var(provider: str) -> str:
    try:
        return _API_KEY_VARS[provider]
    except KeyError as exc:
        raise ConfigurationError(
            f"Unknown reasoning provider {provider!r}; expected one of {sorted(_API_KEY_VARS)}"
        ) from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise ConfigurationError(f"{name} must be at least 1, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ConfigurationError(f"{name} must not be negative, got {value}")
    return value


@dataclass(frozen=True, slots=True)
class PipelineOptions:
    """Everything one pipeline run needs besides its inputs and collaborators."""

    reasoning_provider: str = "anthropic"
    reasoning_model: str | None = None
    reasoning_api_key: str | None = None
    reasoning_timeout: float = 60.0
    fetch: StagePolicy = field(default_factory=lambda: StagePolicy(10, FETCH_RETRY_POLICY))
    enrich: StagePolicy = field(default_factory=lambda: StagePolicy(2, REASONING_RETRY_POLICY))
    cluster_retry: RetryPolicy = REASONING_RETRY_POLICY
    fetch_timeout: float = 30.0
    call_spacing_seconds: float = 0.5
    content_char_budget: int = 10_000
    min_content_chars: int = 100
    credential_header: str = "Cookie"

    @classmethod
    def from_env(cls) -> PipelineOptions:
        provider = os.getenv("REASONING_PROVIDER", "anthropic").strip().lower()
        key_var = api_key_var(provider)
        return cls(
            reasoning_provider=provider,
            reasoning_model=os.getenv("REASONING_MODEL") or None,
            reasoning_api_key=os.getenv(key_var) or None,
            reasoning_timeout=_env_float("REASONING_TIMEOUT_SECONDS", 60.0),
            fetch=StagePolicy(_env_int("FETCH_POOL_SIZE", 10), FETCH_RETRY_POLICY),
            enrich=StagePolicy(_env_int("ENRICH_POOL_SIZE", 2), REASONING_RETRY_POLICY),
            fetch_timeout=_env_float("FETCH_TIMEOUT_SECONDS", 30.0),
            call_spacing_seconds=_env_float("ENRICH_SPACING_SECONDS", 0.5),
            content_char_budget=_env_int("CONTENT_CHAR_BUDGET", 10_000),
            min_content_chars=_env_int("MIN_CONTENT_CHARS", 100),
        )

    def require_reasoning_key(self) -> str:
        if not self.reasoning_api_key:
            raise ConfigurationError(
                f"{api_key_var(self.reasoning_provider)} is required for the "
                f"{self.reasoning_provider} reasoning provider"
            )
        return self.reasoning_api_key
