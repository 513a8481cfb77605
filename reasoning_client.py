"""Thin wrapper over the reasoning provider (Anthropic Messages or OpenAI Chat)."""

from __future__ import annotations

import json
import logging
import re
from json import JSONDecodeError
from typing import Any, Protocol

import anthropic
import openai

from errors import ConfigurationError, MalformedResponseError, ReasoningServiceError
from retry import FailureKind

LOGGER = logging.getLogger(__name__)

DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-3-5-haiku-20241022",
    "openai": "gpt-4o-mini",
}
REQUEST_TIMEOUT_SECONDS = 60

CREDENTIAL_STATUSES = (401, 403)

_RATE_LIMIT_MARKERS = ("rate_limit", "rate limit", "too many requests")
_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


class Reasoning(Protocol):
    """Anything that can turn a prompt into reply text."""

    def complete(self, prompt: str, *, max_tokens: int, label: str) -> str: ...


class ReasoningClient:
    """One provider SDK client, reused across threads for its connection pool.

    SDK-side retries are disabled: the pipeline owns retry and backoff.
    """

    def __init__(
        self,
        api_key: str,
        *,
        provider: str = "anthropic",
        model: str | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        temperature: float = 0.0,
    ) -> None:
        if not api_key:
            raise ConfigurationError(f"An API key is required for reasoning provider {provider!r}")
        if provider not in DEFAULT_MODELS:
            raise ConfigurationError(
                f"Unknown reasoning provider {provider!r}; expected one of {sorted(DEFAULT_MODELS)}"
            )

        self.provider = provider
        self.model = model or DEFAULT_MODELS[provider]
        self.temperature = temperature
        if provider == "anthropic":
            self._client: Any = anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)
        else:
            self._client = openai.OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def complete(self, prompt: str, *, max_tokens: int, label: str = "reasoning") -> str:
        """Send a single user prompt and return the reply text.

        Raises:
            ConfigurationError: the provider rejected the API key (401/403).
            ReasoningServiceError: the provider failed; carries the HTTP status if known.
            MalformedResponseError: the provider returned no text.
        """
        LOGGER.debug("Calling %s model=%s (%s)", self.provider, self.model, label)
        try:
            if self.provider == "anthropic":
                text = self._complete_anthropic(prompt, max_tokens)
            else:
                text = self._complete_openai(prompt, max_tokens)
        except (anthropic.APIStatusError, openai.APIStatusError) as exc:
            if exc.status_code in CREDENTIAL_STATUSES:
                raise ConfigurationError(
                    f"{self.provider} rejected the API key ({label}): {exc}"
                ) from exc
            raise ReasoningServiceError(
                f"{self.provider} API error ({label}): {exc}", status_code=exc.status_code
            ) from exc
        except (anthropic.APIError, openai.APIError) as exc:
            raise ReasoningServiceError(f"{self.provider} request failed ({label}): {exc}") from exc

        if not text or not text.strip():
            raise MalformedResponseError(f"{self.provider} returned an empty response ({label})")
        return text.strip()

    def _complete_anthropic(self, prompt: str, max_tokens: int) -> str:
        response = self._client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=self.temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )

    def _complete_openai(self, prompt: str, max_tokens: int) -> str:
        response = self._client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            max_completion_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.choices[0].message.content or ""


def classify_reasoning_failure(exc: Exception) -> FailureKind:
    """Rejected credentials are terminal; rate-limit signals get the long linear backoff."""
    status = getattr(exc, "status_code", None)
    if isinstance(exc, ConfigurationError) or status in CREDENTIAL_STATUSES:
        return FailureKind.TERMINAL
    if status == 429:
        return FailureKind.RATE_LIMITED
    message = str(exc).lower()
    if any(marker in message for marker in _RATE_LIMIT_MARKERS):
        return FailureKind.RATE_LIMITED
    return FailureKind.TRANSIENT


def raise_for_credentials(exc: Exception) -> None:
    """Raise ConfigurationError if ``exc`` means the provider refused the API key."""
    if isinstance(exc, ConfigurationError):
        raise exc
    if getattr(exc, "status_code", None) in CREDENTIAL_STATUSES:
        raise ConfigurationError(f"Reasoning service rejected the API key: {exc}") from exc


def parse_json_object(content: str) -> dict[str, Any]:
    """Parse possibly noisy model output into a JSON object."""
    text = content.strip()
    match = _JSON_FENCE_RE.search(text)
    if match:
        text = match.group(1).strip()

    try:
        parsed = json.loads(text)
    except JSONDecodeError:
        parsed = _extract_first_json_object(text)

    if not isinstance(parsed, dict):
        raise MalformedResponseError("Expected JSON object from reasoning response")
    return parsed


def _extract_first_json_object(content: str) -> dict[str, Any]:
    """Extract the first decodable JSON object from an arbitrary string."""
    decoder = json.JSONDecoder()
    for index, char in enumerate(content):
        if char != "{":
            continue
        try:
            candidate, _ = decoder.raw_decode(content[index:])
        except JSONDecodeError:
            continue
        if isinstance(candidate, dict):
            return candidate
    raise MalformedResponseError("Could not extract valid JSON object from reasoning output")
