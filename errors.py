"""Exception types shared across the enrichment pipeline."""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base error for the enrichment pipeline."""


class ConfigurationError(PipelineError):
    """Missing or invalid credentials/configuration; aborts the run."""


class CompletenessError(PipelineError):
    """An item went missing or was duplicated between stages (internal bug)."""


class FetchError(PipelineError):
    """Remote document retrieval failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ContentTooShortError(PipelineError):
    """Document was retrieved but yielded too little text to be useful."""


class UnfetchableError(PipelineError):
    """The request can never succeed: malformed URL, unsupported scheme, or failed credential lookup."""


class ReasoningServiceError(PipelineError):
    """The reasoning provider rejected or failed a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(PipelineError):
    """The reasoning provider answered, but the reply could not be used."""


class RetryExhaustedError(PipelineError):
    """Every allowed attempt of an operation failed."""

    def __init__(self, label: str, attempts: int, last_error: Exception) -> None:
        super().__init__(f"{label} failed after {attempts} attempt(s): {last_error}")
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
