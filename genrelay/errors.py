from __future__ import annotations
from typing import Any, List, Optional


class GenRelayError(Exception):
    """Base class for all errors raised by genrelay."""


class ConfigError(GenRelayError):
    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class ProviderError(GenRelayError):
    """A candidate could not produce a result. The chain moves on to the next one."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderUnavailable(ProviderError):
    def __init__(self, provider: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(provider, message)
        self.status_code = status_code


class JobFailed(ProviderError):
    def __init__(self, provider: str, job_id: str, details: Any = None) -> None:
        super().__init__(provider, f"job {job_id} failed: {details}")
        self.job_id = job_id
        self.details = details


class JobTimedOut(ProviderError):
    def __init__(self, provider: str, job_id: str, deadline_s: float) -> None:
        super().__init__(provider, f"job {job_id} did not finish within {deadline_s:g}s")
        self.job_id = job_id
        self.deadline_s = deadline_s


class TransportError(GenRelayError):
    """The chat transport rejected or failed to deliver a request."""
