from __future__ import annotations

from typing import Sequence

from .models.job import ErrorKind


class GenerationError(Exception):
    """Base class for orchestration failures."""

    kind: ErrorKind = ErrorKind.provider


class ValidationError(GenerationError):
    """Malformed submission; no job is created."""

    kind = ErrorKind.validation


class ConfigurationError(GenerationError):
    """Required credentials or settings are missing."""

    kind = ErrorKind.configuration


class ProviderError(GenerationError):
    """The provider rejected or failed a create/poll call."""

    kind = ErrorKind.provider

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    """The poll-attempt ceiling was reached before a terminal status."""

    kind = ErrorKind.timeout


class ResultFormatError(GenerationError):
    """Provider reported success but no artifact locator could be resolved."""

    kind = ErrorKind.result_format


class PersistenceError(GenerationError):
    """The artifact was produced but the durable write failed."""

    kind = ErrorKind.persistence


class JobNotFoundError(LookupError):
    """No job with the given id is visible in the registry."""


class JobStateError(GenerationError):
    """The job exists but is not in a state that allows the requested operation."""

    kind = ErrorKind.validation


class PartialFailure(GenerationError):
    """Some submissions of a fan-out batch failed while others went through."""

    def __init__(self, message: str, *, succeeded: Sequence[str], failures: Sequence[tuple[str, str]]) -> None:
        super().__init__(message)
        self.succeeded = list(succeeded)
        self.failures = list(failures)


__all__ = [
    "ConfigurationError",
    "GenerationError",
    "JobNotFoundError",
    "JobStateError",
    "PartialFailure",
    "PersistenceError",
    "ProviderError",
    "ProviderTimeoutError",
    "ResultFormatError",
    "ValidationError",
]
