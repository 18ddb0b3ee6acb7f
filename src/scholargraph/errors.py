"""
Error taxonomy for the ingestion engine.

Propagation policy:
- ResolutionFailure is soft: the single relationship is skipped and counted.
- ParseError, PersistenceError and ExternalServiceError fail the current paper only.
- ValidationError is fatal to the store call that raised it.
- ConfigurationError stops the process before any ingestion starts.
"""

from __future__ import annotations


class ScholarGraphError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ScholarGraphError):
    """Malformed input to a store operation."""


class ParseError(ScholarGraphError):
    """Capability output that does not match the expected structured shape."""

    def __init__(self, message: str, *, raw: str | None = None):
        super().__init__(message)
        self.raw = raw


class ResolutionFailure(ScholarGraphError):
    """A relationship endpoint name matched no node."""

    def __init__(self, name: str):
        super().__init__(f"Could not resolve entity {name!r}")
        self.name = name


class PersistenceError(ScholarGraphError):
    """Unexpected database failure outside the expected conflict path."""


class ExternalServiceError(ScholarGraphError):
    """Timeout, rate limit or server error from the text-analysis capability."""

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class ConfigurationError(ScholarGraphError):
    """Missing credentials or connection settings."""
