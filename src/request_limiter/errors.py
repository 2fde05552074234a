from __future__ import annotations


class RateLimitError(Exception):
    """Base class for rate limiting failures."""


class ConfigurationError(RateLimitError, ValueError):
    """Limiter options are invalid; raised before any request is handled."""


class BackendError(RateLimitError):
    """A store call failed or timed out."""

    def __init__(self, message: str, *, operation: str = "", key: str = "") -> None:
        super().__init__(message)
        self.operation = operation
        self.key = key


class SerializationError(RateLimitError):
    """A persisted hit history could not be decoded."""
