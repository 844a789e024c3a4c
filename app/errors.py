"""Error taxonomy shared by the curation services."""

from __future__ import annotations


class CuratorError(Exception):
    """Base class for errors surfaced by the curation subsystem."""


class ConfigurationError(CuratorError):
    """Provider credentials or AI settings are missing or inactive."""


class NotFoundError(CuratorError):
    """A requested entity does not exist for the requesting user."""


class ProviderError(CuratorError):
    """A call to a generation or embedding provider failed."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(CuratorError, ValueError):
    """The model produced output that could not be parsed."""


class TruncatedResponseError(ParseError):
    """The model hit its token limit before finishing the response."""

    def __init__(self, max_tokens: int | None = None):
        hint = f" (current limit {max_tokens})" if max_tokens else ""
        super().__init__(
            "Response truncated - increase max_tokens to at least 12000 for "
            f"reasoning models{hint}"
        )
        self.max_tokens = max_tokens
