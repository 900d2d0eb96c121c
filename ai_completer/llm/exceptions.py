"""
Error types for rewrite and provider operations.

Every failure surfaced to a caller derives from RewriteError and carries the
provider and model involved where they are known:
- ConfigurationError for a missing model or provider selection
- CredentialError when no API key can be resolved
- TransportError for non-2xx statuses and connection failures
- ProtocolError for an explicit error payload from the provider
- EmptyResponseError when a call completes without any content
"""

from __future__ import annotations


class RewriteError(Exception):
    """Base rewrite error with provider context."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        model: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.model = model
        self.status_code = status_code


class ConfigurationError(RewriteError):
    """Missing or invalid model/provider selection."""
    pass


class CredentialError(RewriteError):
    """No API key could be resolved for the provider."""
    pass


class TransportError(RewriteError):
    """HTTP status or connection failure."""

    def __init__(
        self,
        message: str,
        snippet: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.snippet = snippet


class ProtocolError(RewriteError):
    """The provider returned an explicit error payload."""
    pass


class EmptyResponseError(RewriteError):
    """The call completed without producing any content."""
    pass
