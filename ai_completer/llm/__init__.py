"""
Chat-completion integration for the rewrite flow.

This package provides:
- The streaming completion client with blocking fallback
- Request value objects and prompt construction
- The rewrite error hierarchy
"""

from __future__ import annotations

from .client import CompletionClient
from .exceptions import (
    ConfigurationError,
    CredentialError,
    EmptyResponseError,
    ProtocolError,
    RewriteError,
    TransportError,
)
from .models import (
    ChatMessage,
    ChatRequest,
    FinishReason,
    MessageRole,
    RewriteRequest,
)
from .prompts import build_user_prompt

__all__ = [
    "ChatMessage",
    "ChatRequest",
    # Client
    "CompletionClient",
    # Exceptions
    "ConfigurationError",
    "CredentialError",
    "EmptyResponseError",
    # Core models
    "FinishReason",
    "MessageRole",
    "ProtocolError",
    "RewriteError",
    "RewriteRequest",
    "TransportError",
    "build_user_prompt",
]
