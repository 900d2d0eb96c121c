"""
AI Completer: streaming rewrites of selected Markdown through
OpenAI-compatible chat-completion providers.
"""

from __future__ import annotations

from .config import Configuration
from .llm import (
    CompletionClient,
    ConfigurationError,
    CredentialError,
    EmptyResponseError,
    ProtocolError,
    RewriteError,
    RewriteRequest,
    TransportError,
)
from .providers import Provider, RewriteSettings, SettingsStore

__version__ = "0.1.0"

__all__ = [
    "CompletionClient",
    "Configuration",
    "ConfigurationError",
    "CredentialError",
    "EmptyResponseError",
    "ProtocolError",
    "Provider",
    "RewriteError",
    "RewriteRequest",
    "RewriteSettings",
    "SettingsStore",
    "TransportError",
    "__version__",
]
