"""
Editor integration: document seam and the rewrite review flow.
"""

from __future__ import annotations

from .context import (
    StringBuffer,
    SurroundingContext,
    TextBuffer,
    apply_rewrite,
    collect_context,
)
from .view_model import FALLBACK_INSTRUCTIONS, RewriteSession, SessionState

__all__ = [
    "FALLBACK_INSTRUCTIONS",
    "RewriteSession",
    "SessionState",
    "StringBuffer",
    "SurroundingContext",
    "TextBuffer",
    "apply_rewrite",
    "collect_context",
]
