"""
Core request dataclasses for chat-completion calls.

This module provides:
- The rewrite request value object
- OpenAI-compatible message and request shapes
- Finish-reason handling for streamed chunks
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# A chunk finish_reason with this value does not end the stream
INCOMPLETE_FINISH_REASON = "incomplete"


class MessageRole(Enum):
    """OpenAI-compatible message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class FinishReason(Enum):
    """OpenAI-compatible finish reasons."""
    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    INCOMPLETE = INCOMPLETE_FINISH_REASON


def is_terminal_finish_reason(finish_reason: Any) -> bool:
    """True when a chunk's finish_reason ends the stream."""
    return bool(finish_reason) and finish_reason != INCOMPLETE_FINISH_REASON


@dataclass(frozen=True)
class RewriteRequest:
    """A single rewrite of a selected span."""
    instructions: str
    selected_text: str
    before_text: str = ""
    after_text: str = ""
    note_title: str | None = None


@dataclass(frozen=True)
class ChatMessage:
    """OpenAI-compatible message structure."""
    role: MessageRole
    content: str

    def to_payload(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class ChatRequest:
    """Complete chat-completion request body."""
    model: str
    messages: list[ChatMessage] = field(default_factory=list)
    temperature: float = 0.3
    max_tokens: int = 1024
    stream: bool = False

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the JSON body; ``stream`` is omitted unless set."""
        payload: dict[str, Any] = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [message.to_payload() for message in self.messages],
            "max_tokens": self.max_tokens,
        }
        if self.stream:
            payload["stream"] = True
        return payload
