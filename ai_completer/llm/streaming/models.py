"""
Streaming-specific dataclasses for SSE decoding.
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SSEEventType(Enum):
    """Kinds of ``data:`` payloads found in an SSE frame."""
    CHUNK = "chunk"
    COMPLETION = "completion"
    MALFORMED = "malformed"


class FrameOutcome(Enum):
    """Whether reading should continue after a frame was processed."""
    CONTINUE = "continue"
    COMPLETE = "complete"


@dataclass(frozen=True)
class RawSSEChunk:
    """One ``data:`` payload from an SSE frame."""
    event_type: SSEEventType
    data: dict[str, Any] | None
    raw_data: str
    error: str | None = None


@dataclass
class StreamSession:
    """Mutable state for a single streamed call."""
    decoder: codecs.IncrementalDecoder = field(
        default_factory=lambda: codecs.getincrementaldecoder("utf-8")(errors="replace")
    )
    buffer: str = ""
    aggregated: str = ""
    completed: bool = False
    final_sent: bool = False

    @property
    def has_content(self) -> bool:
        return bool(self.aggregated)

    @property
    def final_text(self) -> str:
        return self.aggregated.strip()


@dataclass
class StreamingStats:
    """Counters for one parsed stream."""
    total_frames: int = 0
    content_chunks: int = 0
    malformed_chunks: int = 0
    bytes_received: int = 0
