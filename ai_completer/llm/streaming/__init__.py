"""
Streaming functionality for the completion client.

- Incremental UTF-8 decoding and SSE frame extraction
- Delta-chunk accumulation with update callbacks
- Terminal signal detection ([DONE] and finish_reason)
"""

from __future__ import annotations

from .models import FrameOutcome, RawSSEChunk, SSEEventType, StreamSession
from .parser import StreamingParser, parse_data_line

__all__ = [
    "FrameOutcome",
    "RawSSEChunk",
    "SSEEventType",
    "StreamSession",
    "StreamingParser",
    "parse_data_line",
]
