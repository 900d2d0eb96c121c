"""
Incremental SSE parser for chat-completion streams.

Bytes are decoded with a stateful UTF-8 decoder so multi-byte characters split
across reads reassemble correctly. Frames are separated by a blank line and
only ``data:`` lines carry payload. A ``[DONE]`` payload or a terminal
``finish_reason`` completes the stream; an ``error`` payload raises.
"""

from __future__ import annotations

import json
from collections.abc import Callable

import structlog

from ..exceptions import ProtocolError
from ..models import is_terminal_finish_reason
from .models import (
    FrameOutcome,
    RawSSEChunk,
    SSEEventType,
    StreamingStats,
    StreamSession,
)

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"
FRAME_SEPARATOR = "\n\n"

# Characters of a malformed payload kept in the warning log
MAX_LOGGED_PAYLOAD = 200

UpdateCallback = Callable[[str, bool], None]

logger = structlog.get_logger(__name__)


def parse_data_line(raw_line: str) -> RawSSEChunk | None:
    """Parse one line of a frame; returns None for non-data or blank lines."""
    line = raw_line.strip()
    if not line.startswith(DATA_PREFIX):
        return None

    data_content = line[len(DATA_PREFIX):].strip()
    if not data_content:
        return None

    if data_content == DONE_MARKER:
        return RawSSEChunk(
            event_type=SSEEventType.COMPLETION,
            data=None,
            raw_data=DONE_MARKER,
        )

    try:
        parsed_data = json.loads(data_content)
    except json.JSONDecodeError as e:
        return RawSSEChunk(
            event_type=SSEEventType.MALFORMED,
            data=None,
            raw_data=data_content,
            error=f"JSON decode error: {e}",
        )

    if not isinstance(parsed_data, dict):
        return RawSSEChunk(
            event_type=SSEEventType.MALFORMED,
            data=None,
            raw_data=data_content,
            error=f"Expected a JSON object, got {type(parsed_data).__name__}",
        )

    return RawSSEChunk(
        event_type=SSEEventType.CHUNK,
        data=parsed_data,
        raw_data=data_content,
    )


def extract_error_message(payload: dict) -> str | None:
    """Return the provider error message carried by a payload, if any."""
    error = payload.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message.strip():
            return message
        return None
    if isinstance(error, str) and error.strip():
        return error
    return None


def _first_choice(payload: dict) -> dict:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


def extract_delta_content(payload: dict) -> str:
    """Incremental content of a streamed chunk, or an empty string."""
    delta = _first_choice(payload).get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""


def extract_message_content(payload: dict) -> str:
    """Content of a non-streamed completion, or an empty string."""
    message = _first_choice(payload).get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    return content if isinstance(content, str) else ""


def extract_finish_reason(payload: dict) -> str | None:
    finish_reason = _first_choice(payload).get("finish_reason")
    return finish_reason if isinstance(finish_reason, str) else None


class StreamingParser:
    """Turns response bytes into aggregated text and update callbacks.

    One parser serves exactly one call. ``feed`` and ``finish`` return
    ``FrameOutcome.COMPLETE`` once the stream is done; callers stop reading
    at that point.
    """

    def __init__(
        self,
        on_update: UpdateCallback,
        *,
        provider: str | None = None,
        model: str | None = None,
    ):
        self.on_update = on_update
        self.provider = provider
        self.model = model
        self.session = StreamSession()
        self.stats = StreamingStats()

    def feed(self, chunk: bytes) -> FrameOutcome:
        """Decode newly received bytes and process every complete frame."""
        if self.session.completed:
            return FrameOutcome.COMPLETE

        self.stats.bytes_received += len(chunk)
        self._append_text(self.session.decoder.decode(chunk))

        while FRAME_SEPARATOR in self.session.buffer:
            frame, self.session.buffer = self.session.buffer.split(FRAME_SEPARATOR, 1)
            if not frame.strip():
                continue
            if self.process_frame(frame) is FrameOutcome.COMPLETE:
                return FrameOutcome.COMPLETE

        return FrameOutcome.CONTINUE

    def finish(self) -> FrameOutcome:
        """Handle end of input: process any trailing fragment as a last frame."""
        if self.session.completed:
            return FrameOutcome.COMPLETE

        self._append_text(self.session.decoder.decode(b"", final=True))
        remaining, self.session.buffer = self.session.buffer, ""
        if remaining.strip():
            self.process_frame(remaining)

        self.session.completed = True
        return FrameOutcome.COMPLETE

    def process_frame(self, frame: str) -> FrameOutcome:
        """Process the lines of one frame in order."""
        self.stats.total_frames += 1

        for raw_line in frame.split("\n"):
            chunk = parse_data_line(raw_line)
            if chunk is None:
                continue

            if chunk.event_type == SSEEventType.COMPLETION:
                self.flush_final()
                return FrameOutcome.COMPLETE

            if chunk.event_type == SSEEventType.MALFORMED:
                self.stats.malformed_chunks += 1
                logger.warning(
                    "Skipping malformed stream chunk",
                    provider=self.provider,
                    model=self.model,
                    error=chunk.error,
                    payload=chunk.raw_data[:MAX_LOGGED_PAYLOAD],
                )
                continue

            payload = chunk.data or {}
            error_message = extract_error_message(payload)
            if error_message:
                raise ProtocolError(
                    error_message, provider=self.provider, model=self.model
                )

            if content := extract_delta_content(payload):
                self.stats.content_chunks += 1
                self.session.aggregated += content
                self.on_update(self.session.aggregated, False)

            if is_terminal_finish_reason(extract_finish_reason(payload)):
                self.flush_final()
                return FrameOutcome.COMPLETE

        return FrameOutcome.CONTINUE

    def flush_final(self) -> str:
        """Send the terminal update once and return the trimmed aggregate."""
        self.session.completed = True
        final_text = self.session.final_text
        if not self.session.final_sent:
            self.session.final_sent = True
            self.on_update(final_text, True)
        return final_text

    @property
    def aggregated(self) -> str:
        return self.session.aggregated

    def get_stats(self) -> dict[str, int]:
        """Get streaming statistics for monitoring."""
        return {
            "total_frames": self.stats.total_frames,
            "content_chunks": self.stats.content_chunks,
            "malformed_chunks": self.stats.malformed_chunks,
            "bytes_received": self.stats.bytes_received,
        }

    def _append_text(self, text: str) -> None:
        if not text:
            return
        # A CR at the end of one read may pair with an LF at the start of the next
        self.session.buffer = (self.session.buffer + text).replace("\r\n", "\n")
