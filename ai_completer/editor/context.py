"""
Host-editor seam for rewrites.

A host editor exposes its document through the TextBuffer protocol using
character offsets. The helpers here extract the surrounding context sent
with a rewrite and write an accepted rewrite back into the buffer.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@runtime_checkable
class TextBuffer(Protocol):
    """Minimal document surface a host editor provides."""

    def get_value(self) -> str: ...

    def replace_range(self, text: str, start: int, end: int) -> None: ...

    def set_selection(self, start: int, end: int) -> None: ...


class StringBuffer:
    """
    In-memory TextBuffer backed by a StringIO.

    Used by the command line and tests in place of a real editor.
    """

    def __init__(self, text: str = ""):
        self._buffer = io.StringIO(text)
        self.selection: tuple[int, int] = (0, 0)

    def get_value(self) -> str:
        return self._buffer.getvalue()

    def replace_range(self, text: str, start: int, end: int) -> None:
        start, end = _checked_range(self.get_value(), start, end)
        value = self.get_value()
        self._buffer = io.StringIO(value[:start] + text + value[end:])

    def set_selection(self, start: int, end: int) -> None:
        self.selection = _checked_range(self.get_value(), start, end)

    def get_range(self, start: int, end: int) -> str:
        start, end = _checked_range(self.get_value(), start, end)
        return self.get_value()[start:end]


@dataclass(frozen=True)
class SurroundingContext:
    """Text immediately before and after a selection."""
    before: str = ""
    after: str = ""


def _checked_range(document: str, start: int, end: int) -> tuple[int, int]:
    if start < 0 or end < start or end > len(document):
        raise ValueError(
            f"Invalid range {start}..{end} for a document of {len(document)} characters"
        )
    return start, end


def collect_context(
    document: str, start: int, end: int, limit: int
) -> SurroundingContext:
    """
    Collect up to ``limit`` characters on each side of ``[start, end)``.

    ``before`` is right-stripped and ``after`` is left-stripped so the
    selection boundary carries no stray whitespace. A non-positive limit
    yields empty context.
    """
    start, end = _checked_range(document, start, end)
    if limit <= 0:
        return SurroundingContext()

    before = document[max(0, start - limit):start].rstrip()
    after = document[end:min(len(document), end + limit)].lstrip()
    return SurroundingContext(before=before, after=after)


def apply_rewrite(buffer: TextBuffer, start: int, end: int, text: str) -> tuple[int, int]:
    """Replace ``[start, end)`` with ``text`` and select the inserted text."""
    buffer.replace_range(text, start, end)
    new_end = start + len(text)
    buffer.set_selection(start, new_end)
    return start, new_end
