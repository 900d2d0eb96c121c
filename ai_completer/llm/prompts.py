"""Prompt text for rewrite requests."""

from __future__ import annotations

from .models import RewriteRequest

OUTPUT_REQUIREMENT = (
    "Output requirement: return only the rewritten Markdown without extra commentary."
)

# Fixed prompt used by connection tests
CONNECTION_TEST_PROMPT = "Hello"


def build_user_prompt(request: RewriteRequest) -> str:
    """Build the user message for a rewrite.

    Section order and labels are fixed; optional sections are dropped when
    their text is empty. Sections are separated by a blank line.
    """
    sections: list[str] = []

    if request.note_title:
        sections.append(f"Note title: {request.note_title}")

    sections.append(f"Selected Markdown:\n{request.selected_text}")

    if request.before_text:
        sections.append(f"Leading context (truncated):\n{request.before_text}")

    if request.after_text:
        sections.append(f"Trailing context (truncated):\n{request.after_text}")

    sections.append(f"User instructions:\n{request.instructions}")
    sections.append(OUTPUT_REQUIREMENT)

    return "\n\n".join(sections)
