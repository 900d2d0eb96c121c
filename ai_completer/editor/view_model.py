"""
Rewrite review flow, independent of any UI toolkit.

RewriteSession holds the state a review dialog renders: the provider and
model selection, the streamed output, a status line and the request state.
A UI binds its widgets to these attributes and calls ``generate`` and
``apply``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum

from ..llm.exceptions import EmptyResponseError, RewriteError
from ..providers.models import Provider

logger = logging.getLogger(__name__)

FALLBACK_INSTRUCTIONS = (
    "Rewrite this passage to improve clarity while preserving the original meaning."
)
MAX_PREVIEW_LENGTH = 400
ELLIPSIS = "…"

STATUS_IDLE = "Add instructions and send them to generate a rewrite."
STATUS_CONTACTING = "Contacting the model, streaming response..."
STATUS_RECEIVING = "Receiving response..."
STATUS_READY = "Ready. Review the result and apply it when satisfied."
STATUS_EMPTY = "The response was empty. Adjust the prompt and try again."
STATUS_BUSY = "A rewrite is already in progress."
STATUS_NO_PROVIDER = "Select a provider before requesting a rewrite."
STATUS_NO_MODEL = "Enter a model identifier before requesting a rewrite."

# (instructions, provider_id, model, on_update) -> final text
RequestRewrite = Callable[
    [str, str, str, Callable[[str, bool], None]], Awaitable[str]
]
PersistSelection = Callable[[str, str], Awaitable[None]]


class SessionState(Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    READY = "ready"
    EMPTY = "empty"
    FAILED = "failed"


class RewriteSession:
    """State and actions of one review dialog."""

    def __init__(
        self,
        selected_text: str,
        providers: Sequence[Provider],
        initial_provider_id: str | None,
        initial_model: str,
        request_rewrite: RequestRewrite,
        persist_selection: PersistSelection | None = None,
        fallback_instructions: str = FALLBACK_INSTRUCTIONS,
    ):
        self.selected_text = selected_text
        self.providers = list(providers)
        self.request_rewrite = request_rewrite
        self.persist_selection = persist_selection
        self.fallback_instructions = fallback_instructions

        self.selected_provider_id = self._resolve_initial_provider_id(initial_provider_id)
        self.selected_model = self._resolve_initial_model(initial_model)

        self.state = SessionState.IDLE
        self.status = STATUS_IDLE
        self.output = ""
        self.error: RewriteError | None = None
        self.is_requesting = False
        self._last_persisted: tuple[str, str] | None = None

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    @property
    def current_provider(self) -> Provider | None:
        return next(
            (p for p in self.providers if p.id == self.selected_provider_id), None
        )

    @property
    def preview(self) -> str:
        if len(self.selected_text) > MAX_PREVIEW_LENGTH:
            return self.selected_text[:MAX_PREVIEW_LENGTH] + ELLIPSIS
        return self.selected_text

    def _resolve_initial_provider_id(self, requested_id: str | None) -> str:
        if requested_id and any(p.id == requested_id for p in self.providers):
            return requested_id
        return self.providers[0].id if self.providers else ""

    def _resolve_initial_model(self, requested_model: str) -> str:
        provider = self.current_provider
        model = (requested_model or "").strip()
        if provider is None:
            return model
        if model and (not provider.models or provider.knows_model(model)):
            return model
        return provider.models[0] if provider.models else model

    async def select_provider(self, provider_id: str) -> None:
        """Switch provider, keeping the model when the new provider allows it."""
        self.selected_provider_id = provider_id
        provider = self.current_provider
        if provider is None:
            self.selected_model = ""
            return
        if provider.models and not provider.knows_model(self.selected_model):
            self.selected_model = provider.models[0]
        await self._persist()

    async def select_model(self, model: str) -> None:
        """Select a listed or free-text model; blank input is ignored."""
        value = model.strip()
        if not value:
            return
        self.selected_model = value
        await self._persist()

    async def _persist(self) -> None:
        if self.persist_selection is None or not self.selected_provider_id:
            return
        key = (self.selected_provider_id, self.selected_model)
        if key == self._last_persisted:
            return
        self._last_persisted = key
        await self.persist_selection(*key)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def on_update(self, partial: str, done: bool) -> None:
        self.output = partial
        if not done:
            self.state = SessionState.STREAMING
            self.status = STATUS_RECEIVING
        elif partial.strip():
            self.state = SessionState.READY
            self.status = STATUS_READY
        else:
            self.state = SessionState.EMPTY
            self.status = STATUS_EMPTY

    async def generate(self, instructions: str = "") -> str | None:
        """
        Request a rewrite and stream it into ``output``.

        Returns:
            The rewritten text, or None when nothing usable was produced
        """
        if self.is_requesting:
            self.status = STATUS_BUSY
            return None
        if self.current_provider is None:
            self.status = STATUS_NO_PROVIDER
            return None
        model = self.selected_model.strip()
        if not model:
            self.status = STATUS_NO_MODEL
            return None

        text = instructions.strip() or self.fallback_instructions

        self.is_requesting = True
        self.error = None
        self.output = ""
        self.state = SessionState.STREAMING
        self.status = STATUS_CONTACTING

        try:
            await self._persist()
            result = await self.request_rewrite(
                text, self.selected_provider_id, model, self.on_update
            )
        except EmptyResponseError:
            self.on_update("", True)
            return None
        except RewriteError as e:
            logger.warning(f"Rewrite failed: {e.message}")
            self.error = e
            self.state = SessionState.FAILED
            self.status = f"Request failed: {e.message}"
            return None
        finally:
            self.is_requesting = False

        if self.state is SessionState.STREAMING:
            self.on_update(result, True)
        return result if self.state is SessionState.READY else None

    def edit_output(self, text: str) -> None:
        self.output = text

    def apply(self) -> str | None:
        """Trimmed output to write back, or None when there is nothing to apply."""
        value = self.output.strip()
        return value or None
