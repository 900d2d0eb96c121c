# ai_completer/providers/models.py
from __future__ import annotations

from pydantic import BaseModel, Field

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_PROVIDER_ID = "openai-default"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_CONTEXT_CHARACTERS = 800
DEFAULT_SYSTEM_PROMPT = (
    "You are an assistant that helps users improve Markdown notes. When you "
    "rewrite text, keep the meaning of the original passage, preserve Markdown "
    "formatting, and follow the user instructions precisely."
)
DEFAULT_INSTRUCTIONS_PLACEHOLDER = (
    "Example: Make the tone more professional while keeping all Markdown formatting."
)


class Provider(BaseModel):
    """A configured OpenAI-compatible endpoint."""
    id: str
    name: str = "Provider"
    base_url: str = DEFAULT_BASE_URL
    api_key: str = Field(default="", repr=False)
    models: list[str] = Field(default_factory=list)
    last_model_sync: str | None = None

    def knows_model(self, model: str) -> bool:
        return model in self.models


class RewriteSettings(BaseModel):
    """
    Validated snapshot of everything the rewrite flow is configured with.
    """
    providers: list[Provider]
    active_provider_id: str | None = None
    active_model: str = ""
    temperature: float = DEFAULT_TEMPERATURE
    max_context_characters: int = DEFAULT_MAX_CONTEXT_CHARACTERS
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    instructions_placeholder: str = DEFAULT_INSTRUCTIONS_PLACEHOLDER

    def get_provider(self, provider_id: str | None) -> Provider | None:
        return next(
            (provider for provider in self.providers if provider.id == provider_id),
            None,
        )

    def get_active_provider(self) -> Provider | None:
        """Active provider, or the first one when the id is stale."""
        provider = self.get_provider(self.active_provider_id)
        if provider is not None:
            return provider
        return self.providers[0] if self.providers else None
