"""
Provider registry: canonicalization and resolution of configured endpoints.

Raw provider entries come from persisted settings and may be partial, use
camelCase keys, or predate multi-provider support. Everything here returns
fresh Provider instances and never mutates its input.
"""

from __future__ import annotations

import os
import secrets
from collections.abc import Iterable, Mapping
from typing import Any

from ..llm.exceptions import ConfigurationError, CredentialError
from .models import (
    DEFAULT_BASE_URL,
    DEFAULT_MODEL,
    DEFAULT_PROVIDER_ID,
    Provider,
)

DEFAULT_CREDENTIAL_ENV_VAR = "OPENAI_API_KEY"


def generate_id(prefix: str = "provider") -> str:
    """Random identifier such as ``provider-1a2b3c4d``."""
    return f"{prefix}-{secrets.token_hex(4)}"


def coerce_string(value: Any, fallback: str = "") -> str:
    """Trimmed string value, or ``fallback`` for non-strings and blanks."""
    if isinstance(value, str) and value.strip():
        return value.strip()
    return fallback


def pick(raw: Mapping[str, Any], *keys: str) -> Any:
    """First present value among snake_case / camelCase spellings."""
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def sanitize_models(models: Any) -> list[str]:
    """Trimmed, non-empty, unique model ids in first-seen order."""
    if not isinstance(models, list | tuple):
        return []
    unique: dict[str, None] = {}
    for model in models:
        value = model.strip() if isinstance(model, str) else ""
        if value:
            unique.setdefault(value, None)
    return list(unique)


def sanitize_provider(raw: Mapping[str, Any] | Provider) -> Provider:
    """Coerce one raw entry into a Provider with fallback defaults."""
    if isinstance(raw, Provider):
        raw = raw.model_dump()

    last_sync = pick(raw, "last_model_sync", "lastModelSync")
    return Provider(
        id=coerce_string(raw.get("id"), generate_id("provider")),
        name=coerce_string(raw.get("name"), "Provider"),
        base_url=coerce_string(pick(raw, "base_url", "baseUrl"), DEFAULT_BASE_URL),
        api_key=coerce_string(pick(raw, "api_key", "apiKey")),
        models=sanitize_models(raw.get("models")),
        last_model_sync=coerce_string(last_sync) or None,
    )


def default_providers() -> list[Provider]:
    return [
        Provider(
            id=DEFAULT_PROVIDER_ID,
            name="OpenAI",
            base_url=DEFAULT_BASE_URL,
            api_key="",
            models=[DEFAULT_MODEL],
        )
    ]


def create_empty_provider(name: str = "New Provider") -> Provider:
    return Provider(
        id=generate_id("provider"),
        name=name,
        base_url=DEFAULT_BASE_URL,
        api_key="",
        models=[],
    )


def sanitize_providers(
    raw_providers: Iterable[Mapping[str, Any] | Provider] | None,
) -> list[Provider]:
    """
    Canonicalize a provider list.

    Later entries whose id collides with an earlier one get a fresh id, so
    the output ids are unique. Non-mapping entries are skipped. An empty
    result yields a single default provider.
    """
    providers: list[Provider] = []
    seen_ids: set[str] = set()

    for raw in raw_providers or []:
        if not isinstance(raw, Mapping | Provider):
            continue
        provider = sanitize_provider(raw)
        provider_id = provider.id
        while provider_id in seen_ids:
            provider_id = generate_id("provider")
        if provider_id != provider.id:
            provider = provider.model_copy(update={"id": provider_id})
        seen_ids.add(provider_id)
        providers.append(provider)

    if not providers:
        return [create_empty_provider("Default Provider")]
    return providers


def has_legacy_fields(raw: Mapping[str, Any]) -> bool:
    """True for the flat single-endpoint settings shape."""
    return any(
        coerce_string(pick(raw, *keys))
        for keys in (("baseUrl", "base_url"), ("apiKey", "api_key"), ("model",))
    )


def migrate_legacy(raw: Mapping[str, Any]) -> list[Provider]:
    """Convert flat ``baseUrl``/``apiKey``/``model`` settings to one provider."""
    model = coerce_string(raw.get("model"))
    legacy = {
        "id": DEFAULT_PROVIDER_ID,
        "name": "Default Provider",
        "base_url": pick(raw, "baseUrl", "base_url"),
        "api_key": pick(raw, "apiKey", "api_key"),
        "models": [model] if model else [],
    }
    return sanitize_providers([legacy])


def find_provider(providers: Iterable[Provider], provider_id: str | None) -> Provider | None:
    return next((p for p in providers if p.id == provider_id), None)


def resolve_active(
    providers: list[Provider],
    requested_id: str | None,
    requested_model: str | None,
) -> tuple[Provider, str]:
    """
    Pick the provider and model to use for a call.

    Unknown ids fall back to the first provider. A blank model, or one the
    provider does not list while it lists some, falls back to the provider's
    first known model. Free-text models are kept when the provider lists none.

    Raises:
        ConfigurationError: If no provider is configured
    """
    if not providers:
        raise ConfigurationError("No provider configured yet.")

    provider = find_provider(providers, requested_id) or providers[0]
    model = requested_model or ""

    if provider.models and (not model.strip() or model not in provider.models):
        return provider, provider.models[0]
    return provider, model


def resolve_credential(
    provider: Provider, env_var: str = DEFAULT_CREDENTIAL_ENV_VAR
) -> str:
    """
    Resolve the bearer token: provider key first, then the environment.

    Raises:
        CredentialError: If neither source yields a non-blank key
    """
    provider_key = provider.api_key.strip()
    env_key = os.environ.get(env_var, "").strip()
    api_key = provider_key or env_key

    if not api_key:
        raise CredentialError(
            f"Provide an API key for {provider.name} or set the {env_var} "
            "environment variable before sending a request.",
            provider=provider.name,
        )

    return api_key


def resolve_base_url(provider: Provider, fallback: str = DEFAULT_BASE_URL) -> str:
    """Base URL without trailing slashes, defaulting when blank."""
    return (provider.base_url.strip() or fallback).rstrip("/")
