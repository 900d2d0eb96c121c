#!/usr/bin/env python3
"""
Settings Storage Module

Persists the rewrite settings (providers, active selection, prompt options)
as a single JSON document with cross-process file locking.

Key Components:
- migrate_settings: turns any persisted shape (current, camelCase, legacy
  single-endpoint, or nothing) into a validated RewriteSettings snapshot
- SettingsStore: async JSON store with atomic update operations

Every mutation goes through ``_update_locked`` which merges the patch, re-runs
migration, writes the file atomically and returns the new snapshot. Callers
never mutate settings in place.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import os
from collections.abc import AsyncGenerator, Callable, Mapping
from contextlib import asynccontextmanager, suppress
from datetime import UTC, datetime
from typing import Any

import aiofiles
from filelock import FileLock, Timeout

from ..llm.exceptions import ConfigurationError
from .models import (
    DEFAULT_INSTRUCTIONS_PLACEHOLDER,
    DEFAULT_MAX_CONTEXT_CHARACTERS,
    DEFAULT_MODEL,
    DEFAULT_SYSTEM_PROMPT,
    DEFAULT_TEMPERATURE,
    Provider,
    RewriteSettings,
)
from .registry import (
    coerce_string,
    create_empty_provider,
    default_providers,
    find_provider,
    has_legacy_fields,
    migrate_legacy,
    pick,
    sanitize_models,
    sanitize_providers,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def async_file_lock(
    file_path: str, timeout: float = 10.0
) -> AsyncGenerator[None]:
    """
    Async context manager for cross-process file locking with timeout.

    Args:
        file_path: Path to the file that needs to be locked
        timeout: Maximum time to wait for the lock (seconds)

    Raises:
        TimeoutError: If the lock cannot be acquired within the timeout period
    """
    lock_path = f"{file_path}.lock"
    file_lock = FileLock(lock_path, timeout=timeout)

    loop = asyncio.get_running_loop()

    try:
        await loop.run_in_executor(None, file_lock.acquire)
    except Timeout as e:
        raise TimeoutError(f"Failed to acquire file lock within {timeout}s") from e

    try:
        yield
    finally:
        with suppress(OSError):
            await loop.run_in_executor(None, file_lock.release)


def _clamp_temperature(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return DEFAULT_TEMPERATURE
    if not math.isfinite(value):
        return DEFAULT_TEMPERATURE
    return min(max(float(value), 0.0), 1.0)


def _context_characters(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return DEFAULT_MAX_CONTEXT_CHARACTERS
    if not math.isfinite(value) or value < 0:
        return DEFAULT_MAX_CONTEXT_CHARACTERS
    return round(value)


def migrate_settings(raw: Mapping[str, Any] | RewriteSettings | None) -> RewriteSettings:
    """
    Build a validated settings snapshot from any persisted shape.

    Args:
        raw: Current or legacy settings mapping, an existing snapshot, or None

    Returns:
        RewriteSettings with at least one provider and unique provider ids
    """
    if isinstance(raw, RewriteSettings):
        raw = raw.model_dump()
    data: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}

    raw_providers = data.get("providers")
    if isinstance(raw_providers, list) and raw_providers:
        providers = sanitize_providers(raw_providers)
    elif has_legacy_fields(data):
        providers = migrate_legacy(data)
    else:
        providers = default_providers()

    requested_id = pick(data, "active_provider_id", "activeProviderId")
    if isinstance(requested_id, str):
        active_provider = find_provider(providers, requested_id.strip()) or providers[0]
    else:
        active_provider = providers[0]

    provided_model = coerce_string(pick(data, "active_model", "activeModel"))
    active_model = (
        provided_model
        or (active_provider.models[0] if active_provider.models else "")
        or DEFAULT_MODEL
    )

    system_prompt = pick(data, "system_prompt", "systemPrompt")
    placeholder = pick(data, "instructions_placeholder", "instructionsPlaceholder")

    return RewriteSettings(
        providers=providers,
        active_provider_id=active_provider.id,
        active_model=active_model,
        temperature=_clamp_temperature(data.get("temperature")),
        max_context_characters=_context_characters(
            pick(data, "max_context_characters", "maxContextCharacters")
        ),
        system_prompt=(
            system_prompt.strip() if isinstance(system_prompt, str) else DEFAULT_SYSTEM_PROMPT
        ),
        instructions_placeholder=(
            placeholder if isinstance(placeholder, str) else DEFAULT_INSTRUCTIONS_PLACEHOLDER
        ),
    )


class SettingsStore:
    """
    Async JSON settings store with cross-process locking.

    Reads and writes go through aiofiles; writes land in a temporary file that
    replaces the target atomically. An asyncio.Lock serializes updates inside
    the process and a FileLock serializes them across processes.
    """

    def __init__(self, path: str, lock_timeout: float = 10.0):
        self.path = path
        self.lock_timeout = lock_timeout
        self._lock = asyncio.Lock()
        self._settings: RewriteSettings = migrate_settings(None)
        self._loaded = False

    @property
    def snapshot(self) -> RewriteSettings:
        """Current validated settings (a copy; mutating it has no effect)."""
        return self._settings.model_copy(deep=True)

    async def load(self) -> RewriteSettings:
        """Load settings from disk, migrating older shapes."""
        async with self._lock:
            raw = await self._read_raw()
            self._settings = migrate_settings(raw)
            self._loaded = True
            return self.snapshot

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    async def _read_raw(self) -> dict[str, Any] | None:
        try:
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError:
            # No settings file yet - defaults apply
            return None

        if not content.strip():
            return None
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring unreadable settings file {self.path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Ignoring settings file {self.path}: expected a JSON object")
            return None
        return data

    async def _write(self, settings: RewriteSettings) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        tmp_path = f"{self.path}.tmp"
        data = json.dumps(settings.model_dump(mode="json"), ensure_ascii=False, indent=2)
        async with async_file_lock(self.path, timeout=self.lock_timeout):
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(data + "\n")
                await f.flush()
            os.replace(tmp_path, self.path)

    async def _update_locked(
        self, mutator: Callable[[RewriteSettings], dict[str, Any]]
    ) -> RewriteSettings:
        """
        Build a patch from the current settings and persist it atomically.

        ``mutator`` runs while the store lock is held, so it always sees the
        result of every earlier mutation. It may raise to abort the update.

        Returns:
            The new settings snapshot
        """
        await self._ensure_loaded()

        async with self._lock:
            patch = mutator(self._settings)
            merged = {**self._settings.model_dump(), **patch}
            settings = migrate_settings(merged)
            await self._write(settings)
            self._settings = settings
            logger.info(f"Settings updated: {', '.join(sorted(patch)) or 'no changes'}")
            return self.snapshot

    async def update(self, **patch: Any) -> RewriteSettings:
        """Merge ``patch`` into the current settings, validate and persist."""
        return await self._update_locked(lambda _current: patch)

    async def select(self, provider_id: str, model: str) -> RewriteSettings:
        """Persist the active provider and model."""
        return await self.update(active_provider_id=provider_id, active_model=model.strip())

    async def add_provider(self, name: str | None = None) -> Provider:
        """Append an empty provider and make it active."""
        created: list[Provider] = []

        def append(current: RewriteSettings) -> dict[str, Any]:
            provider = create_empty_provider(name or f"Provider {len(current.providers) + 1}")
            created.append(provider)
            return {
                "providers": [*current.providers, provider],
                "active_provider_id": provider.id,
                "active_model": "",
            }

        settings = await self._update_locked(append)
        return settings.get_provider(created[0].id)

    async def update_provider(self, provider_id: str, **patch: Any) -> Provider:
        """Apply field changes to one provider; ids are stable and never patched."""
        patch.pop("id", None)
        if "models" in patch:
            patch["models"] = sanitize_models(patch["models"])

        def apply(current: RewriteSettings) -> dict[str, Any]:
            if current.get_provider(provider_id) is None:
                raise ConfigurationError(f"Unknown provider '{provider_id}'.")
            return {
                "providers": [
                    provider.model_copy(update=patch) if provider.id == provider_id else provider
                    for provider in current.providers
                ]
            }

        settings = await self._update_locked(apply)
        return settings.get_provider(provider_id)

    async def remove_provider(self, provider_id: str) -> RewriteSettings:
        """
        Remove a provider.

        Raises:
            ConfigurationError: If it is the last provider or the id is unknown
        """

        def remove(current: RewriteSettings) -> dict[str, Any]:
            if current.get_provider(provider_id) is None:
                raise ConfigurationError(f"Unknown provider '{provider_id}'.")
            if len(current.providers) <= 1:
                raise ConfigurationError("You must keep at least one provider.")

            providers = [p for p in current.providers if p.id != provider_id]
            if current.active_provider_id != provider_id:
                return {"providers": providers}

            active = providers[0]
            return {
                "providers": providers,
                "active_provider_id": active.id,
                "active_model": active.models[0] if active.models else "",
            }

        return await self._update_locked(remove)

    async def record_model_sync(self, provider_id: str, models: list[str]) -> Provider:
        """Store a fetched model list with the sync timestamp."""
        return await self.update_provider(
            provider_id,
            models=models,
            last_model_sync=datetime.now(UTC).isoformat(),
        )
