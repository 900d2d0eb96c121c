"""
Provider configuration: registry functions, settings models and the
persistent settings store.
"""

from __future__ import annotations

from .models import Provider, RewriteSettings
from .registry import (
    create_empty_provider,
    migrate_legacy,
    resolve_active,
    resolve_base_url,
    resolve_credential,
    sanitize_providers,
)
from .settings_store import SettingsStore, migrate_settings

__all__ = [
    "Provider",
    "RewriteSettings",
    "SettingsStore",
    "create_empty_provider",
    "migrate_legacy",
    "migrate_settings",
    "resolve_active",
    "resolve_base_url",
    "resolve_credential",
    "sanitize_providers",
]
