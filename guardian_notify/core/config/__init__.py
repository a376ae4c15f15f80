# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration package for Guardian Notify.

This package provides centralized configuration management:
- Settings: Pydantic-based settings loaded from environment variables
- YAML loader: Utilities for loading rule files

Example:
    >>> from guardian_notify.core.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.environment)
    'development'
"""

from guardian_notify.core.config.settings import (
    DeliverySettings,
    LocalDatabaseSettings,
    SchedulerSettings,
    Settings,
    SuppressionSettings,
    SyncSettings,
    clear_settings_cache,
    get_settings,
)
from guardian_notify.core.config.yaml_loader import (
    YAMLLoadError,
    deep_merge,
    load_yaml,
    load_yaml_documents,
)

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "clear_settings_cache",
    # Subsettings
    "LocalDatabaseSettings",
    "DeliverySettings",
    "SuppressionSettings",
    "SchedulerSettings",
    "SyncSettings",
    # YAML utilities
    "load_yaml",
    "load_yaml_documents",
    "deep_merge",
    "YAMLLoadError",
]
