# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Durable backend adapters for the offline sync engine.

Available backends:
- HttpSyncBackend: JSON over HTTP (production)
- InMemorySyncBackend: In-process store (development and tests)
"""

from guardian_notify.infrastructure.sync.backend import (
    SyncBackend,
    SyncRecord,
    UpsertResult,
    UpsertStatus,
)
from guardian_notify.infrastructure.sync.http import HttpSyncBackend
from guardian_notify.infrastructure.sync.memory import InMemorySyncBackend, ServerRecord

__all__ = [
    "SyncBackend",
    "SyncRecord",
    "UpsertResult",
    "UpsertStatus",
    "HttpSyncBackend",
    "InMemorySyncBackend",
    "ServerRecord",
]
