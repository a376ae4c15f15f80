# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Offline-first local store and sync engine."""

from guardian_notify.domains.sync.connectivity import ConnectivityMonitor
from guardian_notify.domains.sync.service import SyncEngine

__all__ = [
    "ConnectivityMonitor",
    "SyncEngine",
]
