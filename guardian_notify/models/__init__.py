# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Read models and typed outcomes returned by the public services."""

from guardian_notify.models.notification import (
    CANCELLABLE_STATUSES,
    AckOutcome,
    AckStatus,
    CancelOutcome,
    CancelStatus,
    DispatchReport,
    NotificationStatus,
    NotificationTransitionEntry,
    QueuedNotification,
    SubmitOutcome,
    SubmitStatus,
)
from guardian_notify.models.sync import (
    ConflictResolution,
    EntityType,
    LocalEntity,
    ResolveOutcome,
    ResolveStatus,
    SyncItem,
    SyncReport,
    SyncStats,
    SyncStatus,
)

__all__ = [
    # Notifications
    "NotificationStatus",
    "CANCELLABLE_STATUSES",
    "QueuedNotification",
    "NotificationTransitionEntry",
    "SubmitStatus",
    "SubmitOutcome",
    "CancelStatus",
    "CancelOutcome",
    "AckStatus",
    "AckOutcome",
    "DispatchReport",
    # Sync
    "EntityType",
    "SyncStatus",
    "ConflictResolution",
    "LocalEntity",
    "SyncItem",
    "SyncReport",
    "SyncStats",
    "ResolveStatus",
    "ResolveOutcome",
]
