# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy ORM models for the local store.

Importing this package registers every table on ``Base.metadata``.
"""

from guardian_notify.infrastructure.database.models.base import Base, UTCDateTime
from guardian_notify.infrastructure.database.models.notification import (
    NotificationTransition,
    QueuedNotification,
)
from guardian_notify.infrastructure.database.models.suppression import SuppressionRecord
from guardian_notify.infrastructure.database.models.sync import OfflineSyncItem

__all__ = [
    "Base",
    "UTCDateTime",
    "SuppressionRecord",
    "QueuedNotification",
    "NotificationTransition",
    "OfflineSyncItem",
]
