# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Centralized event type definitions for Guardian Notify.

Lifecycle events are published on the in-process EventBus so that the UI
layer, operator dashboards and audit sinks can observe the core without
the core depending on them.
"""


class EventTypes:
    """All lifecycle event types organized by domain."""

    class Notification:
        """Delayed delivery queue events."""

        QUEUED = "notification.queued"
        SUPPRESSED = "notification.suppressed"
        CANCELLED = "notification.cancelled"
        READY = "notification.ready"
        SENT = "notification.sent"
        RETRY_SCHEDULED = "notification.retry_scheduled"
        FAILED = "notification.failed"
        ESCALATED = "notification.escalated"
        ESCALATION_BLOCKED = "notification.escalation_blocked"
        ACKNOWLEDGED = "notification.acknowledged"

    class Sync:
        """Offline sync engine events."""

        COMPLETED = "sync.completed"
        CONFLICT = "sync.conflict"
        RESOLVED = "sync.resolved"
        FAILED = "sync.failed"

    class Connectivity:
        """Device connectivity events."""

        CHANGED = "connectivity.changed"

    @classmethod
    def all(cls) -> list[str]:
        """Every event type constant, for registry checks and tests."""
        values: list[str] = []
        for group in (cls.Notification, cls.Sync, cls.Connectivity):
            values.extend(
                value
                for name, value in vars(group).items()
                if name.isupper() and isinstance(value, str)
            )
        return values
