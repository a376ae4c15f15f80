# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Event infrastructure for Guardian Notify.

Components:
- EventBus: In-memory pub/sub with pattern matching
- EventTypes: Centralized lifecycle event constants

Quick Start:
    from guardian_notify.infrastructure.events import EventBus, EventTypes

    bus = EventBus()
    bus.subscribe("notification.*", audit_handler)
    await bus.publish(EventTypes.Notification.SENT, {"notification_id": "n-1"})
"""

from guardian_notify.infrastructure.events.bus import EventBus, EventData, EventHandler
from guardian_notify.infrastructure.events.types import EventTypes

__all__ = [
    "EventBus",
    "EventData",
    "EventHandler",
    "EventTypes",
]
