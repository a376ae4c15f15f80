# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-memory event bus for Guardian Notify lifecycle events.

Supports exact event types ("notification.sent") and fnmatch wildcard
patterns ("notification.*", "*.conflict"). Handlers are async and are
called concurrently; a failing handler is logged and never affects the
publisher or the other handlers.

Example:
    from guardian_notify.infrastructure.events import EventBus, EventTypes

    bus = EventBus()

    async def on_failed(event):
        alert_operator(event.payload["notification_id"])

    bus.subscribe(EventTypes.Notification.FAILED, on_failed)
    await bus.publish(EventTypes.Notification.FAILED, {"notification_id": "n-1"})
"""

import asyncio
import fnmatch
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable
from uuid import uuid4

from guardian_notify.utils.datetime import utc_now

logger = logging.getLogger(__name__)

EventHandler = Callable[["EventData"], Awaitable[None]]


@dataclass
class EventData:
    """Container for event data with metadata.

    Attributes:
        event_type: The event type string.
        payload: The event payload data.
        event_id: Unique event identifier.
        timestamp: When the event was published.
        school_id: School the event belongs to, if any.
    """

    event_type: str
    payload: dict[str, Any]
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utc_now)
    school_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
            "school_id": self.school_id,
        }


def _is_pattern(event_type: str) -> bool:
    return "*" in event_type or "?" in event_type


class EventBus:
    """In-memory async event bus with pattern matching support.

    Designed for single-process async use; the bus is owned by the
    runtime and passed to the components that publish.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._pattern_handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._event_count = 0
        self._error_count = 0

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe a handler to an event type or wildcard pattern."""
        registry = self._pattern_handlers if _is_pattern(event_type) else self._handlers
        registry[event_type].append(handler)
        logger.debug("Subscribed handler to: %s", event_type)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        """Unsubscribe a handler.

        Returns:
            True if the handler was found and removed, False otherwise.
        """
        registry = self._pattern_handlers if _is_pattern(event_type) else self._handlers
        handlers = registry.get(event_type)
        if not handlers or handler not in handlers:
            return False
        handlers.remove(handler)
        if not handlers:
            del registry[event_type]
        return True

    def _matching_handlers(self, event_type: str) -> list[EventHandler]:
        matched = list(self._handlers.get(event_type, ()))
        for pattern, handlers in self._pattern_handlers.items():
            if fnmatch.fnmatch(event_type, pattern):
                matched.extend(handlers)
        return matched

    async def publish(
        self,
        event_type: str,
        payload: dict[str, Any],
        school_id: str | None = None,
    ) -> EventData:
        """Publish an event to all matching subscribers.

        Args:
            event_type: The event type string.
            payload: Event data dictionary.
            school_id: Optional school the event belongs to.

        Returns:
            EventData object with event metadata.
        """
        event = EventData(event_type=event_type, payload=payload, school_id=school_id)
        self._event_count += 1

        handlers = self._matching_handlers(event_type)
        if not handlers:
            logger.debug("No handlers for event: %s", event_type)
            return event

        async def safe_call(handler: EventHandler) -> None:
            try:
                await handler(event)
            except Exception as e:
                self._error_count += 1
                logger.error(
                    "Handler error for event %s: %s",
                    event_type,
                    str(e),
                    exc_info=True,
                )

        await asyncio.gather(*(safe_call(handler) for handler in handlers))
        return event

    def clear(self) -> None:
        """Remove all subscriptions."""
        self._handlers.clear()
        self._pattern_handlers.clear()

    def get_stats(self) -> dict[str, Any]:
        """Get subscription and publish counters."""
        return {
            "exact_subscriptions": len(self._handlers),
            "pattern_subscriptions": len(self._pattern_handlers),
            "total_handlers": sum(len(h) for h in self._handlers.values())
            + sum(len(h) for h in self._pattern_handlers.values()),
            "events_published": self._event_count,
            "handler_errors": self._error_count,
        }
