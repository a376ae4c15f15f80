# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the in-memory event bus."""

import pytest

from guardian_notify.infrastructure.events import EventBus, EventData, EventTypes


class Collector:
    def __init__(self) -> None:
        self.events: list[EventData] = []

    async def __call__(self, event: EventData) -> None:
        self.events.append(event)


class TestSubscriptions:
    """Tests for exact and wildcard subscriptions."""

    @pytest.mark.asyncio
    async def test_exact_subscription(self) -> None:
        bus = EventBus()
        collector = Collector()
        bus.subscribe(EventTypes.Notification.SENT, collector)

        event = await bus.publish(EventTypes.Notification.SENT, {"notification_id": "n-1"}, school_id="school-1")
        await bus.publish(EventTypes.Notification.FAILED, {"notification_id": "n-2"})

        assert collector.events == [event]
        assert event.school_id == "school-1"
        assert event.to_dict()["payload"] == {"notification_id": "n-1"}

    @pytest.mark.asyncio
    async def test_wildcard_patterns(self) -> None:
        bus = EventBus()
        notifications = Collector()
        conflicts = Collector()
        bus.subscribe("notification.*", notifications)
        bus.subscribe("*.conflict", conflicts)

        await bus.publish(EventTypes.Notification.QUEUED, {})
        await bus.publish(EventTypes.Notification.ESCALATED, {})
        await bus.publish(EventTypes.Sync.CONFLICT, {})

        assert [e.event_type for e in notifications.events] == ["notification.queued", "notification.escalated"]
        assert [e.event_type for e in conflicts.events] == ["sync.conflict"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self) -> None:
        bus = EventBus()
        collector = Collector()
        bus.subscribe("sync.*", collector)

        assert bus.unsubscribe("sync.*", collector) is True
        assert bus.unsubscribe("sync.*", collector) is False

        await bus.publish(EventTypes.Sync.COMPLETED, {})
        assert collector.events == []

    def test_clear(self) -> None:
        bus = EventBus()
        bus.subscribe("*", Collector())
        bus.subscribe(EventTypes.Sync.FAILED, Collector())

        bus.clear()

        assert bus.get_stats()["total_handlers"] == 0


class TestHandlerFailures:
    """A failing handler never affects the publisher."""

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self) -> None:
        bus = EventBus()
        collector = Collector()

        async def broken(event: EventData) -> None:
            raise RuntimeError("handler exploded")

        bus.subscribe(EventTypes.Notification.SENT, broken)
        bus.subscribe(EventTypes.Notification.SENT, collector)

        await bus.publish(EventTypes.Notification.SENT, {})

        assert len(collector.events) == 1
        stats = bus.get_stats()
        assert stats["handler_errors"] == 1
        assert stats["events_published"] == 1
        assert stats["exact_subscriptions"] == 1
        assert stats["total_handlers"] == 2


class TestEventTypes:
    def test_all_event_types_are_namespaced(self) -> None:
        values = EventTypes.all()

        assert "connectivity.changed" in values
        assert len(values) == len(set(values)) == 14
        assert all(value.split(".")[0] in {"notification", "sync", "connectivity"} for value in values)
