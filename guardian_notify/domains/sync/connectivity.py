# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Device connectivity state.

Going online runs the registered listeners once (the sync engine registers
a sync pass). Going offline only flips the flag; nothing queued locally is
touched.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from guardian_notify.infrastructure.events import EventBus, EventTypes
from guardian_notify.utils.datetime import Clock, SystemClock

logger = logging.getLogger(__name__)

OnlineListener = Callable[[], Awaitable[Any]]


class ConnectivityMonitor:
    """Tracks whether the device can reach the backend."""

    def __init__(
        self,
        event_bus: EventBus | None = None,
        clock: Clock | None = None,
        online: bool = True,
    ) -> None:
        self._event_bus = event_bus
        self._clock = clock or SystemClock()
        self._online = online
        self._changed_at: datetime | None = None
        self._listeners: list[OnlineListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def changed_at(self) -> datetime | None:
        return self._changed_at

    def on_online(self, listener: OnlineListener) -> None:
        """Register a coroutine function to run on each offline -> online edge."""
        self._listeners.append(listener)

    async def set_online(self, online: bool) -> bool:
        """Record a connectivity transition.

        Args:
            online: New connectivity state.

        Returns:
            True if the state changed.
        """
        if online == self._online:
            return False

        self._online = online
        self._changed_at = self._clock.now()
        logger.info("Connectivity changed: %s", "online" if online else "offline")

        if self._event_bus is not None:
            await self._event_bus.publish(
                EventTypes.Connectivity.CHANGED,
                {"online": online, "changed_at": self._changed_at.isoformat()},
            )

        if online:
            for listener in list(self._listeners):
                await listener()
        return True
