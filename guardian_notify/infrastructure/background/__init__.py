# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background scheduling for Guardian Notify.

Scheduler:
    from guardian_notify.infrastructure.background import NotificationScheduler

    scheduler = NotificationScheduler()
    scheduler.add_interval_task(name="Queue Tick", func=runtime.tick, seconds=15)
    await scheduler.start()
"""

from guardian_notify.infrastructure.background.scheduler import (
    NotificationScheduler,
    ScheduledTask,
    parse_cron,
)

__all__ = [
    "NotificationScheduler",
    "ScheduledTask",
    "parse_cron",
]
