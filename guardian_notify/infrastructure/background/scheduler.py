# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Scheduler for the periodic notification jobs.

Uses APScheduler to run coroutine jobs on an interval or a cron
expression. Promotion of pending notifications, dispatch, escalation,
background sync and ledger pruning are all driven from here, never from
a UI lifecycle.

Example:
    from guardian_notify.infrastructure.background import NotificationScheduler

    scheduler = NotificationScheduler()

    # Runs every 15 seconds
    scheduler.add_interval_task(name="Queue Tick", func=runtime.tick, seconds=15)

    # Runs daily at 02:15
    scheduler.add_cron_task(
        name="Prune Suppression Ledger",
        func=runtime.prune,
        cron_expression="15 2 * * *",
    )

    await scheduler.start()
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[Any]]


@dataclass
class ScheduledTask:
    """Configuration and counters for a scheduled job.

    Attributes:
        id: Unique task identifier.
        name: Human-readable task name.
        func: Coroutine function to run.
        trigger: APScheduler trigger.
        schedule: Human-readable schedule description.
        enabled: Whether the task is enabled.
        last_run: Last run timestamp.
        last_result: Value returned by the last successful run.
        run_count: Total number of runs.
        error_count: Number of failed runs.
    """

    name: str
    func: JobFunc
    trigger: BaseTrigger
    schedule: str
    id: str = field(default_factory=lambda: str(uuid4()))
    enabled: bool = True
    start_immediately: bool = False
    last_run: datetime | None = None
    last_result: Any = None
    run_count: int = 0
    error_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "schedule": self.schedule,
            "enabled": self.enabled,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
        }


def parse_cron(cron_expression: str) -> CronTrigger:
    """Build a CronTrigger from a five-field cron expression.

    Raises:
        ValueError: If the expression does not have five fields.
    """
    parts = cron_expression.split()
    if len(parts) != 5:
        raise ValueError(f"Invalid cron expression: {cron_expression}")

    return CronTrigger(
        minute=parts[0],
        hour=parts[1],
        day=parts[2],
        month=parts[3],
        day_of_week=parts[4],
        timezone=timezone.utc,
    )


class NotificationScheduler:
    """Runs coroutine jobs on APScheduler's asyncio scheduler.

    Tasks may be added before or after start(); tasks added before are
    registered with APScheduler when it starts.
    """

    def __init__(self) -> None:
        self._scheduler: AsyncIOScheduler | None = None
        self._tasks: dict[str, ScheduledTask] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    def _register(self, task: ScheduledTask) -> None:
        if self._scheduler is None or not task.enabled:
            return
        options: dict[str, Any] = {}
        # An explicit next_run_time=None would add the job paused.
        if task.start_immediately:
            options["next_run_time"] = datetime.now(timezone.utc)
        self._scheduler.add_job(
            self.run_task,
            trigger=task.trigger,
            args=[task.id],
            id=task.id,
            name=task.name,
            max_instances=1,
            coalesce=True,
            **options,
        )

    def add_cron_task(
        self,
        name: str,
        func: JobFunc,
        cron_expression: str,
        enabled: bool = True,
    ) -> ScheduledTask:
        """Add a cron-scheduled task.

        Args:
            name: Task name.
            func: Coroutine function to run.
            cron_expression: Cron expression (minute hour day month weekday).
            enabled: Whether task is enabled.

        Returns:
            Created ScheduledTask.

        Raises:
            ValueError: If the cron expression is invalid.
        """
        task = ScheduledTask(
            name=name,
            func=func,
            trigger=parse_cron(cron_expression),
            schedule=cron_expression,
            enabled=enabled,
        )
        self._tasks[task.id] = task
        self._register(task)

        logger.info("Added cron task: %s (%s)", name, cron_expression)
        return task

    def add_interval_task(
        self,
        name: str,
        func: JobFunc,
        seconds: int = 0,
        minutes: int = 0,
        hours: int = 0,
        enabled: bool = True,
        start_immediately: bool = False,
    ) -> ScheduledTask:
        """Add an interval-scheduled task.

        Args:
            name: Task name.
            func: Coroutine function to run.
            seconds: Interval seconds.
            minutes: Interval minutes.
            hours: Interval hours.
            enabled: Whether task is enabled.
            start_immediately: Run immediately on start.

        Returns:
            Created ScheduledTask.
        """
        task = ScheduledTask(
            name=name,
            func=func,
            trigger=IntervalTrigger(seconds=seconds, minutes=minutes, hours=hours),
            schedule=f"every {hours}h {minutes}m {seconds}s",
            enabled=enabled,
            start_immediately=start_immediately,
        )
        self._tasks[task.id] = task
        self._register(task)

        logger.info(
            "Added interval task: %s (every %dh %dm %ds)",
            name,
            hours,
            minutes,
            seconds,
        )
        return task

    async def run_task(self, task_id: str) -> None:
        """Execute a scheduled task once.

        Errors are counted and logged; the job stays scheduled.

        Args:
            task_id: ID of the task to execute.
        """
        task = self._tasks.get(task_id)
        if not task or not task.enabled:
            return

        logger.debug("Executing scheduled task: %s", task.name)

        try:
            task.last_result = await task.func()
            task.run_count += 1
        except Exception as e:
            task.error_count += 1
            logger.error("Scheduled task %s failed: %s", task.name, str(e), exc_info=True)
        finally:
            task.last_run = datetime.now(timezone.utc)

    def remove_task(self, task_id: str) -> bool:
        """Remove a scheduled task.

        Returns:
            True if removed.
        """
        if task_id not in self._tasks:
            return False

        if self._scheduler:
            try:
                self._scheduler.remove_job(task_id)
            except JobLookupError:
                logger.debug("Task %s was not registered with APScheduler", task_id)

        del self._tasks[task_id]
        logger.info("Removed scheduled task: %s", task_id)
        return True

    def enable_task(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if not task:
            return False

        task.enabled = True
        if self._scheduler:
            if self._scheduler.get_job(task_id) is None:
                self._register(task)
            else:
                self._scheduler.resume_job(task_id)
        return True

    def disable_task(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if not task:
            return False

        task.enabled = False
        if self._scheduler and self._scheduler.get_job(task_id) is not None:
            self._scheduler.pause_job(task_id)
        return True

    def get_task(self, task_id: str) -> ScheduledTask | None:
        return self._tasks.get(task_id)

    def list_tasks(self) -> list[ScheduledTask]:
        return list(self._tasks.values())

    async def start(self) -> None:
        """Start the scheduler and register every enabled task."""
        if self._running:
            return

        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        for task in self._tasks.values():
            self._register(task)
        self._scheduler.start()
        self._running = True

        logger.info("Notification scheduler started with %d tasks", len(self._tasks))

    async def stop(self) -> None:
        """Stop the scheduler."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("Notification scheduler stopped")

    def get_stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "is_running": self._running,
            "task_count": len(self._tasks),
            "enabled_count": sum(1 for t in self._tasks.values() if t.enabled),
            "total_runs": sum(t.run_count for t in self._tasks.values()),
            "total_errors": sum(t.error_count for t in self._tasks.values()),
            "tasks": [t.to_dict() for t in self._tasks.values()],
        }
