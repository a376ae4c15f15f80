# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Composition root for the notification core.

Builds every component from Settings, wires the event subscriptions that
mirror queue items into the sync engine, and owns the scheduler that
drives promotion, dispatch, escalation, sync and ledger pruning.

Example:
    from guardian_notify.runtime import runtime_context

    async with runtime_context() as runtime:
        outcome = await runtime.notifications.submit_event(payload)
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from guardian_notify.core.config.settings import Settings, get_settings
from guardian_notify.core.content.validator import ContentValidator
from guardian_notify.core.rules.catalog import TemplateCatalog
from guardian_notify.core.rules.evaluator import RuleEvaluator
from guardian_notify.core.rules.loader import load_rules
from guardian_notify.domains.notifications.service import NotificationService
from guardian_notify.domains.queue.service import DeliveryQueue
from guardian_notify.domains.suppression.ledger import SuppressionLedger
from guardian_notify.domains.sync.connectivity import ConnectivityMonitor
from guardian_notify.domains.sync.service import SyncEngine
from guardian_notify.infrastructure.background import NotificationScheduler
from guardian_notify.infrastructure.database import LocalDatabase
from guardian_notify.infrastructure.events import EventBus, EventData
from guardian_notify.infrastructure.notifications.channels import (
    DeliveryChannel,
    LogChannel,
    WebhookChannel,
)
from guardian_notify.infrastructure.sync import HttpSyncBackend, InMemorySyncBackend, SyncBackend
from guardian_notify.models.notification import DispatchReport, NotificationStatus
from guardian_notify.models.sync import EntityType, LocalEntity, SyncItem, SyncReport
from guardian_notify.utils.datetime import Clock, SystemClock
from guardian_notify.utils.logging import setup_logging

logger = logging.getLogger(__name__)

SYSTEM_USER = "system"

_UNMIRRORED_STATUSES = {NotificationStatus.PENDING.value, NotificationStatus.READY.value}


def create_channel(settings: Settings) -> DeliveryChannel:
    """Build the configured delivery channel."""
    if settings.delivery.channel == "log":
        return LogChannel()
    return WebhookChannel(
        url=settings.delivery.webhook_url,
        token=settings.delivery.webhook_token,
        timeout_seconds=settings.delivery.send_timeout_seconds,
    )


def create_sync_backend(settings: Settings, clock: Clock) -> SyncBackend:
    """Build the configured sync backend."""
    if settings.sync.backend == "memory":
        return InMemorySyncBackend(clock)
    return HttpSyncBackend(
        base_url=settings.sync.base_url,
        token=settings.sync.api_token,
        timeout_seconds=settings.sync.timeout_seconds,
    )


class Runtime:
    """Wired set of notification core components."""

    def __init__(
        self,
        settings: Settings,
        clock: Clock | None = None,
        channel: DeliveryChannel | None = None,
        sync_backend: SyncBackend | None = None,
        evaluator: RuleEvaluator | None = None,
    ) -> None:
        self.settings = settings
        self.clock = clock or SystemClock()
        self.event_bus = EventBus()
        self.database = LocalDatabase(settings.local_db.url, echo=settings.local_db.echo)

        self.catalog = evaluator.catalog if evaluator else TemplateCatalog()
        self.evaluator = evaluator or RuleEvaluator(
            load_rules(settings.rules_path),
            self.catalog,
            timezone=settings.school_timezone,
        )
        self.validator = ContentValidator()
        self.ledger = SuppressionLedger(
            self.database,
            retention_days=settings.suppression.retention_days,
            timezone=settings.school_timezone,
        )
        self.channel = channel or create_channel(settings)
        self.sync_backend = sync_backend or create_sync_backend(settings, self.clock)

        self.queue = DeliveryQueue(
            database=self.database,
            ledger=self.ledger,
            channel=self.channel,
            clock=self.clock,
            settings=settings.delivery,
            rule_lookup=self.evaluator.get_rule,
            catalog=self.catalog,
            validator=self.validator,
            event_bus=self.event_bus,
        )
        self.notifications = NotificationService(
            evaluator=self.evaluator,
            catalog=self.catalog,
            validator=self.validator,
            ledger=self.ledger,
            queue=self.queue,
            clock=self.clock,
            event_bus=self.event_bus,
        )
        self.connectivity = ConnectivityMonitor(self.event_bus, self.clock)
        self.sync = SyncEngine(
            database=self.database,
            backend=self.sync_backend,
            clock=self.clock,
            settings=settings.sync,
            event_bus=self.event_bus,
            connectivity=self.connectivity,
        )
        self.scheduler = NotificationScheduler()

        self.event_bus.subscribe("notification.*", self._mirror_notification)
        self.sync.add_synced_listener(self._on_item_synced)

    # =========================================================================
    # Wiring
    # =========================================================================

    async def _mirror_notification(self, event: EventData) -> None:
        """Track queue items that left pending/ready as offline sync items."""
        notification_id = event.payload.get("notification_id")
        if not notification_id or event.payload.get("status") in _UNMIRRORED_STATUSES:
            return

        notification = await self.queue.get(notification_id)
        if notification is None:
            return

        await self.sync.enqueue_locally(
            LocalEntity(
                entity_type=EntityType.NOTIFICATION,
                logical_key=notification.id,
                payload=notification.model_dump(mode="json"),
                school_id=notification.school_id,
                user_id=SYSTEM_USER,
            )
        )

    async def _on_item_synced(self, item: SyncItem) -> None:
        if item.entity_type == EntityType.NOTIFICATION:
            await self.queue.mark_server_synced(item.logical_key)

    # =========================================================================
    # Jobs
    # =========================================================================

    async def tick(self) -> DispatchReport:
        """Promote, dispatch and escalate once."""
        return await self.notifications.run_due()

    async def sync_once(self) -> SyncReport:
        return await self.sync.sync_pending()

    async def prune(self) -> int:
        return await self.ledger.prune(self.clock.now())

    def register_jobs(self) -> None:
        """Register the periodic jobs on the scheduler."""
        scheduler_settings = self.settings.scheduler
        self.scheduler.add_interval_task(
            name="Queue Tick",
            func=self.tick,
            seconds=scheduler_settings.tick_seconds,
            start_immediately=True,
        )
        self.scheduler.add_interval_task(
            name="Background Sync",
            func=self.sync_once,
            seconds=scheduler_settings.sync_interval_seconds,
        )
        self.scheduler.add_cron_task(
            name="Prune Suppression Ledger",
            func=self.prune,
            cron_expression=scheduler_settings.prune_cron,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, run_scheduler: bool = True) -> None:
        """Create tables, recover interrupted work and start the scheduler."""
        await self.database.create_all()

        recovered_sends = await self.queue.recover_interrupted()
        recovered_syncs = await self.sync.recover_in_flight()
        if recovered_sends or recovered_syncs:
            logger.info(
                "Recovered %d sends and %d sync items after restart",
                recovered_sends,
                recovered_syncs,
            )

        if run_scheduler:
            self.register_jobs()
            await self.scheduler.start()

        logger.info(
            "Guardian Notify started (%d rules, channel %s)",
            len(self.evaluator.rules),
            self.channel.name,
        )

    async def stop(self) -> None:
        """Stop the scheduler and release connections."""
        await self.scheduler.stop()
        await self.channel.close()
        await self.sync_backend.close()
        await self.database.close()
        logger.info("Guardian Notify stopped")

    def get_stats(self) -> dict[str, Any]:
        return {
            "events": self.event_bus.get_stats(),
            "scheduler": self.scheduler.get_stats(),
            "online": self.connectivity.is_online,
        }


@asynccontextmanager
async def runtime_context(
    settings: Settings | None = None,
    run_scheduler: bool = True,
    **overrides: Any,
) -> AsyncIterator[Runtime]:
    """Build, start and finally stop a Runtime.

    Args:
        settings: Settings to use; defaults to get_settings().
        run_scheduler: Start the background scheduler.
        **overrides: Component overrides passed to Runtime (clock, channel,
            sync_backend, evaluator).

    Yields:
        The started Runtime.
    """
    settings = settings or get_settings()
    setup_logging(settings)
    runtime = Runtime(settings, **overrides)
    await runtime.start(run_scheduler=run_scheduler)
    try:
        yield runtime
    finally:
        await runtime.stop()
