# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Suppression ledger.

Keyed store of "a notification was accepted or sent for (subject, date,
trigger class)". A key is reserved atomically when a notification is
admitted to the queue, confirmed when the send succeeds and released if
the notification is cancelled or permanently fails. Old keys are pruned
by an explicit, scheduled call.

The ledger never decides anything itself: the rule evaluator reads a
snapshot, and the queue reserves inside its own admission transaction so
that two concurrent events for the same key cannot both be admitted.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from guardian_notify.core.rules.models import SuppressionKey
from guardian_notify.infrastructure.database import LocalDatabase
from guardian_notify.infrastructure.database.models import SuppressionRecord as SuppressionRecordModel
from guardian_notify.utils.datetime import local_date

logger = logging.getLogger(__name__)


class SuppressionLedger:
    """Explicit keyed suppression store backed by the local database."""

    def __init__(
        self,
        database: LocalDatabase,
        retention_days: int = 7,
        timezone: str = "UTC",
    ) -> None:
        self._database = database
        self._retention_days = retention_days
        self._timezone = timezone

    @property
    def retention_days(self) -> int:
        return self._retention_days

    async def snapshot(self, subject_id: str) -> frozenset[SuppressionKey]:
        """Read every live key for a subject.

        Args:
            subject_id: Subject whose keys are needed.

        Returns:
            Immutable set of keys, suitable for the rule evaluator.
        """
        async with self._database.session() as session:
            result = await session.execute(
                select(
                    SuppressionRecordModel.subject_id,
                    SuppressionRecordModel.record_date,
                    SuppressionRecordModel.trigger_class,
                ).where(SuppressionRecordModel.subject_id == subject_id)
            )
            return frozenset(SuppressionKey(*row) for row in result.all())

    async def contains(self, key: SuppressionKey) -> bool:
        async with self._database.session() as session:
            record = await session.get(
                SuppressionRecordModel, (key.subject_id, key.date, key.trigger_class)
            )
            return record is not None

    async def get_sent_at(self, key: SuppressionKey) -> datetime | None:
        """Return the last-sent timestamp for a key, or None."""
        async with self._database.session() as session:
            record = await session.get(
                SuppressionRecordModel, (key.subject_id, key.date, key.trigger_class)
            )
            return record.sent_at if record else None

    async def reserve(
        self,
        session: AsyncSession,
        key: SuppressionKey,
        notification_id: str,
        now: datetime,
    ) -> bool:
        """Atomically reserve a key inside the caller's transaction.

        Args:
            session: Session of the admission transaction.
            key: Key to reserve.
            notification_id: Queue item that owns the reservation.
            now: Reservation instant.

        Returns:
            True if the key was free and is now reserved, False if it
            already existed.
        """
        stmt = (
            sqlite_insert(SuppressionRecordModel)
            .values(
                subject_id=key.subject_id,
                record_date=key.date,
                trigger_class=key.trigger_class,
                notification_id=notification_id,
                reserved_at=now,
            )
            .on_conflict_do_nothing()
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def confirm(
        self,
        session: AsyncSession,
        key: SuppressionKey,
        notification_id: str,
        sent_at: datetime,
    ) -> None:
        """Record the successful send time for a reserved key."""
        await session.execute(
            update(SuppressionRecordModel)
            .where(
                SuppressionRecordModel.subject_id == key.subject_id,
                SuppressionRecordModel.record_date == key.date,
                SuppressionRecordModel.trigger_class == key.trigger_class,
                SuppressionRecordModel.notification_id == notification_id,
            )
            .values(sent_at=sent_at)
        )

    async def release(
        self,
        session: AsyncSession,
        key: SuppressionKey,
        notification_id: str,
    ) -> bool:
        """Release an unsent reservation held by a notification.

        Sent keys are never released.

        Returns:
            True if a reservation was removed.
        """
        result = await session.execute(
            delete(SuppressionRecordModel).where(
                SuppressionRecordModel.subject_id == key.subject_id,
                SuppressionRecordModel.record_date == key.date,
                SuppressionRecordModel.trigger_class == key.trigger_class,
                SuppressionRecordModel.notification_id == notification_id,
                SuppressionRecordModel.sent_at.is_(None),
            )
        )
        return result.rowcount == 1

    async def prune(self, now: datetime) -> int:
        """Delete records older than the retention window.

        Args:
            now: Current instant; the cutoff is computed on the school's
                calendar.

        Returns:
            Number of records deleted.
        """
        cutoff = local_date(now, self._timezone) - timedelta(days=self._retention_days)
        async with self._database.session() as session:
            result = await session.execute(
                delete(SuppressionRecordModel).where(SuppressionRecordModel.record_date < cutoff)
            )
            deleted = result.rowcount or 0

        if deleted:
            logger.info("Pruned %d suppression records older than %s", deleted, cutoff)
        return deleted
