# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Offline-first sync engine.

Entities captured on the device are written to the local store first and
pushed to the durable backend later, one upsert per item. Each write
carries the last server version this device has seen for the logical
record; the backend answers with a conflict instead of overwriting when
somebody else wrote in between.

Item lifecycle::

    pending -> syncing -> synced
                       -> conflict   (until a reviewer resolves it)
                       -> pending    (transient error, retried with backoff)
                       -> failed     (retries exhausted)
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from guardian_notify.core.config.settings import SyncSettings
from guardian_notify.domains.sync.connectivity import ConnectivityMonitor
from guardian_notify.infrastructure.database import LocalDatabase
from guardian_notify.infrastructure.database.models import OfflineSyncItem as OfflineSyncItemModel
from guardian_notify.infrastructure.events import EventBus, EventTypes
from guardian_notify.infrastructure.sync import SyncBackend, SyncRecord, UpsertResult, UpsertStatus
from guardian_notify.models.sync import (
    ConflictResolution,
    LocalEntity,
    ResolveOutcome,
    ResolveStatus,
    SyncItem,
    SyncReport,
    SyncStats,
    SyncStatus,
)
from guardian_notify.utils.datetime import Clock, exponential_backoff

logger = logging.getLogger(__name__)

SyncedListener = Callable[[SyncItem], Awaitable[None]]


class SyncEngine:
    """Local-first store of offline sync items and their reconciliation."""

    def __init__(
        self,
        database: LocalDatabase,
        backend: SyncBackend,
        clock: Clock,
        settings: SyncSettings,
        event_bus: EventBus | None = None,
        connectivity: ConnectivityMonitor | None = None,
    ) -> None:
        self._database = database
        self._backend = backend
        self._clock = clock
        self._settings = settings
        self._event_bus = event_bus
        self._connectivity = connectivity or ConnectivityMonitor(event_bus, clock)
        self._synced_listeners: list[SyncedListener] = []

        self._connectivity.on_online(self.sync_pending)

    @property
    def connectivity(self) -> ConnectivityMonitor:
        return self._connectivity

    @property
    def is_online(self) -> bool:
        return self._connectivity.is_online

    def add_synced_listener(self, listener: SyncedListener) -> None:
        """Register a coroutine called with each item the backend accepts."""
        self._synced_listeners.append(listener)

    async def set_online(self, online: bool) -> bool:
        """Shortcut for ``connectivity.set_online``."""
        return await self._connectivity.set_online(online)

    # =========================================================================
    # Local capture
    # =========================================================================

    async def enqueue_locally(self, entity: LocalEntity) -> str:
        """Persist an entity locally as a pending sync item.

        Touches only the local store and works the same online or offline.

        Args:
            entity: Captured entity.

        Returns:
            The local id of the new sync item.
        """
        local_id = str(uuid4())
        now = self._clock.now()
        async with self._database.session() as session:
            session.add(
                OfflineSyncItemModel(
                    id=local_id,
                    entity_type=entity.entity_type.value,
                    logical_key=entity.logical_key,
                    payload=dict(entity.payload),
                    school_id=entity.school_id,
                    class_id=entity.class_id,
                    user_id=entity.user_id,
                    device_id=self._settings.device_id,
                    local_timestamp=now,
                    # Evaluated inside the INSERT so concurrent captures never share a value.
                    sequence=select(func.coalesce(func.max(OfflineSyncItemModel.sequence), 0) + 1)
                    .scalar_subquery(),
                    server_timestamp=None,
                    server_version=None,
                    server_payload=None,
                    status=SyncStatus.PENDING.value,
                    retry_count=0,
                    next_retry_at=None,
                    last_error=None,
                    conflict_resolution=None,
                    resolved_by=None,
                    resolved_at=None,
                    synced_at=None,
                )
            )
        logger.debug(
            "Captured %s/%s locally as %s",
            entity.entity_type.value,
            entity.logical_key,
            local_id,
        )
        return local_id

    # =========================================================================
    # Sync pass
    # =========================================================================

    async def _load(self, session: AsyncSession, item_id: str) -> OfflineSyncItemModel | None:
        result = await session.execute(
            select(OfflineSyncItemModel)
            .where(OfflineSyncItemModel.id == item_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _cas(
        self,
        session: AsyncSession,
        item_id: str,
        expected: SyncStatus,
        target: SyncStatus,
        **values: Any,
    ) -> bool:
        result = await session.execute(
            update(OfflineSyncItemModel)
            .where(
                OfflineSyncItemModel.id == item_id,
                OfflineSyncItemModel.status == expected.value,
            )
            .values(status=target.value, **values)
        )
        return result.rowcount == 1

    async def _has_earlier_write(self, session: AsyncSession, row: OfflineSyncItemModel) -> bool:
        """True if an older capture of the same record has not reached the backend yet."""
        result = await session.execute(
            select(OfflineSyncItemModel.id)
            .where(
                OfflineSyncItemModel.entity_type == row.entity_type,
                OfflineSyncItemModel.logical_key == row.logical_key,
                OfflineSyncItemModel.sequence < row.sequence,
                OfflineSyncItemModel.status.in_([SyncStatus.PENDING.value, SyncStatus.SYNCING.value]),
            )
            .limit(1)
        )
        return result.first() is not None

    async def _base_version(self, session: AsyncSession, entity_type: str, logical_key: str) -> int | None:
        result = await session.execute(
            select(func.max(OfflineSyncItemModel.server_version)).where(
                OfflineSyncItemModel.entity_type == entity_type,
                OfflineSyncItemModel.logical_key == logical_key,
                OfflineSyncItemModel.status == SyncStatus.SYNCED.value,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _record(row: OfflineSyncItemModel, payload: dict[str, Any], base_version: int | None) -> SyncRecord:
        return SyncRecord(
            local_id=row.id,
            entity_type=row.entity_type,
            logical_key=row.logical_key,
            payload=payload,
            school_id=row.school_id,
            class_id=row.class_id,
            user_id=row.user_id,
            device_id=row.device_id,
            local_timestamp=row.local_timestamp,
            base_version=base_version,
        )

    async def _push(self, record: SyncRecord) -> UpsertResult:
        try:
            return await asyncio.wait_for(
                self._backend.upsert(record),
                timeout=self._settings.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return UpsertResult(
                status=UpsertStatus.ERROR,
                error=f"Upsert timed out after {self._settings.timeout_seconds}s",
            )
        except Exception as e:
            logger.error(
                "Sync backend raised for %s: %s",
                record.local_id,
                str(e),
                exc_info=True,
            )
            return UpsertResult(status=UpsertStatus.ERROR, error=str(e))

    async def _notify_synced(self, item: SyncItem) -> None:
        for listener in self._synced_listeners:
            try:
                await listener(item)
            except Exception as e:
                logger.error(
                    "Synced listener failed for %s: %s",
                    item.id,
                    str(e),
                    exc_info=True,
                )

    async def _publish(self, event_type: str, payload: dict[str, Any], school_id: str | None = None) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(event_type, payload, school_id=school_id)

    async def _sync_item(self, item_id: str) -> SyncStatus | None:
        """Push one pending item. Returns its new status, or None if skipped.

        Writes to one logical record go out in capture order: the base
        version is read at push time, so a later capture must wait until
        every earlier one has been answered.
        """
        async with self._database.session() as session:
            row = await self._load(session, item_id)
            if row is None or row.status != SyncStatus.PENDING.value:
                return None
            if await self._has_earlier_write(session, row):
                logger.debug("Holding %s behind an earlier write to %s", item_id, row.logical_key)
                return None
            if not await self._cas(session, item_id, SyncStatus.PENDING, SyncStatus.SYNCING):
                return None
            base_version = await self._base_version(session, row.entity_type, row.logical_key)
            record = self._record(row, row.payload, base_version)

        result = await self._push(record)
        now = self._clock.now()

        async with self._database.session() as session:
            if result.status == UpsertStatus.ACCEPTED:
                await self._cas(
                    session,
                    item_id,
                    SyncStatus.SYNCING,
                    SyncStatus.SYNCED,
                    server_version=result.server_version,
                    server_timestamp=result.server_timestamp or now,
                    synced_at=now,
                    next_retry_at=None,
                    last_error=None,
                )
            elif result.status == UpsertStatus.CONFLICT:
                await self._cas(
                    session,
                    item_id,
                    SyncStatus.SYNCING,
                    SyncStatus.CONFLICT,
                    server_version=result.server_version,
                    server_timestamp=result.server_timestamp,
                    server_payload=result.server_payload,
                    next_retry_at=None,
                    last_error=None,
                )
            else:
                retry_count = row.retry_count + 1
                if retry_count < self._settings.max_retries:
                    await self._cas(
                        session,
                        item_id,
                        SyncStatus.SYNCING,
                        SyncStatus.PENDING,
                        retry_count=retry_count,
                        next_retry_at=now
                        + exponential_backoff(
                            retry_count,
                            self._settings.backoff_base_seconds,
                            self._settings.backoff_max_seconds,
                        ),
                        last_error=result.error,
                    )
                else:
                    await self._cas(
                        session,
                        item_id,
                        SyncStatus.SYNCING,
                        SyncStatus.FAILED,
                        retry_count=retry_count,
                        next_retry_at=None,
                        last_error=result.error,
                    )
            row = await self._load(session, item_id)

        item = SyncItem.model_validate(row)
        if item.status == SyncStatus.SYNCED:
            await self._notify_synced(item)
        elif item.status == SyncStatus.CONFLICT:
            logger.warning(
                "Conflict on %s/%s (item %s): server version %s",
                item.entity_type.value,
                item.logical_key,
                item.id,
                item.server_version,
            )
            await self._publish(
                EventTypes.Sync.CONFLICT,
                {
                    "item_id": item.id,
                    "entity_type": item.entity_type.value,
                    "logical_key": item.logical_key,
                    "server_version": item.server_version,
                },
                school_id=item.school_id,
            )
        elif item.status == SyncStatus.FAILED:
            logger.error(
                "Sync of %s failed after %d attempts: %s",
                item.id,
                item.retry_count,
                item.last_error,
            )
            await self._publish(
                EventTypes.Sync.FAILED,
                {"item_id": item.id, "last_error": item.last_error},
                school_id=item.school_id,
            )
        else:
            logger.warning(
                "Sync of %s failed (attempt %d), retry at %s: %s",
                item.id,
                item.retry_count,
                item.next_retry_at.isoformat() if item.next_retry_at else None,
                item.last_error,
            )
        return item.status

    async def sync_pending(self) -> SyncReport:
        """Push every locally pending item whose retry is due.

        Works on a snapshot taken at the start of the pass, in capture
        order; items captured during the pass wait for the next one. Items
        another pass already claimed, and items queued behind an earlier
        unsynced write to the same record, are skipped.

        Returns:
            SyncReport with synced/failed/conflicts counters.
        """
        if not self.is_online:
            logger.debug("Offline; sync pass skipped")
            return SyncReport()

        now = self._clock.now()
        async with self._database.session() as session:
            result = await session.execute(
                select(OfflineSyncItemModel.id)
                .where(
                    OfflineSyncItemModel.status == SyncStatus.PENDING.value,
                    or_(
                        OfflineSyncItemModel.next_retry_at.is_(None),
                        OfflineSyncItemModel.next_retry_at <= now,
                    ),
                )
                .order_by(OfflineSyncItemModel.sequence)
            )
            item_ids = list(result.scalars().all())

        if not item_ids:
            return SyncReport()

        synced = failed = conflicts = skipped = 0
        for item_id in item_ids:
            status = await self._sync_item(item_id)
            if status is None:
                skipped += 1
            elif status == SyncStatus.SYNCED:
                synced += 1
            elif status == SyncStatus.CONFLICT:
                conflicts += 1
            else:
                failed += 1

        report = SyncReport(synced=synced, failed=failed, conflicts=conflicts, skipped=skipped)
        logger.info(
            "Sync pass: %d synced, %d failed, %d conflicts, %d skipped",
            report.synced,
            report.failed,
            report.conflicts,
            report.skipped,
        )
        await self._publish(
            EventTypes.Sync.COMPLETED,
            {
                "synced": report.synced,
                "failed": report.failed,
                "conflicts": report.conflicts,
                "skipped": report.skipped,
            },
        )
        return report

    async def recover_in_flight(self) -> int:
        """Return items left in ``syncing`` by a crash to ``pending``.

        The backend deduplicates on the local id, so a replay of a write
        that did reach it is answered as accepted.
        """
        async with self._database.session() as session:
            result = await session.execute(
                update(OfflineSyncItemModel)
                .where(OfflineSyncItemModel.status == SyncStatus.SYNCING.value)
                .values(status=SyncStatus.PENDING.value, next_retry_at=None)
            )
            recovered = result.rowcount or 0
        if recovered:
            logger.warning("Recovered %d sync items interrupted in flight", recovered)
        return recovered

    # =========================================================================
    # Conflict resolution
    # =========================================================================

    async def resolve_conflict(
        self,
        item_id: str,
        resolution: ConflictResolution,
        reviewer: str,
        role: str,
        merged_payload: dict[str, Any] | None = None,
    ) -> ResolveOutcome:
        """Apply a reviewer's decision to a conflicting item.

        Args:
            item_id: Conflicting item.
            resolution: local_wins, server_wins, merged or admin_review.
            reviewer: Who decides.
            role: Reviewer role; must be one of the configured reviewer roles.
            merged_payload: Payload to push for ``merged``.

        Returns:
            ResolveOutcome. ``admin_review`` leaves the item in conflict and
            reports HELD_FOR_REVIEW.
        """
        if role not in self._settings.reviewer_roles:
            logger.warning("Role %s may not resolve sync conflicts (item %s)", role, item_id)
            return ResolveOutcome(ResolveStatus.FORBIDDEN, message=f"Role {role} cannot resolve conflicts")
        if resolution == ConflictResolution.MERGED and merged_payload is None:
            return ResolveOutcome(ResolveStatus.INVALID, message="merged resolution requires a merged payload")

        now = self._clock.now()
        async with self._database.session() as session:
            row = await self._load(session, item_id)
            if row is None:
                return ResolveOutcome(ResolveStatus.NOT_FOUND, message=f"Sync item {item_id} not found")
            if row.status != SyncStatus.CONFLICT.value:
                return ResolveOutcome(
                    ResolveStatus.NOT_A_CONFLICT,
                    item=SyncItem.model_validate(row),
                    message=f"Sync item is {row.status}",
                )

            if resolution == ConflictResolution.ADMIN_REVIEW:
                await session.execute(
                    update(OfflineSyncItemModel)
                    .where(OfflineSyncItemModel.id == item_id)
                    .values(conflict_resolution=resolution.value, resolved_by=reviewer)
                )
                row = await self._load(session, item_id)
                item = SyncItem.model_validate(row)
                logger.info("Sync item %s held for admin review by %s", item_id, reviewer)
                return ResolveOutcome(ResolveStatus.HELD_FOR_REVIEW, item=item)

            if resolution == ConflictResolution.SERVER_WINS:
                await self._cas(
                    session,
                    item_id,
                    SyncStatus.CONFLICT,
                    SyncStatus.SYNCED,
                    payload=row.server_payload or {},
                    conflict_resolution=resolution.value,
                    resolved_by=reviewer,
                    resolved_at=now,
                    synced_at=now,
                )
                row = await self._load(session, item_id)
                item = SyncItem.model_validate(row)
                push = None
            else:
                payload = merged_payload if resolution == ConflictResolution.MERGED else row.payload
                if not await self._cas(session, item_id, SyncStatus.CONFLICT, SyncStatus.SYNCING):
                    return ResolveOutcome(ResolveStatus.NOT_A_CONFLICT, message="Item is no longer in conflict")
                push = self._record(row, dict(payload), row.server_version)

        if push is not None:
            return await self._push_resolution(item_id, push, resolution, reviewer)

        await self._finish_resolution(item, resolution)
        return ResolveOutcome(ResolveStatus.RESOLVED, item=item)

    async def _push_resolution(
        self,
        item_id: str,
        record: SyncRecord,
        resolution: ConflictResolution,
        reviewer: str,
    ) -> ResolveOutcome:
        result = await self._push(record)
        now = self._clock.now()

        async with self._database.session() as session:
            if result.status == UpsertStatus.ACCEPTED:
                await self._cas(
                    session,
                    item_id,
                    SyncStatus.SYNCING,
                    SyncStatus.SYNCED,
                    payload=record.payload,
                    server_version=result.server_version,
                    server_timestamp=result.server_timestamp or now,
                    server_payload=None,
                    conflict_resolution=resolution.value,
                    resolved_by=reviewer,
                    resolved_at=now,
                    synced_at=now,
                    last_error=None,
                )
                status = ResolveStatus.RESOLVED
            elif result.status == UpsertStatus.CONFLICT:
                await self._cas(
                    session,
                    item_id,
                    SyncStatus.SYNCING,
                    SyncStatus.CONFLICT,
                    server_version=result.server_version,
                    server_timestamp=result.server_timestamp,
                    server_payload=result.server_payload,
                )
                status = ResolveStatus.STILL_CONFLICTING
            else:
                # Stays a conflict so the reviewer can try again.
                await self._cas(
                    session,
                    item_id,
                    SyncStatus.SYNCING,
                    SyncStatus.CONFLICT,
                    last_error=result.error,
                )
                status = ResolveStatus.FAILED
            row = await self._load(session, item_id)

        item = SyncItem.model_validate(row)
        if status == ResolveStatus.RESOLVED:
            await self._finish_resolution(item, resolution)
        else:
            logger.warning(
                "Resolution %s of %s did not apply: %s",
                resolution.value,
                item_id,
                item.last_error if status == ResolveStatus.FAILED else "server changed again",
            )
        return ResolveOutcome(status, item=item, message=item.last_error or "")

    async def _finish_resolution(self, item: SyncItem, resolution: ConflictResolution) -> None:
        logger.info("Sync conflict %s resolved as %s by %s", item.id, resolution.value, item.resolved_by)
        await self._publish(
            EventTypes.Sync.RESOLVED,
            {
                "item_id": item.id,
                "resolution": resolution.value,
                "resolved_by": item.resolved_by,
                "server_version": item.server_version,
            },
            school_id=item.school_id,
        )
        await self._notify_synced(item)

    # =========================================================================
    # Queries and maintenance
    # =========================================================================

    async def get(self, item_id: str) -> SyncItem | None:
        async with self._database.session() as session:
            row = await self._load(session, item_id)
            return SyncItem.model_validate(row) if row else None

    async def list_by_status(self, status: SyncStatus, limit: int = 100) -> list[SyncItem]:
        async with self._database.session() as session:
            result = await session.execute(
                select(OfflineSyncItemModel)
                .where(OfflineSyncItemModel.status == status.value)
                .order_by(OfflineSyncItemModel.local_timestamp)
                .limit(limit)
            )
            return [SyncItem.model_validate(row) for row in result.scalars().all()]

    async def list_conflicts(self, school_id: str | None = None) -> list[SyncItem]:
        """Unresolved conflicts, including those held for admin review."""
        stmt = select(OfflineSyncItemModel).where(
            OfflineSyncItemModel.status == SyncStatus.CONFLICT.value,
            OfflineSyncItemModel.resolved_at.is_(None),
        )
        if school_id is not None:
            stmt = stmt.where(OfflineSyncItemModel.school_id == school_id)
        async with self._database.session() as session:
            result = await session.execute(stmt.order_by(OfflineSyncItemModel.local_timestamp))
            return [SyncItem.model_validate(row) for row in result.scalars().all()]

    async def stats(self) -> SyncStats:
        """Count items by status."""
        async with self._database.session() as session:
            result = await session.execute(
                select(OfflineSyncItemModel.status, func.count()).group_by(OfflineSyncItemModel.status)
            )
            counts = {status: count for status, count in result.all()}
        return SyncStats(
            pending=counts.get(SyncStatus.PENDING.value, 0),
            syncing=counts.get(SyncStatus.SYNCING.value, 0),
            synced=counts.get(SyncStatus.SYNCED.value, 0),
            conflicts=counts.get(SyncStatus.CONFLICT.value, 0),
            failed=counts.get(SyncStatus.FAILED.value, 0),
        )

    async def clear_synced(self, before: datetime | None = None) -> int:
        """Delete synced items, keeping the newest one per logical record.

        The newest synced item carries the server version used as base for
        the next write to the same record, so it is never deleted.

        Args:
            before: Only delete items synced before this instant.

        Returns:
            Number of deleted items.
        """
        async with self._database.session() as session:
            result = await session.execute(
                select(
                    OfflineSyncItemModel.id,
                    OfflineSyncItemModel.entity_type,
                    OfflineSyncItemModel.logical_key,
                    OfflineSyncItemModel.synced_at,
                )
                .where(OfflineSyncItemModel.status == SyncStatus.SYNCED.value)
                .order_by(
                    OfflineSyncItemModel.entity_type,
                    OfflineSyncItemModel.logical_key,
                    OfflineSyncItemModel.server_version.desc(),
                )
            )
            seen: set[tuple[str, str]] = set()
            doomed: list[str] = []
            for item_id, entity_type, logical_key, synced_at in result.all():
                key = (entity_type, logical_key)
                if key not in seen:
                    seen.add(key)
                    continue
                if before is None or (synced_at is not None and synced_at < before):
                    doomed.append(item_id)

            if doomed:
                await session.execute(delete(OfflineSyncItemModel).where(OfflineSyncItemModel.id.in_(doomed)))

        if doomed:
            logger.info("Cleared %d synced items", len(doomed))
        return len(doomed)
