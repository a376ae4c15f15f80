# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the offline-first sync engine."""

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import update

from guardian_notify.core.config.settings import SyncSettings
from guardian_notify.domains.sync import ConnectivityMonitor, SyncEngine
from guardian_notify.infrastructure.database import LocalDatabase
from guardian_notify.infrastructure.database.models import OfflineSyncItem as OfflineSyncItemModel
from guardian_notify.infrastructure.events import EventBus
from guardian_notify.infrastructure.sync import SyncBackend, SyncRecord, UpsertResult, UpsertStatus
from guardian_notify.infrastructure.sync.memory import InMemorySyncBackend
from guardian_notify.models.sync import (
    ConflictResolution,
    EntityType,
    LocalEntity,
    ResolveStatus,
    SyncItem,
    SyncStatus,
)
from guardian_notify.utils.datetime import ManualClock

ATTENDANCE_KEY = "attendance:S1:2024-05-01"


def attendance(status: str, user_id: str = "teacher-7") -> LocalEntity:
    return LocalEntity(
        entity_type=EntityType.ATTENDANCE,
        logical_key=ATTENDANCE_KEY,
        payload={"student_id": "S1", "date": "2024-05-01", "status": status},
        school_id="school-1",
        class_id="class-3b",
        user_id=user_id,
    )


class RaisingBackend(SyncBackend):
    """Backend that is reachable but always errors."""

    def __init__(self) -> None:
        self.calls = 0

    async def upsert(self, record: SyncRecord) -> UpsertResult:
        self.calls += 1
        raise ConnectionError("backend unavailable")


class SlowBackend(SyncBackend):
    """Backend that never answers in time."""

    async def upsert(self, record: SyncRecord) -> UpsertResult:
        await asyncio.sleep(5)
        return UpsertResult(status=UpsertStatus.ACCEPTED, server_version=1)


class FailOnceBackend(SyncBackend):
    """Delegates to an in-memory backend; the very first push errors."""

    def __init__(self, inner: InMemorySyncBackend) -> None:
        self.inner = inner
        self.pushed: list[str] = []

    async def upsert(self, record: SyncRecord) -> UpsertResult:
        self.pushed.append(record.local_id)
        if len(self.pushed) == 1:
            raise ConnectionError("link dropped")
        return await self.inner.upsert(record)


@pytest.fixture
def backend(clock: ManualClock) -> InMemorySyncBackend:
    return InMemorySyncBackend(clock)


@pytest.fixture
def engine(
    database: LocalDatabase,
    backend: InMemorySyncBackend,
    clock: ManualClock,
    sync_settings: SyncSettings,
    event_bus: EventBus,
) -> SyncEngine:
    return SyncEngine(database, backend, clock, sync_settings, event_bus=event_bus)


@pytest_asyncio.fixture
async def other_database(tmp_path: Path) -> AsyncIterator[LocalDatabase]:
    """Local store of a second device."""
    db = LocalDatabase(f"sqlite+aiosqlite:///{tmp_path / 'device_b.db'}")
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def other_engine(
    other_database: LocalDatabase,
    backend: InMemorySyncBackend,
    clock: ManualClock,
    sync_settings: SyncSettings,
) -> SyncEngine:
    settings = sync_settings.model_copy(update={"device_id": "device-b"})
    return SyncEngine(other_database, backend, clock, settings)


async def conflicting_item(engine: SyncEngine, other_engine: SyncEngine) -> str:
    """Device A writes first; device B's stale write conflicts."""
    await engine.enqueue_locally(attendance("absent"))
    await engine.sync_pending()
    local_id = await other_engine.enqueue_locally(attendance("present", user_id="teacher-9"))
    report = await other_engine.sync_pending()
    assert report.conflicts == 1
    return local_id


class TestLocalCapture:
    """Tests for enqueue_locally."""

    @pytest.mark.asyncio
    async def test_enqueue_creates_pending_item(self, engine: SyncEngine, clock: ManualClock) -> None:
        local_id = await engine.enqueue_locally(attendance("absent"))

        item = await engine.get(local_id)
        assert item.status == SyncStatus.PENDING
        assert item.device_id == "device-a"
        assert item.local_timestamp == clock.now()
        assert item.server_version is None

    @pytest.mark.asyncio
    async def test_enqueue_works_offline(self, engine: SyncEngine, backend: InMemorySyncBackend) -> None:
        await engine.set_online(False)

        local_id = await engine.enqueue_locally(attendance("absent"))

        assert (await engine.get(local_id)).status == SyncStatus.PENDING
        assert backend.upsert_count == 0


class TestSyncPass:
    """Tests for sync_pending."""

    @pytest.mark.asyncio
    async def test_pending_item_is_synced(
        self, engine: SyncEngine, backend: InMemorySyncBackend, clock: ManualClock
    ) -> None:
        synced: list[SyncItem] = []

        async def on_synced(item: SyncItem) -> None:
            synced.append(item)

        engine.add_synced_listener(on_synced)
        local_id = await engine.enqueue_locally(attendance("absent"))

        report = await engine.sync_pending()

        assert report.synced == 1
        assert report.attempted == 1
        item = await engine.get(local_id)
        assert item.status == SyncStatus.SYNCED
        assert item.server_version == 1
        assert item.synced_at == clock.now()
        assert [s.id for s in synced] == [local_id]
        assert backend.get("attendance", ATTENDANCE_KEY).payload["status"] == "absent"

    @pytest.mark.asyncio
    async def test_second_pass_pushes_nothing(self, engine: SyncEngine, backend: InMemorySyncBackend) -> None:
        await engine.enqueue_locally(attendance("absent"))
        await engine.sync_pending()

        report = await engine.sync_pending()

        assert report.attempted == 0
        assert backend.upsert_count == 1

    @pytest.mark.asyncio
    async def test_later_write_builds_on_synced_version(
        self, engine: SyncEngine, backend: InMemorySyncBackend
    ) -> None:
        await engine.enqueue_locally(attendance("absent"))
        await engine.sync_pending()
        second = await engine.enqueue_locally(attendance("late"))

        report = await engine.sync_pending()

        assert report.synced == 1
        assert (await engine.get(second)).server_version == 2
        assert backend.get("attendance", ATTENDANCE_KEY).payload["status"] == "late"

    @pytest.mark.asyncio
    async def test_stale_write_from_other_device_conflicts(
        self,
        engine: SyncEngine,
        other_engine: SyncEngine,
        backend: InMemorySyncBackend,
        recorder: Any,
    ) -> None:
        local_id = await conflicting_item(engine, other_engine)

        item = await other_engine.get(local_id)
        assert item.status == SyncStatus.CONFLICT
        assert item.server_version == 1
        assert item.server_payload["status"] == "absent"
        assert item.payload["status"] == "present"
        assert backend.get("attendance", ATTENDANCE_KEY).payload["status"] == "absent"
        assert [c.id for c in await other_engine.list_conflicts()] == [local_id]

    @pytest.mark.asyncio
    async def test_conflict_event_is_published(
        self,
        engine: SyncEngine,
        event_bus: EventBus,
        recorder: Any,
        backend: InMemorySyncBackend,
        other_database: LocalDatabase,
        clock: ManualClock,
        sync_settings: SyncSettings,
    ) -> None:
        settings = sync_settings.model_copy(update={"device_id": "device-b"})
        other = SyncEngine(other_database, backend, clock, settings, event_bus=event_bus)

        await conflicting_item(engine, other)

        assert "sync.conflict" in recorder.types()
        assert "sync.completed" in recorder.types()

    @pytest.mark.asyncio
    async def test_errors_retry_with_backoff_then_fail(
        self,
        database: LocalDatabase,
        clock: ManualClock,
        sync_settings: SyncSettings,
        event_bus: EventBus,
        recorder: Any,
    ) -> None:
        backend = RaisingBackend()
        engine = SyncEngine(database, backend, clock, sync_settings, event_bus=event_bus)
        local_id = await engine.enqueue_locally(attendance("absent"))

        assert (await engine.sync_pending()).failed == 1
        item = await engine.get(local_id)
        assert item.status == SyncStatus.PENDING
        assert item.retry_count == 1
        assert item.last_error == "backend unavailable"

        # Not due yet.
        assert (await engine.sync_pending()).attempted == 0
        assert backend.calls == 1

        clock.advance(seconds=30)
        await engine.sync_pending()
        assert (await engine.get(local_id)).retry_count == 2

        clock.advance(seconds=60)
        await engine.sync_pending()

        item = await engine.get(local_id)
        assert item.status == SyncStatus.FAILED
        assert item.retry_count == 3
        assert item.next_retry_at is None
        assert "sync.failed" in recorder.types()

        clock.advance(hours=1)
        await engine.sync_pending()
        assert backend.calls == 3

    @pytest.mark.asyncio
    async def test_timeout_counts_as_error(
        self, database: LocalDatabase, clock: ManualClock, sync_settings: SyncSettings
    ) -> None:
        settings = sync_settings.model_copy(update={"timeout_seconds": 0.05})
        engine = SyncEngine(database, SlowBackend(), clock, settings)
        local_id = await engine.enqueue_locally(attendance("absent"))

        await engine.sync_pending()

        item = await engine.get(local_id)
        assert item.status == SyncStatus.PENDING
        assert item.last_error.startswith("Upsert timed out")


class TestWriteOrdering:
    """Writes to one logical record reach the backend in capture order."""

    @pytest.mark.asyncio
    async def test_same_instant_captures_keep_their_order(
        self, engine: SyncEngine, backend: InMemorySyncBackend
    ) -> None:
        first = await engine.enqueue_locally(attendance("absent"))
        second = await engine.enqueue_locally(attendance("present"))

        await engine.sync_pending()
        await engine.sync_pending()

        assert (await engine.get(first)).sequence < (await engine.get(second)).sequence
        assert (await engine.get(first)).server_version == 1
        assert (await engine.get(second)).server_version == 2
        assert backend.get("attendance", ATTENDANCE_KEY).payload["status"] == "present"

    @pytest.mark.asyncio
    async def test_retried_older_write_does_not_overwrite_newer(
        self,
        database: LocalDatabase,
        backend: InMemorySyncBackend,
        clock: ManualClock,
        sync_settings: SyncSettings,
    ) -> None:
        flaky = FailOnceBackend(backend)
        engine = SyncEngine(database, flaky, clock, sync_settings)
        older = await engine.enqueue_locally(attendance("absent"))
        clock.advance(seconds=1)
        newer = await engine.enqueue_locally(attendance("present"))

        report = await engine.sync_pending()

        assert (report.failed, report.skipped) == (1, 1)
        assert flaky.pushed == [older]
        assert (await engine.get(newer)).status == SyncStatus.PENDING
        assert (await engine.get(newer)).retry_count == 0

        clock.advance(seconds=30)
        assert (await engine.sync_pending()).synced == 2

        assert (await engine.get(older)).server_version == 1
        assert (await engine.get(newer)).server_version == 2
        assert backend.get("attendance", ATTENDANCE_KEY).payload["status"] == "present"

    @pytest.mark.asyncio
    async def test_failed_older_write_releases_newer(
        self, database: LocalDatabase, clock: ManualClock, sync_settings: SyncSettings
    ) -> None:
        settings = sync_settings.model_copy(update={"max_retries": 1})
        engine = SyncEngine(database, RaisingBackend(), clock, settings)
        older = await engine.enqueue_locally(attendance("absent"))
        newer = await engine.enqueue_locally(attendance("present"))

        report = await engine.sync_pending()

        assert (report.failed, report.skipped) == (2, 0)
        assert (await engine.get(older)).status == SyncStatus.FAILED
        assert (await engine.get(newer)).status == SyncStatus.FAILED

    @pytest.mark.asyncio
    async def test_other_records_are_not_held(
        self,
        database: LocalDatabase,
        backend: InMemorySyncBackend,
        clock: ManualClock,
        sync_settings: SyncSettings,
    ) -> None:
        flaky = FailOnceBackend(backend)
        engine = SyncEngine(database, flaky, clock, sync_settings)
        await engine.enqueue_locally(attendance("absent"))
        other = await engine.enqueue_locally(
            LocalEntity(
                entity_type=EntityType.NOTES,
                logical_key="notes:S1:2024-05-01",
                payload={"text": "left early"},
                school_id="school-1",
                user_id="teacher-7",
            )
        )

        report = await engine.sync_pending()

        assert (report.failed, report.synced, report.skipped) == (1, 1, 0)
        assert (await engine.get(other)).status == SyncStatus.SYNCED


class TestConcurrentPasses:
    """Overlapping sync passes push each item once."""

    @pytest.mark.asyncio
    async def test_gathered_passes_push_each_item_once(
        self, engine: SyncEngine, backend: InMemorySyncBackend
    ) -> None:
        first = await engine.enqueue_locally(attendance("absent"))
        notes = await engine.enqueue_locally(
            LocalEntity(
                entity_type=EntityType.NOTES,
                logical_key="notes:S1:2024-05-01",
                payload={"text": "left early"},
                school_id="school-1",
                user_id="teacher-7",
            )
        )

        reports = await asyncio.gather(*(engine.sync_pending() for _ in range(3)))

        assert sum(r.synced for r in reports) == 2
        assert backend.upsert_count == 2
        assert (await engine.get(first)).server_version == 1
        assert (await engine.get(notes)).server_version == 1


class TestConnectivity:
    """Tests for offline behaviour and the online trigger."""

    @pytest.mark.asyncio
    async def test_offline_pass_is_skipped(self, engine: SyncEngine, backend: InMemorySyncBackend) -> None:
        await engine.set_online(False)
        local_id = await engine.enqueue_locally(attendance("absent"))

        report = await engine.sync_pending()

        assert report.attempted == 0
        assert backend.upsert_count == 0
        assert (await engine.get(local_id)).status == SyncStatus.PENDING

    @pytest.mark.asyncio
    async def test_going_online_runs_a_pass(self, engine: SyncEngine, recorder: Any) -> None:
        await engine.set_online(False)
        local_id = await engine.enqueue_locally(attendance("absent"))

        changed = await engine.set_online(True)

        assert changed is True
        assert (await engine.get(local_id)).status == SyncStatus.SYNCED
        assert recorder.types().count("connectivity.changed") == 2

    @pytest.mark.asyncio
    async def test_repeated_state_is_not_a_change(self, clock: ManualClock) -> None:
        calls: list[int] = []

        async def listener() -> None:
            calls.append(1)

        monitor = ConnectivityMonitor(clock=clock)
        monitor.on_online(listener)

        assert await monitor.set_online(True) is False
        assert await monitor.set_online(False) is True
        assert monitor.changed_at == clock.now()
        assert await monitor.set_online(True) is True
        assert calls == [1]


class TestConflictResolution:
    """Tests for resolve_conflict."""

    @pytest.mark.asyncio
    async def test_local_wins_overwrites_server(
        self, engine: SyncEngine, other_engine: SyncEngine, backend: InMemorySyncBackend
    ) -> None:
        local_id = await conflicting_item(engine, other_engine)

        outcome = await other_engine.resolve_conflict(
            local_id, ConflictResolution.LOCAL_WINS, reviewer="admin-1", role="school_admin"
        )

        assert outcome.status == ResolveStatus.RESOLVED
        assert outcome.item.status == SyncStatus.SYNCED
        assert outcome.item.server_version == 2
        assert outcome.item.conflict_resolution == ConflictResolution.LOCAL_WINS
        assert outcome.item.resolved_by == "admin-1"
        assert backend.get("attendance", ATTENDANCE_KEY).payload["status"] == "present"
        assert await other_engine.list_conflicts() == []

    @pytest.mark.asyncio
    async def test_server_wins_adopts_server_payload(
        self, engine: SyncEngine, other_engine: SyncEngine, backend: InMemorySyncBackend
    ) -> None:
        local_id = await conflicting_item(engine, other_engine)
        upserts = backend.upsert_count

        outcome = await other_engine.resolve_conflict(
            local_id, ConflictResolution.SERVER_WINS, reviewer="admin-1", role="school_admin"
        )

        assert outcome.status == ResolveStatus.RESOLVED
        assert outcome.item.status == SyncStatus.SYNCED
        assert outcome.item.payload["status"] == "absent"
        assert backend.upsert_count == upserts

    @pytest.mark.asyncio
    async def test_merged_pushes_merged_payload(
        self, engine: SyncEngine, other_engine: SyncEngine, backend: InMemorySyncBackend
    ) -> None:
        local_id = await conflicting_item(engine, other_engine)
        merged = {"student_id": "S1", "date": "2024-05-01", "status": "late", "note": "arrived 09:40"}

        outcome = await other_engine.resolve_conflict(
            local_id,
            ConflictResolution.MERGED,
            reviewer="admin-1",
            role="school_admin",
            merged_payload=merged,
        )

        assert outcome.status == ResolveStatus.RESOLVED
        assert outcome.item.payload == merged
        assert backend.get("attendance", ATTENDANCE_KEY).payload == merged

    @pytest.mark.asyncio
    async def test_merged_without_payload_is_invalid(
        self, engine: SyncEngine, other_engine: SyncEngine
    ) -> None:
        local_id = await conflicting_item(engine, other_engine)

        outcome = await other_engine.resolve_conflict(
            local_id, ConflictResolution.MERGED, reviewer="admin-1", role="school_admin"
        )

        assert outcome.status == ResolveStatus.INVALID
        assert (await other_engine.get(local_id)).status == SyncStatus.CONFLICT

    @pytest.mark.asyncio
    async def test_admin_review_keeps_conflict(self, engine: SyncEngine, other_engine: SyncEngine) -> None:
        local_id = await conflicting_item(engine, other_engine)

        outcome = await other_engine.resolve_conflict(
            local_id, ConflictResolution.ADMIN_REVIEW, reviewer="admin-1", role="platform_admin"
        )

        assert outcome.status == ResolveStatus.HELD_FOR_REVIEW
        assert outcome.item.status == SyncStatus.CONFLICT
        assert outcome.item.conflict_resolution == ConflictResolution.ADMIN_REVIEW
        assert [c.id for c in await other_engine.list_conflicts()] == [local_id]

    @pytest.mark.asyncio
    async def test_unauthorized_role_is_forbidden(self, engine: SyncEngine, other_engine: SyncEngine) -> None:
        local_id = await conflicting_item(engine, other_engine)

        outcome = await other_engine.resolve_conflict(
            local_id, ConflictResolution.LOCAL_WINS, reviewer="teacher-9", role="teacher"
        )

        assert outcome.status == ResolveStatus.FORBIDDEN
        assert (await other_engine.get(local_id)).status == SyncStatus.CONFLICT

    @pytest.mark.asyncio
    async def test_server_changed_again_is_still_conflicting(
        self, engine: SyncEngine, other_engine: SyncEngine
    ) -> None:
        local_id = await conflicting_item(engine, other_engine)
        await engine.enqueue_locally(attendance("late"))
        await engine.sync_pending()

        outcome = await other_engine.resolve_conflict(
            local_id, ConflictResolution.LOCAL_WINS, reviewer="admin-1", role="school_admin"
        )

        assert outcome.status == ResolveStatus.STILL_CONFLICTING
        assert outcome.item.status == SyncStatus.CONFLICT
        assert outcome.item.server_version == 2
        assert outcome.item.server_payload["status"] == "late"

    @pytest.mark.asyncio
    async def test_resolving_non_conflict(self, engine: SyncEngine) -> None:
        local_id = await engine.enqueue_locally(attendance("absent"))

        outcome = await engine.resolve_conflict(
            local_id, ConflictResolution.LOCAL_WINS, reviewer="admin-1", role="school_admin"
        )
        missing = await engine.resolve_conflict(
            "missing", ConflictResolution.LOCAL_WINS, reviewer="admin-1", role="school_admin"
        )

        assert outcome.status == ResolveStatus.NOT_A_CONFLICT
        assert missing.status == ResolveStatus.NOT_FOUND


class TestMaintenance:
    """Tests for recovery, stats and cleanup."""

    @pytest.mark.asyncio
    async def test_recover_in_flight_replays_without_duplicating(
        self, engine: SyncEngine, database: LocalDatabase, backend: InMemorySyncBackend
    ) -> None:
        local_id = await engine.enqueue_locally(attendance("absent"))
        await engine.sync_pending()
        # Simulate a crash after the backend accepted but before the local commit.
        async with database.session() as session:
            await session.execute(
                update(OfflineSyncItemModel)
                .where(OfflineSyncItemModel.id == local_id)
                .values(status=SyncStatus.SYNCING.value)
            )

        assert await engine.recover_in_flight() == 1
        await engine.sync_pending()

        item = await engine.get(local_id)
        assert item.status == SyncStatus.SYNCED
        assert item.server_version == 1
        assert backend.get("attendance", ATTENDANCE_KEY).version == 1

    @pytest.mark.asyncio
    async def test_stats_counts_by_status(self, engine: SyncEngine, other_engine: SyncEngine) -> None:
        await conflicting_item(engine, other_engine)
        await engine.enqueue_locally(attendance("late"))
        await other_engine.set_online(False)
        await other_engine.enqueue_locally(attendance("late"))

        stats_a = await engine.stats()
        stats_b = await other_engine.stats()

        assert (stats_a.synced, stats_a.pending) == (1, 1)
        assert (stats_b.conflicts, stats_b.pending) == (1, 1)

    @pytest.mark.asyncio
    async def test_clear_synced_keeps_newest_per_record(
        self, engine: SyncEngine, backend: InMemorySyncBackend, clock: ManualClock
    ) -> None:
        first = await engine.enqueue_locally(attendance("absent"))
        await engine.sync_pending()
        clock.advance(minutes=1)
        second = await engine.enqueue_locally(attendance("late"))
        await engine.sync_pending()

        assert await engine.clear_synced() == 1
        assert await engine.get(first) is None
        assert (await engine.get(second)).status == SyncStatus.SYNCED

        third = await engine.enqueue_locally(attendance("present"))
        await engine.sync_pending()
        assert (await engine.get(third)).server_version == 3

    @pytest.mark.asyncio
    async def test_clear_synced_before_cutoff(self, engine: SyncEngine, clock: ManualClock) -> None:
        await engine.enqueue_locally(attendance("absent"))
        await engine.sync_pending()
        cutoff = clock.now()
        clock.advance(minutes=1)
        await engine.enqueue_locally(attendance("late"))
        await engine.sync_pending()

        assert await engine.clear_synced(before=cutoff) == 0
        assert await engine.clear_synced(before=clock.now()) == 1
