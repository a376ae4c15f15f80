# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the suppression ledger."""

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from guardian_notify.core.rules.models import SuppressionKey
from guardian_notify.domains.suppression.ledger import SuppressionLedger
from guardian_notify.infrastructure.database import LocalDatabase

NOW = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
KEY = SuppressionKey("S1", date(2024, 5, 1), "student_marked_absent")


async def reserve(database: LocalDatabase, ledger: SuppressionLedger, key: SuppressionKey, owner: str) -> bool:
    async with database.session() as session:
        return await ledger.reserve(session, key, owner, NOW)


class TestReserve:
    """Tests for atomic reservation."""

    @pytest.mark.asyncio
    async def test_first_reservation_wins(self, database: LocalDatabase, ledger: SuppressionLedger) -> None:
        assert await reserve(database, ledger, KEY, "n-1") is True
        assert await reserve(database, ledger, KEY, "n-2") is False

        assert await ledger.contains(KEY)

    @pytest.mark.asyncio
    async def test_distinct_trigger_classes_coexist(
        self, database: LocalDatabase, ledger: SuppressionLedger
    ) -> None:
        late = SuppressionKey("S1", date(2024, 5, 1), "student_marked_late")

        assert await reserve(database, ledger, KEY, "n-1")
        assert await reserve(database, ledger, late, "n-2")

        assert await ledger.snapshot("S1") == frozenset({KEY, late})
        assert await ledger.snapshot("S2") == frozenset()

    @pytest.mark.asyncio
    async def test_concurrent_reservations_have_one_winner(
        self, database: LocalDatabase, ledger: SuppressionLedger
    ) -> None:
        owners = [f"n-{i}" for i in range(6)]

        results = await asyncio.gather(*(reserve(database, ledger, KEY, owner) for owner in owners))

        assert results.count(True) == 1
        assert await ledger.snapshot("S1") == frozenset({KEY})


class TestConfirmAndRelease:
    """Tests for confirming sends and releasing reservations."""

    @pytest.mark.asyncio
    async def test_confirm_records_sent_at(self, database: LocalDatabase, ledger: SuppressionLedger) -> None:
        await reserve(database, ledger, KEY, "n-1")
        sent_at = NOW + timedelta(minutes=30)

        async with database.session() as session:
            await ledger.confirm(session, KEY, "n-1", sent_at)

        assert await ledger.get_sent_at(KEY) == sent_at

    @pytest.mark.asyncio
    async def test_release_unsent_reservation(self, database: LocalDatabase, ledger: SuppressionLedger) -> None:
        await reserve(database, ledger, KEY, "n-1")

        async with database.session() as session:
            assert await ledger.release(session, KEY, "n-1") is True

        assert not await ledger.contains(KEY)
        assert await reserve(database, ledger, KEY, "n-2") is True

    @pytest.mark.asyncio
    async def test_release_by_other_owner_is_ignored(
        self, database: LocalDatabase, ledger: SuppressionLedger
    ) -> None:
        await reserve(database, ledger, KEY, "n-1")

        async with database.session() as session:
            assert await ledger.release(session, KEY, "n-2") is False

        assert await ledger.contains(KEY)

    @pytest.mark.asyncio
    async def test_sent_key_is_never_released(self, database: LocalDatabase, ledger: SuppressionLedger) -> None:
        await reserve(database, ledger, KEY, "n-1")
        async with database.session() as session:
            await ledger.confirm(session, KEY, "n-1", NOW)

        async with database.session() as session:
            assert await ledger.release(session, KEY, "n-1") is False

        assert await ledger.contains(KEY)


class TestPrune:
    """Tests for retention pruning."""

    @pytest.mark.asyncio
    async def test_prune_removes_records_past_retention(
        self, database: LocalDatabase, ledger: SuppressionLedger
    ) -> None:
        old = SuppressionKey("S1", date(2024, 4, 20), "student_marked_absent")
        edge = SuppressionKey("S1", date(2024, 4, 24), "student_marked_absent")
        await reserve(database, ledger, old, "n-1")
        await reserve(database, ledger, edge, "n-2")
        await reserve(database, ledger, KEY, "n-3")

        deleted = await ledger.prune(NOW)

        assert deleted == 1
        assert await ledger.snapshot("S1") == frozenset({edge, KEY})

    @pytest.mark.asyncio
    async def test_prune_with_nothing_to_delete(self, ledger: SuppressionLedger) -> None:
        assert await ledger.prune(NOW) == 0
