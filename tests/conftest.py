# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

Every test that touches storage gets its own temporary SQLite file and a
manual clock starting on Wednesday 2024-05-01 09:00 UTC.
"""

from collections.abc import AsyncIterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from guardian_notify.core.config.settings import DeliverySettings, SyncSettings
from guardian_notify.core.content.validator import ContentValidator
from guardian_notify.core.rules.catalog import TemplateCatalog
from guardian_notify.core.rules.defaults import DEFAULT_RULES
from guardian_notify.core.rules.evaluator import RuleEvaluator
from guardian_notify.core.rules.models import ResolvedAudience
from guardian_notify.domains.notifications.service import NotificationService
from guardian_notify.domains.queue.service import DeliveryQueue
from guardian_notify.domains.suppression.ledger import SuppressionLedger
from guardian_notify.infrastructure.database import LocalDatabase
from guardian_notify.infrastructure.events import EventBus, EventData
from guardian_notify.infrastructure.notifications.channels import (
    DeliveryChannel,
    DeliveryResult,
    OutboundMessage,
)
from guardian_notify.utils.datetime import ManualClock

START = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


# =============================================================================
# Test Doubles
# =============================================================================


class FakeChannel(DeliveryChannel):
    """Channel that records sends and fails on demand."""

    name = "fake"

    def __init__(self) -> None:
        super().__init__()
        self.sent: list[tuple[OutboundMessage, ResolvedAudience]] = []
        self.failures_remaining = 0
        self.raise_error: Exception | None = None

    async def send(self, message: OutboundMessage, audience: ResolvedAudience) -> DeliveryResult:
        if self.raise_error is not None:
            raise self.raise_error
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            return self.create_failure_result("http_503", "gateway unavailable")
        self.sent.append((message, audience))
        return self.create_success_result(f"msg-{len(self.sent)}")


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[EventData] = []
        bus.subscribe("*", self._record)

    async def _record(self, event: EventData) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [event.event_type for event in self.events]


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncIterator[LocalDatabase]:
    """Temporary local store with all tables created."""
    db = LocalDatabase(f"sqlite+aiosqlite:///{tmp_path / 'guardian_notify.db'}")
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus)


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def catalog() -> TemplateCatalog:
    return TemplateCatalog()


@pytest.fixture
def evaluator(catalog: TemplateCatalog) -> RuleEvaluator:
    return RuleEvaluator(DEFAULT_RULES, catalog)


@pytest.fixture
def validator() -> ContentValidator:
    return ContentValidator()


@pytest.fixture
def delivery_settings() -> DeliverySettings:
    return DeliverySettings(
        channel="log",
        max_attempts=3,
        backoff_base_seconds=60,
        backoff_max_seconds=600,
        send_timeout_seconds=1,
    )


@pytest.fixture
def sync_settings() -> SyncSettings:
    return SyncSettings(
        backend="memory",
        max_retries=3,
        backoff_base_seconds=30,
        backoff_max_seconds=300,
        timeout_seconds=1,
        device_id="device-a",
    )


@pytest.fixture
def ledger(database: LocalDatabase) -> SuppressionLedger:
    return SuppressionLedger(database, retention_days=7)


@pytest.fixture
def queue(
    database: LocalDatabase,
    ledger: SuppressionLedger,
    channel: FakeChannel,
    clock: ManualClock,
    delivery_settings: DeliverySettings,
    evaluator: RuleEvaluator,
    catalog: TemplateCatalog,
    validator: ContentValidator,
    event_bus: EventBus,
) -> DeliveryQueue:
    return DeliveryQueue(
        database=database,
        ledger=ledger,
        channel=channel,
        clock=clock,
        settings=delivery_settings,
        rule_lookup=evaluator.get_rule,
        catalog=catalog,
        validator=validator,
        event_bus=event_bus,
    )


@pytest.fixture
def service(
    evaluator: RuleEvaluator,
    catalog: TemplateCatalog,
    validator: ContentValidator,
    ledger: SuppressionLedger,
    queue: DeliveryQueue,
    clock: ManualClock,
    event_bus: EventBus,
) -> NotificationService:
    return NotificationService(
        evaluator=evaluator,
        catalog=catalog,
        validator=validator,
        ledger=ledger,
        queue=queue,
        clock=clock,
        event_bus=event_bus,
    )


# =============================================================================
# Helper Fixtures
# =============================================================================


@pytest.fixture
def absence_payload() -> dict[str, Any]:
    """Raw 'marked absent' event for student S1 on 2024-05-01."""
    return {
        "subject_id": "S1",
        "school_id": "school-1",
        "event_date": "2024-05-01",
        "kind": "student_marked_absent",
        "actor": "teacher-7",
        "subject_name": "Amara",
        "class_id": "class-3b",
        "data": {"school_name": "Riverside Primary"},
    }


@pytest.fixture
def emergency_payload() -> dict[str, Any]:
    return {
        "subject_id": "school-1",
        "school_id": "school-1",
        "event_date": "2024-05-01",
        "kind": "emergency_declared",
        "actor": "principal-1",
        "data": {
            "school_name": "Riverside Primary",
            "emergency_type": "Lockdown",
            "emergency_message": "The school is in lockdown. Students are safe indoors.",
        },
    }
