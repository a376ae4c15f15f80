# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the notification admission pipeline."""

from datetime import date, datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from guardian_notify.core.content.validator import ContentValidator
from guardian_notify.core.rules.catalog import TemplateCatalog
from guardian_notify.core.rules.evaluator import RuleEvaluator
from guardian_notify.core.rules.models import EvaluationReason, SuppressionKey
from guardian_notify.domains.notifications.service import NotificationService
from guardian_notify.domains.queue.service import DeliveryQueue
from guardian_notify.domains.suppression.ledger import SuppressionLedger
from guardian_notify.infrastructure.database import DatabaseError
from guardian_notify.models.notification import (
    AckStatus,
    CancelStatus,
    NotificationStatus,
    SubmitStatus,
)
from guardian_notify.utils.datetime import ManualClock

START = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
ABSENCE_KEY = SuppressionKey("S1", date(2024, 5, 1), "student_marked_absent")


class TestAbsenceScenario:
    """End-to-end flow for a single absence notice."""

    @pytest.mark.asyncio
    async def test_teacher_cancels_within_delay(
        self,
        service: NotificationService,
        clock: ManualClock,
        channel: Any,
        ledger: SuppressionLedger,
        absence_payload: dict[str, Any],
    ) -> None:
        outcome = await service.submit_event(absence_payload)

        assert outcome.status == SubmitStatus.QUEUED
        assert outcome.rule_id == "first_day_absence"
        assert outcome.notification.status == NotificationStatus.PENDING
        assert outcome.notification.scheduled_for == START + timedelta(minutes=30)

        clock.advance(minutes=5)
        cancelled = await service.cancel(outcome.notification.id, actor="teacher-7", role="teacher")
        assert cancelled.status == CancelStatus.CANCELLED

        clock.advance(hours=1)
        report = await service.run_due()

        assert report.sent == 0
        assert channel.sent == []
        assert not await ledger.contains(ABSENCE_KEY)

    @pytest.mark.asyncio
    async def test_notice_is_sent_after_delay_and_duplicate_is_suppressed(
        self,
        service: NotificationService,
        queue: DeliveryQueue,
        clock: ManualClock,
        channel: Any,
        ledger: SuppressionLedger,
        recorder: Any,
        absence_payload: dict[str, Any],
    ) -> None:
        outcome = await service.submit_event(absence_payload)

        clock.advance(minutes=30)
        report = await service.run_due()
        assert report.promoted == 1
        assert report.sent == 0
        assert (await queue.get(outcome.notification.id)).status == NotificationStatus.READY

        clock.advance(seconds=1)
        report = await service.run_due()
        assert report.sent == 1
        assert report.errors == []
        assert len(channel.sent) == 1
        assert await ledger.get_sent_at(ABSENCE_KEY) == clock.now()

        duplicate = await service.submit_event(absence_payload)

        assert duplicate.status == SubmitStatus.SUPPRESSED
        assert duplicate.reason == "duplicate suppressed"
        assert duplicate.notification is None
        assert "notification.suppressed" in recorder.types()

    @pytest.mark.asyncio
    async def test_duplicate_while_pending_is_suppressed(
        self, service: NotificationService, queue: DeliveryQueue, absence_payload: dict[str, Any]
    ) -> None:
        await service.submit_event(absence_payload)

        duplicate = await service.submit_event(absence_payload)

        assert duplicate.status == SubmitStatus.SUPPRESSED
        assert len(await queue.list_by_status(NotificationStatus.PENDING)) == 1

    @pytest.mark.asyncio
    async def test_next_day_is_a_new_key(self, service: NotificationService, absence_payload: dict[str, Any]) -> None:
        await service.submit_event(absence_payload)

        outcome = await service.submit_event({**absence_payload, "event_date": "2024-05-02"})

        assert outcome.queued


class TestRejections:
    """Policy rejections and validation errors."""

    @pytest.mark.asyncio
    async def test_invalid_payload(self, service: NotificationService, absence_payload: dict[str, Any]) -> None:
        payload = {**absence_payload, "kind": "student_vanished"}
        del payload["subject_id"]

        outcome = await service.submit_event(payload)

        assert outcome.status == SubmitStatus.INVALID
        assert outcome.reason == "invalid_event"
        assert any(error.startswith("subject_id:") for error in outcome.errors)
        assert any(error.startswith("kind:") for error in outcome.errors)

    @pytest.mark.asyncio
    async def test_missing_trigger_fields(self, service: NotificationService) -> None:
        outcome = await service.submit_event(
            {
                "subject_id": "S1",
                "school_id": "school-1",
                "event_date": "2024-05-01",
                "kind": "early_pickup_requested",
                "actor": "office-1",
                "data": {"pickup_time": "13:00"},
            }
        )

        assert outcome.status == SubmitStatus.INVALID
        assert outcome.errors == ("data.pickup_person: required for early_pickup_requested",)

    @pytest.mark.asyncio
    async def test_missing_template_variable(
        self, service: NotificationService, queue: DeliveryQueue, absence_payload: dict[str, Any]
    ) -> None:
        payload = {**absence_payload, "data": {}}

        outcome = await service.submit_event(payload)

        assert outcome.status == SubmitStatus.INVALID
        assert outcome.reason == "missing_variables"
        assert outcome.errors == ("missing variable: school_name",)
        assert await queue.list_by_status(NotificationStatus.PENDING) == []

    @pytest.mark.asyncio
    async def test_no_matching_rule(self, service: NotificationService, absence_payload: dict[str, Any]) -> None:
        outcome = await service.submit_event({**absence_payload, "kind": "pattern_detected"})

        assert outcome.status == SubmitStatus.SUPPRESSED
        assert outcome.reason == EvaluationReason.NO_MATCHING_RULE.value

    @pytest.mark.asyncio
    async def test_override_suppresses(self, service: NotificationService, absence_payload: dict[str, Any]) -> None:
        payload = {
            **absence_payload,
            "override": {"actor": "teacher-7", "role": "teacher", "action": "suppress", "reason": "on a trip"},
        }

        outcome = await service.submit_event(payload)

        assert outcome.status == SubmitStatus.SUPPRESSED
        assert outcome.reason == "suppressed by override"

    @pytest.mark.asyncio
    async def test_blocked_content_is_not_queued(
        self,
        service: NotificationService,
        queue: DeliveryQueue,
        ledger: SuppressionLedger,
        emergency_payload: dict[str, Any],
    ) -> None:
        payload = {
            **emergency_payload,
            "data": {
                **emergency_payload["data"],
                "emergency_message": "Students with ADHD must stay in room 4",
            },
        }

        outcome = await service.submit_event(payload)

        assert outcome.status == SubmitStatus.BLOCKED
        assert outcome.reason == "content blocked"
        assert "sensitive_content: ADHD" in outcome.errors
        assert "Remove medical and personal details" in outcome.suggestions
        assert await queue.list_by_status(NotificationStatus.READY) == []
        assert await ledger.snapshot("school-1") == frozenset()

    @pytest.mark.asyncio
    async def test_warnings_are_carried_on_the_notification(
        self, service: NotificationService, emergency_payload: dict[str, Any]
    ) -> None:
        outcome = await service.submit_event(emergency_payload)

        assert outcome.queued
        assert "alarming: URGENT" in outcome.warnings
        assert outcome.notification.content_warnings == list(outcome.warnings)

    @pytest.mark.asyncio
    async def test_store_failure_is_an_error_outcome(
        self,
        evaluator: RuleEvaluator,
        catalog: TemplateCatalog,
        validator: ContentValidator,
        ledger: SuppressionLedger,
        queue: DeliveryQueue,
        clock: ManualClock,
        absence_payload: dict[str, Any],
    ) -> None:
        service = NotificationService(evaluator, catalog, validator, ledger, queue, clock)

        with patch.object(queue, "enqueue", AsyncMock(side_effect=DatabaseError("disk full"))):
            outcome = await service.submit_event(absence_payload)

        assert outcome.status == SubmitStatus.ERROR
        assert outcome.reason == "database_error"
        assert outcome.errors == ("disk full",)


class TestOperations:
    """Tests for cancel, acknowledge, evaluate and run_due."""

    @pytest.mark.asyncio
    async def test_evaluate_is_a_dry_run(
        self, service: NotificationService, queue: DeliveryQueue, absence_payload: dict[str, Any]
    ) -> None:
        from guardian_notify.core.rules.events import TriggerEvent

        result = await service.evaluate(TriggerEvent.from_payload(absence_payload))

        assert result.should_send is True
        assert await queue.list_by_status(NotificationStatus.PENDING) == []

    @pytest.mark.asyncio
    async def test_cancel_with_unauthorized_role(
        self, service: NotificationService, absence_payload: dict[str, Any]
    ) -> None:
        outcome = await service.submit_event(absence_payload)

        cancelled = await service.cancel(outcome.notification.id, actor="parent-1", role="parent")

        assert cancelled.status == CancelStatus.FORBIDDEN

    @pytest.mark.asyncio
    async def test_acknowledge_sent_emergency(
        self, service: NotificationService, clock: ManualClock, emergency_payload: dict[str, Any]
    ) -> None:
        outcome = await service.submit_event(emergency_payload)
        clock.advance(seconds=1)
        await service.run_due()

        ack = await service.acknowledge(outcome.notification.id, actor="guardian-12")

        assert ack.status == AckStatus.ACKNOWLEDGED

    @pytest.mark.asyncio
    async def test_run_due_escalates(
        self, service: NotificationService, clock: ManualClock, emergency_payload: dict[str, Any]
    ) -> None:
        await service.submit_event(emergency_payload)
        clock.advance(seconds=1)
        await service.run_due()

        clock.advance(minutes=5)
        report = await service.run_due()

        assert report.escalated == 1

    @pytest.mark.asyncio
    async def test_run_due_collects_store_errors(
        self, service: NotificationService, queue: DeliveryQueue
    ) -> None:
        with patch.object(queue, "promote_due", AsyncMock(side_effect=DatabaseError("locked"))):
            report = await service.run_due()

        assert report.errors == ["promote: locked"]
        assert report.sent == 0
