# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Guardian notification service.

Entry point for trigger events coming from attendance, announcements and
emergency workflows. Runs the admission pipeline:

    validate event -> rule evaluation (with ledger snapshot) -> render
    -> content validation -> queue admission (atomic ledger reservation)

and returns a typed outcome for every public call. Policy rejections
(duplicates, overrides, blocked content) are outcomes, not errors.
"""

import logging
from collections.abc import Mapping
from typing import Any

from guardian_notify.core.content.validator import ContentValidator
from guardian_notify.core.errors import EventValidationError, TemplateRenderError
from guardian_notify.core.rules.catalog import TemplateCatalog
from guardian_notify.core.rules.evaluator import RuleEvaluator
from guardian_notify.core.rules.events import TriggerEvent
from guardian_notify.core.rules.models import EvaluationReason, EvaluationResult
from guardian_notify.domains.queue.service import DeliveryQueue
from guardian_notify.domains.suppression.ledger import SuppressionLedger
from guardian_notify.infrastructure.database import DatabaseError
from guardian_notify.infrastructure.events import EventBus, EventTypes
from guardian_notify.models.notification import (
    AckOutcome,
    AckStatus,
    CancelOutcome,
    CancelStatus,
    DispatchReport,
    SubmitOutcome,
    SubmitStatus,
)
from guardian_notify.utils.datetime import Clock
from guardian_notify.utils.logging import bind_context, clear_context

logger = logging.getLogger(__name__)


class NotificationService:
    """Admission pipeline and human-facing operations for notifications."""

    def __init__(
        self,
        evaluator: RuleEvaluator,
        catalog: TemplateCatalog,
        validator: ContentValidator,
        ledger: SuppressionLedger,
        queue: DeliveryQueue,
        clock: Clock,
        event_bus: EventBus | None = None,
    ) -> None:
        self._evaluator = evaluator
        self._catalog = catalog
        self._validator = validator
        self._ledger = ledger
        self._queue = queue
        self._clock = clock
        self._event_bus = event_bus

    async def _publish_rejection(self, event: TriggerEvent, reason: str, rule_id: str | None) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(
            EventTypes.Notification.SUPPRESSED,
            {
                "event_id": event.event_id,
                "subject_id": event.subject_id,
                "kind": event.kind.value,
                "reason": reason,
                "rule_id": rule_id,
            },
            school_id=event.school_id,
        )

    async def evaluate(self, event: TriggerEvent) -> EvaluationResult:
        """Dry-run evaluation against the current ledger; queues nothing."""
        snapshot = await self._ledger.snapshot(event.subject_id)
        return self._evaluator.evaluate(event, snapshot, self._clock.now())

    async def submit_event(self, payload: TriggerEvent | Mapping[str, Any]) -> SubmitOutcome:
        """Evaluate a trigger event and queue the notification it calls for.

        Args:
            payload: A TriggerEvent or its raw mapping.

        Returns:
            SubmitOutcome. QUEUED carries the new notification; SUPPRESSED
            and BLOCKED are policy rejections; INVALID reports validation
            errors; ERROR means the local store failed. Nothing is persisted
            unless the outcome is QUEUED.
        """
        try:
            event = payload if isinstance(payload, TriggerEvent) else TriggerEvent.from_payload(payload)
            self._catalog.check_event(event)
        except EventValidationError as e:
            logger.info("Rejected invalid trigger event: %s", e.message)
            return SubmitOutcome(SubmitStatus.INVALID, reason=e.code, errors=tuple(e.errors))

        bind_context(event_id=event.event_id, subject_id=event.subject_id, school_id=event.school_id)
        try:
            return await self._submit(event)
        except TemplateRenderError as e:
            logger.info("Template %s could not be rendered: %s", e.template_id, e.message)
            return SubmitOutcome(
                SubmitStatus.INVALID,
                reason=e.code,
                errors=tuple(f"missing variable: {name}" for name in e.missing),
            )
        except DatabaseError as e:
            logger.error("Local store failure while submitting %s: %s", event.event_id, str(e))
            return SubmitOutcome(SubmitStatus.ERROR, reason=e.code, errors=(str(e),))
        finally:
            clear_context()

    async def _submit(self, event: TriggerEvent) -> SubmitOutcome:
        evaluation = await self.evaluate(event)
        if not evaluation.should_send:
            await self._publish_rejection(event, evaluation.reason.value, evaluation.rule_id)
            return SubmitOutcome(
                SubmitStatus.SUPPRESSED,
                reason=evaluation.reason.value,
                rule_id=evaluation.rule_id,
            )

        rule = evaluation.rule
        message = self._catalog.render(rule.template_id, evaluation.variables)
        validation = self._validator.validate(message.text)
        if not validation.is_valid:
            logger.warning(
                "Content blocked for rule %s: %s",
                rule.id,
                "; ".join(validation.blocked_reasons),
            )
            await self._publish_rejection(event, EvaluationReason.CONTENT_BLOCKED.value, rule.id)
            return SubmitOutcome(
                SubmitStatus.BLOCKED,
                reason=EvaluationReason.CONTENT_BLOCKED.value,
                rule_id=rule.id,
                errors=tuple(validation.blocked_reasons),
                suggestions=validation.suggestions,
            )

        audience = rule.audience.bind(event)
        notification = await self._queue.enqueue(
            event,
            evaluation,
            message,
            audience,
            content_warnings=validation.warnings,
        )
        if notification is None:
            # Lost the race for the suppression key to a concurrent event.
            await self._publish_rejection(event, EvaluationReason.DUPLICATE_SUPPRESSED.value, rule.id)
            return SubmitOutcome(
                SubmitStatus.SUPPRESSED,
                reason=EvaluationReason.DUPLICATE_SUPPRESSED.value,
                rule_id=rule.id,
            )

        return SubmitOutcome(
            SubmitStatus.QUEUED,
            reason=evaluation.reason.value,
            notification=notification,
            rule_id=rule.id,
            warnings=tuple(validation.warnings),
            suggestions=validation.suggestions,
        )

    async def cancel(
        self,
        notification_id: str,
        actor: str,
        role: str,
        reason: str | None = None,
    ) -> CancelOutcome:
        """Cancel a queued notification on behalf of a staff member.

        Args:
            notification_id: Item to cancel.
            actor: Staff member id.
            role: Staff role, checked against the rule's override roles.
            reason: Optional free-text reason.

        Returns:
            CancelOutcome.
        """
        try:
            return await self._queue.cancel(notification_id, actor, role=role, reason=reason)
        except DatabaseError as e:
            logger.error("Local store failure while cancelling %s: %s", notification_id, str(e))
            return CancelOutcome(CancelStatus.ERROR, message=str(e))

    async def acknowledge(self, notification_id: str, actor: str) -> AckOutcome:
        """Record a guardian or staff acknowledgment of a sent notice."""
        try:
            return await self._queue.acknowledge(notification_id, actor)
        except DatabaseError as e:
            logger.error("Local store failure while acknowledging %s: %s", notification_id, str(e))
            return AckOutcome(AckStatus.ERROR, message=str(e))

    async def run_due(self) -> DispatchReport:
        """One scheduler tick: promote, dispatch, then escalate.

        Each step runs even if an earlier one hit a store error; errors are
        collected on the report.
        """
        report = DispatchReport()

        try:
            report.promoted = len(await self._queue.promote_due())
        except DatabaseError as e:
            logger.error("Promotion failed: %s", str(e))
            report.errors.append(f"promote: {e}")

        try:
            dispatched = await self._queue.dispatch_ready()
            report.sent = dispatched.sent
            report.retried = dispatched.retried
            report.failed = dispatched.failed
        except DatabaseError as e:
            logger.error("Dispatch failed: %s", str(e))
            report.errors.append(f"dispatch: {e}")

        try:
            report.escalated = await self._queue.check_escalations()
        except DatabaseError as e:
            logger.error("Escalation check failed: %s", str(e))
            report.errors.append(f"escalate: {e}")

        return report
