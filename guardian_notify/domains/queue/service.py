# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Delayed delivery queue.

Holds accepted notifications in a cancellable pending state until their
delay window expires, promotes them to ready, hands them to the delivery
channel with bounded retries, and escalates unacknowledged notices.

Every status change is a compare-and-swap ``UPDATE ... WHERE status =
expected`` on a single row, so the scheduler tick and a cancellation
coming from the UI can run concurrently without a lock.

Cancellation vs promotion: a cancellation succeeds while the item is
pending or ready and the cancellation instant is at or before
``scheduled_for``. Ready items are only dispatched once the clock is
strictly past ``scheduled_for``, so a cancellation at exactly
``scheduled_for`` always wins and one strictly after always loses.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from guardian_notify.core.config.settings import DeliverySettings
from guardian_notify.core.content.validator import ContentValidator
from guardian_notify.core.rules.catalog import RenderedMessage, TemplateCatalog
from guardian_notify.core.rules.events import TriggerEvent
from guardian_notify.core.rules.models import (
    EvaluationResult,
    ResolvedAudience,
    Rule,
    SuppressionKey,
    trigger_class,
)
from guardian_notify.domains.queue.state import check_transition
from guardian_notify.domains.suppression.ledger import SuppressionLedger
from guardian_notify.infrastructure.database import LocalDatabase
from guardian_notify.infrastructure.database.models import (
    NotificationTransition as NotificationTransitionModel,
    QueuedNotification as QueuedNotificationModel,
)
from guardian_notify.infrastructure.events import EventBus, EventTypes
from guardian_notify.infrastructure.notifications.channels import (
    DeliveryChannel,
    DeliveryResult,
    OutboundMessage,
)
from guardian_notify.models.notification import (
    CANCELLABLE_STATUSES,
    AckOutcome,
    AckStatus,
    CancelOutcome,
    CancelStatus,
    DispatchReport,
    NotificationStatus,
    NotificationTransitionEntry,
    QueuedNotification,
)
from guardian_notify.utils.datetime import Clock, exponential_backoff

logger = logging.getLogger(__name__)

ESCALATION_TEMPLATE_ID = "escalation_notice"

RuleLookup = Callable[[str], Rule | None]


def _suppression_key(row: QueuedNotificationModel) -> SuppressionKey:
    return SuppressionKey(row.subject_id, row.event_date, row.trigger_class)


def _chain_unacknowledged() -> Any:
    """Neither the item nor the notice it escalates has been acknowledged."""
    parent = aliased(QueuedNotificationModel)
    return and_(
        QueuedNotificationModel.acknowledged_at.is_(None),
        ~select(parent.id)
        .where(
            parent.id == QueuedNotificationModel.parent_id,
            parent.acknowledged_at.is_not(None),
        )
        .exists(),
    )


class DeliveryQueue:
    """Cancellable, delayed, retrying delivery queue over the local store."""

    def __init__(
        self,
        database: LocalDatabase,
        ledger: SuppressionLedger,
        channel: DeliveryChannel,
        clock: Clock,
        settings: DeliverySettings,
        rule_lookup: RuleLookup,
        catalog: TemplateCatalog,
        validator: ContentValidator,
        event_bus: EventBus | None = None,
    ) -> None:
        self._database = database
        self._ledger = ledger
        self._channel = channel
        self._clock = clock
        self._settings = settings
        self._rule_lookup = rule_lookup
        self._catalog = catalog
        self._validator = validator
        self._event_bus = event_bus

    # =========================================================================
    # Helpers
    # =========================================================================

    def _add_transition(
        self,
        session: AsyncSession,
        notification_id: str,
        from_status: NotificationStatus | None,
        to_status: NotificationStatus,
        now: datetime,
        actor: str | None = None,
        detail: str | None = None,
    ) -> None:
        if from_status != to_status:
            check_transition(notification_id, from_status, to_status)
        session.add(
            NotificationTransitionModel(
                notification_id=notification_id,
                from_status=from_status.value if from_status else None,
                to_status=to_status.value,
                actor=actor,
                detail=detail,
                occurred_at=now,
            )
        )

    async def _cas(
        self,
        session: AsyncSession,
        notification_id: str,
        expected: NotificationStatus,
        target: NotificationStatus,
        values: dict[str, Any],
        *conditions: Any,
    ) -> bool:
        check_transition(notification_id, expected, target)
        result = await session.execute(
            update(QueuedNotificationModel)
            .where(
                QueuedNotificationModel.id == notification_id,
                QueuedNotificationModel.status == expected.value,
                *conditions,
            )
            .values(status=target.value, **values)
        )
        return result.rowcount == 1

    async def _load(self, session: AsyncSession, notification_id: str) -> QueuedNotificationModel | None:
        result = await session.execute(
            select(QueuedNotificationModel)
            .where(QueuedNotificationModel.id == notification_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _publish(self, event_type: str, notification: QueuedNotification, **extra: Any) -> None:
        if self._event_bus is None:
            return
        payload = {
            "notification_id": notification.id,
            "rule_id": notification.rule_id,
            "subject_id": notification.subject_id,
            "status": notification.status.value,
            "escalation_level": notification.escalation_level,
            **extra,
        }
        await self._event_bus.publish(event_type, payload, school_id=notification.school_id)

    @staticmethod
    def _new_row(
        notification_id: str,
        *,
        rule_id: str,
        category: str,
        trigger_class_value: str,
        subject_id: str,
        school_id: str,
        event_date: Any,
        template_id: str,
        variables: dict[str, Any],
        message: RenderedMessage,
        audience: ResolvedAudience,
        content_warnings: Sequence[str],
        status: NotificationStatus,
        scheduled_for: datetime,
        escalation_level: int,
        parent_id: str | None,
        source_event: dict[str, Any],
        now: datetime,
    ) -> QueuedNotificationModel:
        return QueuedNotificationModel(
            id=notification_id,
            rule_id=rule_id,
            category=category,
            trigger_class=trigger_class_value,
            subject_id=subject_id,
            school_id=school_id,
            event_date=event_date,
            template_id=template_id,
            variables=dict(variables),
            subject=message.subject,
            body=message.body,
            audience=audience.model_dump(mode="json"),
            content_warnings=list(content_warnings),
            status=status.value,
            scheduled_for=scheduled_for,
            cancellable_until=scheduled_for,
            escalation_level=escalation_level,
            parent_id=parent_id,
            escalation_error=None,
            attempts=0,
            next_attempt_at=None,
            last_error=None,
            sent_at=None,
            provider_message_id=None,
            acknowledged_at=None,
            acknowledged_by=None,
            cancelled_at=None,
            cancelled_by=None,
            local_only=True,
            server_synced=False,
            source_event=source_event,
            created_at=now,
            updated_at=now,
        )

    # =========================================================================
    # Admission
    # =========================================================================

    async def enqueue(
        self,
        event: TriggerEvent,
        evaluation: EvaluationResult,
        message: RenderedMessage,
        audience: ResolvedAudience,
        content_warnings: Sequence[str] = (),
    ) -> QueuedNotification | None:
        """Admit an accepted notification.

        The suppression key is reserved in the same transaction as the
        insert, so of two concurrent admissions for one key only one
        succeeds.

        Args:
            event: Source trigger event.
            evaluation: Accepted evaluation result.
            message: Rendered message (immutable from here on).
            audience: Audience bound to the event.
            content_warnings: Warning-tier content findings.

        Returns:
            The queued notification, or None if the key was already taken.

        Raises:
            ValueError: If the evaluation did not accept the event.
        """
        if not evaluation.should_send or evaluation.rule is None or evaluation.scheduled_for is None:
            raise ValueError("Only accepted evaluations can be enqueued")

        rule = evaluation.rule
        key = evaluation.suppression_key or SuppressionKey.for_event(event)
        now = self._clock.now()
        scheduled_for = evaluation.scheduled_for

        status = NotificationStatus.PENDING
        if scheduled_for <= now:
            if scheduled_for < now:
                logger.warning(
                    "scheduled_for %s is before now %s for rule %s; treating as ready",
                    scheduled_for.isoformat(),
                    now.isoformat(),
                    rule.id,
                )
            status = NotificationStatus.READY

        notification_id = str(uuid4())
        row = self._new_row(
            notification_id,
            rule_id=rule.id,
            category=rule.category.value,
            trigger_class_value=key.trigger_class,
            subject_id=event.subject_id,
            school_id=event.school_id,
            event_date=event.event_date,
            template_id=message.template_id,
            variables=evaluation.variables,
            message=message,
            audience=audience,
            content_warnings=content_warnings,
            status=status,
            scheduled_for=scheduled_for,
            escalation_level=0,
            parent_id=None,
            source_event=event.model_dump(mode="json"),
            now=now,
        )

        async with self._database.session() as session:
            if not await self._ledger.reserve(session, key, notification_id, now):
                logger.info("Suppression key %s already taken; not queued", key)
                return None
            session.add(row)
            self._add_transition(
                session,
                notification_id,
                None,
                status,
                now,
                actor=event.actor,
                detail=f"rule {rule.id}",
            )

        notification = QueuedNotification.model_validate(row)
        logger.info(
            "Queued %s for %s (rule %s) scheduled for %s",
            notification.id,
            notification.subject_id,
            rule.id,
            notification.scheduled_for.isoformat(),
        )
        await self._publish(EventTypes.Notification.QUEUED, notification)
        return notification

    # =========================================================================
    # Cancellation
    # =========================================================================

    async def cancel(
        self,
        notification_id: str,
        actor: str,
        role: str | None = None,
        reason: str | None = None,
    ) -> CancelOutcome:
        """Cancel a notification during its delay window.

        Idempotent: cancelling a cancelled item reports ALREADY_CANCELLED.

        Args:
            notification_id: Item to cancel.
            actor: Who cancels.
            role: Role of the actor, checked against the rule's override
                roles. None skips the check (system cancellations).
            reason: Optional reason for the history.

        Returns:
            CancelOutcome.
        """
        now = self._clock.now()
        async with self._database.session() as session:
            row = await self._load(session, notification_id)
            if row is None:
                return CancelOutcome(CancelStatus.NOT_FOUND, message=f"Notification {notification_id} not found")

            if role is not None:
                rule = self._rule_lookup(row.rule_id)
                if rule is None or not rule.overrides.allows(role):
                    logger.warning("Role %s may not cancel %s (rule %s)", role, notification_id, row.rule_id)
                    return CancelOutcome(
                        CancelStatus.FORBIDDEN,
                        notification=QueuedNotification.model_validate(row),
                        message=f"Role {role} cannot cancel notifications of rule {row.rule_id}",
                    )

            if row.status == NotificationStatus.CANCELLED.value:
                return CancelOutcome(
                    CancelStatus.ALREADY_CANCELLED,
                    notification=QueuedNotification.model_validate(row),
                )

            cancelled_from: NotificationStatus | None = None
            for expected in CANCELLABLE_STATUSES:
                if await self._cas(
                    session,
                    notification_id,
                    expected,
                    NotificationStatus.CANCELLED,
                    {"cancelled_at": now, "cancelled_by": actor, "updated_at": now},
                    QueuedNotificationModel.scheduled_for >= now,
                ):
                    cancelled_from = expected
                    break

            row = await self._load(session, notification_id)
            if cancelled_from is None:
                message = (
                    f"Cannot cancel {notification_id} in status {row.status}"
                    if row.status not in {s.value for s in CANCELLABLE_STATUSES}
                    else f"Cancellation at {now.isoformat()} is after {row.scheduled_for.isoformat()}"
                )
                logger.info("Cancellation of %s by %s refused: %s", notification_id, actor, message)
                return CancelOutcome(
                    CancelStatus.TOO_LATE,
                    notification=QueuedNotification.model_validate(row),
                    message=message,
                )

            self._add_transition(
                session,
                notification_id,
                cancelled_from,
                NotificationStatus.CANCELLED,
                now,
                actor=actor,
                detail=reason,
            )
            await self._ledger.release(session, _suppression_key(row), notification_id)

        notification = QueuedNotification.model_validate(row)
        logger.info("Cancelled %s by %s", notification_id, actor)
        await self._publish(EventTypes.Notification.CANCELLED, notification, actor=actor)
        return CancelOutcome(CancelStatus.CANCELLED, notification=notification)

    # =========================================================================
    # Promotion and dispatch
    # =========================================================================

    async def promote_due(self) -> list[str]:
        """Promote pending items whose delay window has expired.

        Returns:
            Ids of promoted items.
        """
        now = self._clock.now()
        promoted: list[QueuedNotification] = []

        async with self._database.session() as session:
            result = await session.execute(
                select(QueuedNotificationModel.id)
                .where(
                    QueuedNotificationModel.status == NotificationStatus.PENDING.value,
                    QueuedNotificationModel.scheduled_for <= now,
                )
                .order_by(QueuedNotificationModel.scheduled_for)
            )
            for notification_id in result.scalars().all():
                if await self._cas(
                    session,
                    notification_id,
                    NotificationStatus.PENDING,
                    NotificationStatus.READY,
                    {"updated_at": now},
                    QueuedNotificationModel.scheduled_for <= now,
                ):
                    self._add_transition(
                        session,
                        notification_id,
                        NotificationStatus.PENDING,
                        NotificationStatus.READY,
                        now,
                    )
                    row = await self._load(session, notification_id)
                    promoted.append(QueuedNotification.model_validate(row))

        for notification in promoted:
            await self._publish(EventTypes.Notification.READY, notification)
        if promoted:
            logger.debug("Promoted %d notifications to ready", len(promoted))
        return [notification.id for notification in promoted]

    async def _claim(self, notification_id: str, current: NotificationStatus, now: datetime) -> QueuedNotification | None:
        if current == NotificationStatus.READY:
            condition = QueuedNotificationModel.scheduled_for < now
        else:
            condition = and_(
                QueuedNotificationModel.next_attempt_at.is_not(None),
                QueuedNotificationModel.next_attempt_at <= now,
            )

        async with self._database.session() as session:
            claimed = await self._cas(
                session,
                notification_id,
                current,
                NotificationStatus.SENDING,
                {"attempts": QueuedNotificationModel.attempts + 1, "updated_at": now},
                condition,
                _chain_unacknowledged(),
            )
            if not claimed:
                return None
            row = await self._load(session, notification_id)
            self._add_transition(
                session,
                notification_id,
                current,
                NotificationStatus.SENDING,
                now,
                detail=f"attempt {row.attempts}",
            )
        return QueuedNotification.model_validate(row)

    async def _send(self, notification: QueuedNotification) -> DeliveryResult:
        message = OutboundMessage(
            notification_id=notification.id,
            category=notification.category,
            subject=notification.subject,
            body=notification.body,
            escalation_level=notification.escalation_level,
            metadata={"rule_id": notification.rule_id, "template_id": notification.template_id},
        )
        try:
            return await asyncio.wait_for(
                self._channel.send(message, notification.audience),
                timeout=self._settings.send_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return DeliveryResult(
                success=False,
                error_code="timeout",
                error_message=f"Send timed out after {self._settings.send_timeout_seconds}s",
            )
        except Exception as e:
            logger.error(
                "Channel %s raised for %s: %s",
                self._channel.name,
                notification.id,
                str(e),
                exc_info=True,
            )
            return DeliveryResult(success=False, error_code="channel_error", error_message=str(e))

    async def _drop_stale_result(
        self,
        session: AsyncSession,
        notification: QueuedNotification,
        result: DeliveryResult,
    ) -> None:
        row = await self._load(session, notification.id)
        logger.warning(
            "Discarding %s result for %s: item is %s, no longer sending",
            "success" if result.success else "failure",
            notification.id,
            row.status if row else "missing",
        )

    async def _record_result(
        self,
        notification: QueuedNotification,
        result: DeliveryResult,
        report: DispatchReport,
    ) -> None:
        now = self._clock.now()
        event_type: str
        async with self._database.session() as session:
            if result.success:
                recorded = await self._cas(
                    session,
                    notification.id,
                    NotificationStatus.SENDING,
                    NotificationStatus.SENT,
                    {
                        "sent_at": now,
                        "provider_message_id": result.provider_message_id,
                        "next_attempt_at": None,
                        "last_error": None,
                        "updated_at": now,
                    },
                )
                if not recorded:
                    await self._drop_stale_result(session, notification, result)
                    return
                self._add_transition(
                    session,
                    notification.id,
                    NotificationStatus.SENDING,
                    NotificationStatus.SENT,
                    now,
                    detail=result.provider_message_id,
                )
                row = await self._load(session, notification.id)
                await self._ledger.confirm(session, _suppression_key(row), notification.id, now)
                event_type = EventTypes.Notification.SENT
                report.sent += 1
            else:
                error = f"{result.error_code or 'failed'}: {result.error_message or ''}".rstrip(": ")
                retry = notification.attempts < self._settings.max_attempts
                next_attempt_at = (
                    now
                    + exponential_backoff(
                        notification.attempts,
                        self._settings.backoff_base_seconds,
                        self._settings.backoff_max_seconds,
                    )
                    if retry
                    else None
                )
                if not await self._cas(
                    session,
                    notification.id,
                    NotificationStatus.SENDING,
                    NotificationStatus.FAILED,
                    {"next_attempt_at": next_attempt_at, "last_error": error, "updated_at": now},
                ):
                    await self._drop_stale_result(session, notification, result)
                    return
                self._add_transition(
                    session,
                    notification.id,
                    NotificationStatus.SENDING,
                    NotificationStatus.FAILED,
                    now,
                    detail=(
                        f"{error}; retry at {next_attempt_at.isoformat()}"
                        if next_attempt_at
                        else f"{error}; attempts exhausted"
                    ),
                )
                row = await self._load(session, notification.id)
                if retry:
                    event_type = EventTypes.Notification.RETRY_SCHEDULED
                    report.retried += 1
                else:
                    await self._ledger.release(session, _suppression_key(row), notification.id)
                    event_type = EventTypes.Notification.FAILED
                    report.failed += 1

        updated = QueuedNotification.model_validate(row)
        if event_type == EventTypes.Notification.FAILED:
            logger.error(
                "Notification %s failed permanently after %d attempts: %s",
                updated.id,
                updated.attempts,
                updated.last_error,
            )
        elif event_type == EventTypes.Notification.RETRY_SCHEDULED:
            logger.warning(
                "Send of %s failed (attempt %d): %s",
                updated.id,
                updated.attempts,
                updated.last_error,
            )
        await self._publish(event_type, updated, last_error=updated.last_error)

    async def dispatch_ready(self) -> DispatchReport:
        """Send every ready item and every failed item whose retry is due.

        Escalation notices whose chain was acknowledged in the meantime are
        cancelled instead of sent.

        Returns:
            DispatchReport with sent/retried/failed counters.
        """
        now = self._clock.now()
        report = DispatchReport()

        async with self._database.session() as session:
            withdrawn = await self._withdraw_acknowledged_escalations(session, now)
            result = await session.execute(
                select(QueuedNotificationModel.id, QueuedNotificationModel.status)
                .where(
                    or_(
                        and_(
                            QueuedNotificationModel.status == NotificationStatus.READY.value,
                            QueuedNotificationModel.scheduled_for < now,
                        ),
                        and_(
                            QueuedNotificationModel.status == NotificationStatus.FAILED.value,
                            QueuedNotificationModel.next_attempt_at.is_not(None),
                            QueuedNotificationModel.next_attempt_at <= now,
                        ),
                    ),
                    _chain_unacknowledged(),
                )
                .order_by(QueuedNotificationModel.scheduled_for)
            )
            candidates = [(row.id, NotificationStatus(row.status)) for row in result.all()]

        for notification in withdrawn:
            await self._publish(EventTypes.Notification.CANCELLED, notification, actor=notification.cancelled_by)

        for notification_id, current in candidates:
            notification = await self._claim(notification_id, current, now)
            if notification is None:
                continue
            result = await self._send(notification)
            await self._record_result(notification, result, report)

        return report

    async def recover_interrupted(self) -> int:
        """Turn items left in ``sending`` by a crash into due retries.

        The channel receives the notification id as idempotency key, so a
        retry of an already delivered message is not sent twice.

        Returns:
            Number of recovered items.
        """
        now = self._clock.now()
        recovered = 0
        async with self._database.session() as session:
            result = await session.execute(
                select(QueuedNotificationModel.id).where(
                    QueuedNotificationModel.status == NotificationStatus.SENDING.value
                )
            )
            for notification_id in result.scalars().all():
                if await self._cas(
                    session,
                    notification_id,
                    NotificationStatus.SENDING,
                    NotificationStatus.FAILED,
                    {"next_attempt_at": now, "last_error": "interrupted", "updated_at": now},
                ):
                    self._add_transition(
                        session,
                        notification_id,
                        NotificationStatus.SENDING,
                        NotificationStatus.FAILED,
                        now,
                        detail="interrupted; retry scheduled",
                    )
                    recovered += 1
        if recovered:
            logger.warning("Recovered %d notifications interrupted while sending", recovered)
        return recovered

    # =========================================================================
    # Acknowledgment and escalation
    # =========================================================================

    async def _chain_ids(self, session: AsyncSession, row: QueuedNotificationModel) -> list[str]:
        root = row
        while root.parent_id is not None:
            parent = await session.get(QueuedNotificationModel, root.parent_id)
            if parent is None:
                break
            root = parent

        ids = [root.id]
        frontier = [root.id]
        while frontier:
            result = await session.execute(
                select(QueuedNotificationModel.id).where(QueuedNotificationModel.parent_id.in_(frontier))
            )
            frontier = list(result.scalars().all())
            ids.extend(frontier)
        return ids

    async def _withdraw_acknowledged_escalations(
        self, session: AsyncSession, now: datetime
    ) -> list[QueuedNotification]:
        """Cancel unsent escalation notices whose parent was acknowledged."""
        parent = aliased(QueuedNotificationModel)
        result = await session.execute(
            select(QueuedNotificationModel.id, QueuedNotificationModel.status, parent.acknowledged_by)
            .join(parent, parent.id == QueuedNotificationModel.parent_id)
            .where(
                QueuedNotificationModel.status.in_(
                    [NotificationStatus.PENDING.value, NotificationStatus.READY.value]
                ),
                parent.acknowledged_at.is_not(None),
            )
        )

        withdrawn: list[QueuedNotification] = []
        for notification_id, status, acknowledged_by in result.all():
            current = NotificationStatus(status)
            if not await self._cas(
                session,
                notification_id,
                current,
                NotificationStatus.CANCELLED,
                {"cancelled_at": now, "cancelled_by": acknowledged_by, "updated_at": now},
            ):
                continue
            self._add_transition(
                session,
                notification_id,
                current,
                NotificationStatus.CANCELLED,
                now,
                actor=acknowledged_by,
                detail="acknowledged before delivery",
            )
            row = await self._load(session, notification_id)
            await self._ledger.release(session, _suppression_key(row), notification_id)
            withdrawn.append(QueuedNotification.model_validate(row))

        if withdrawn:
            logger.info("Withdrew %d escalation notices after acknowledgment", len(withdrawn))
        return withdrawn

    async def acknowledge(self, notification_id: str, actor: str) -> AckOutcome:
        """Record that the audience acknowledged a sent notice.

        Acknowledgment covers the whole escalation chain and stops any
        further escalation. Escalation notices of the chain that have not
        been handed to the channel yet are cancelled.

        Args:
            notification_id: Any item of the chain.
            actor: Who acknowledged.

        Returns:
            AckOutcome.
        """
        now = self._clock.now()
        async with self._database.session() as session:
            row = await self._load(session, notification_id)
            if row is None:
                return AckOutcome(AckStatus.NOT_FOUND, message=f"Notification {notification_id} not found")
            if row.acknowledged_at is not None:
                return AckOutcome(AckStatus.ALREADY_ACKNOWLEDGED, notification=QueuedNotification.model_validate(row))
            status = NotificationStatus(row.status)
            if status not in (NotificationStatus.SENT, NotificationStatus.ESCALATED):
                return AckOutcome(
                    AckStatus.NOT_SENT,
                    notification=QueuedNotification.model_validate(row),
                    message=f"Notification is {status.value}",
                )

            chain = await self._chain_ids(session, row)
            await session.execute(
                update(QueuedNotificationModel)
                .where(
                    QueuedNotificationModel.id.in_(chain),
                    QueuedNotificationModel.acknowledged_at.is_(None),
                )
                .values(acknowledged_at=now, acknowledged_by=actor, updated_at=now)
            )
            self._add_transition(session, notification_id, status, status, now, actor=actor, detail="acknowledged")
            withdrawn = await self._withdraw_acknowledged_escalations(session, now)
            row = await self._load(session, notification_id)

        notification = QueuedNotification.model_validate(row)
        await self._publish(EventTypes.Notification.ACKNOWLEDGED, notification, actor=actor)
        for cancelled in withdrawn:
            await self._publish(EventTypes.Notification.CANCELLED, cancelled, actor=actor)
        return AckOutcome(AckStatus.ACKNOWLEDGED, notification=notification)

    async def check_escalations(self) -> int:
        """Escalate sent notices that went unacknowledged past their timeout.

        Returns:
            Number of escalated notices.
        """
        now = self._clock.now()
        escalated = 0
        rows: list[QueuedNotificationModel] = []

        async with self._database.session() as session:
            result = await session.execute(
                select(QueuedNotificationModel).where(
                    QueuedNotificationModel.status == NotificationStatus.SENT.value,
                    QueuedNotificationModel.acknowledged_at.is_(None),
                    QueuedNotificationModel.sent_at.is_not(None),
                    QueuedNotificationModel.escalation_error.is_(None),
                )
            )
            for row in result.scalars().all():
                rule = self._rule_lookup(row.rule_id)
                if rule is None or rule.escalation is None:
                    continue
                if row.escalation_level >= rule.escalation.max_level:
                    continue
                if row.sent_at + timedelta(minutes=rule.escalation.timeout_minutes) > now:
                    continue
                rows.append(row)

        for row in rows:
            if await self._escalate(row, self._rule_lookup(row.rule_id), now):
                escalated += 1
        return escalated

    async def _block_escalation(
        self, row: QueuedNotificationModel, level_number: int, reason: str, now: datetime
    ) -> None:
        """Park a notice whose next escalation cannot be produced.

        The notice stays sent and is not considered for escalation again;
        operators find it through ``list_blocked_escalations``.
        """
        error = f"level {level_number}: {reason}"
        async with self._database.session() as session:
            result = await session.execute(
                update(QueuedNotificationModel)
                .where(
                    QueuedNotificationModel.id == row.id,
                    QueuedNotificationModel.status == NotificationStatus.SENT.value,
                    QueuedNotificationModel.acknowledged_at.is_(None),
                    QueuedNotificationModel.escalation_error.is_(None),
                )
                .values(escalation_error=error, updated_at=now)
            )
            if result.rowcount != 1:
                return
            self._add_transition(
                session,
                row.id,
                NotificationStatus.SENT,
                NotificationStatus.SENT,
                now,
                detail=f"escalation blocked at {error}",
            )
            parent = await self._load(session, row.id)

        logger.error("Escalation of %s blocked at %s", row.id, error)
        await self._publish(
            EventTypes.Notification.ESCALATION_BLOCKED,
            QueuedNotification.model_validate(parent),
            reason=error,
        )

    async def _escalate(self, row: QueuedNotificationModel, rule: Rule, now: datetime) -> bool:
        policy = rule.escalation
        level_number = row.escalation_level + 1
        level = policy.level(level_number)
        base_kind = row.source_event.get("kind", row.trigger_class)
        key = SuppressionKey(row.subject_id, row.event_date, trigger_class(base_kind, level_number))

        message = self._catalog.render(
            ESCALATION_TEMPLATE_ID,
            {
                "original_subject": row.subject,
                "original_body": row.body,
                "timeout_minutes": policy.timeout_minutes,
                "level_name": level.name,
            },
        )
        validation = self._validator.validate(message.text)
        if not validation.is_valid:
            await self._block_escalation(
                row,
                level_number,
                f"content policy: {'; '.join(validation.blocked_reasons)}",
                now,
            )
            return False

        parent_audience = ResolvedAudience.model_validate(row.audience)
        audience = ResolvedAudience(
            kind=level.audience.kind,
            school_id=parent_audience.school_id,
            subject_id=parent_audience.subject_id,
            class_id=parent_audience.class_id,
            guardian_ids=list(level.audience.guardian_ids),
        )
        child_id = str(uuid4())
        child: QueuedNotificationModel | None = None

        async with self._database.session() as session:
            if not await self._cas(
                session,
                row.id,
                NotificationStatus.SENT,
                NotificationStatus.ESCALATED,
                {"escalation_level": level_number, "updated_at": now},
                QueuedNotificationModel.acknowledged_at.is_(None),
            ):
                return False
            self._add_transition(
                session,
                row.id,
                NotificationStatus.SENT,
                NotificationStatus.ESCALATED,
                now,
                detail=f"level {level_number} ({level.name})",
            )

            if await self._ledger.reserve(session, key, child_id, now):
                child = self._new_row(
                    child_id,
                    rule_id=row.rule_id,
                    category=row.category,
                    trigger_class_value=key.trigger_class,
                    subject_id=row.subject_id,
                    school_id=row.school_id,
                    event_date=row.event_date,
                    template_id=ESCALATION_TEMPLATE_ID,
                    variables={"parent_id": row.id, "level_name": level.name},
                    message=message,
                    audience=audience,
                    content_warnings=validation.warnings,
                    status=NotificationStatus.READY,
                    scheduled_for=now,
                    escalation_level=level_number,
                    parent_id=row.id,
                    source_event=row.source_event,
                    now=now,
                )
                session.add(child)
                self._add_transition(
                    session,
                    child_id,
                    None,
                    NotificationStatus.READY,
                    now,
                    detail=f"escalation of {row.id}",
                )
            else:
                logger.info("Escalation key %s already used; no new notice for %s", key, row.id)

            parent = await self._load(session, row.id)

        logger.info("Escalated %s to level %d (%s)", row.id, level_number, level.name)
        await self._publish(
            EventTypes.Notification.ESCALATED,
            QueuedNotification.model_validate(parent),
            child_id=child.id if child else None,
        )
        return True

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, notification_id: str) -> QueuedNotification | None:
        async with self._database.session() as session:
            row = await self._load(session, notification_id)
            return QueuedNotification.model_validate(row) if row else None

    async def list_by_status(
        self,
        status: NotificationStatus,
        school_id: str | None = None,
        limit: int = 100,
    ) -> list[QueuedNotification]:
        """List items in a status, oldest scheduled first."""
        stmt = select(QueuedNotificationModel).where(QueuedNotificationModel.status == status.value)
        if school_id is not None:
            stmt = stmt.where(QueuedNotificationModel.school_id == school_id)
        stmt = stmt.order_by(QueuedNotificationModel.scheduled_for).limit(limit)
        async with self._database.session() as session:
            result = await session.execute(stmt)
            return [QueuedNotification.model_validate(row) for row in result.scalars().all()]

    async def list_failed_for_operator(self, school_id: str | None = None) -> list[QueuedNotification]:
        """Terminally failed items, for operator follow-up."""
        stmt = select(QueuedNotificationModel).where(
            QueuedNotificationModel.status == NotificationStatus.FAILED.value,
            QueuedNotificationModel.next_attempt_at.is_(None),
        )
        if school_id is not None:
            stmt = stmt.where(QueuedNotificationModel.school_id == school_id)
        async with self._database.session() as session:
            result = await session.execute(stmt.order_by(QueuedNotificationModel.updated_at))
            return [QueuedNotification.model_validate(row) for row in result.scalars().all()]

    async def list_blocked_escalations(self, school_id: str | None = None) -> list[QueuedNotification]:
        """Unacknowledged notices whose escalation could not be produced."""
        stmt = select(QueuedNotificationModel).where(
            QueuedNotificationModel.escalation_error.is_not(None),
            QueuedNotificationModel.acknowledged_at.is_(None),
        )
        if school_id is not None:
            stmt = stmt.where(QueuedNotificationModel.school_id == school_id)
        async with self._database.session() as session:
            result = await session.execute(stmt.order_by(QueuedNotificationModel.updated_at))
            return [QueuedNotification.model_validate(row) for row in result.scalars().all()]

    async def list_children(self, notification_id: str) -> list[QueuedNotification]:
        """Escalation notices created for an item."""
        async with self._database.session() as session:
            result = await session.execute(
                select(QueuedNotificationModel)
                .where(QueuedNotificationModel.parent_id == notification_id)
                .order_by(QueuedNotificationModel.created_at)
            )
            return [QueuedNotification.model_validate(row) for row in result.scalars().all()]

    async def history(self, notification_id: str) -> list[NotificationTransitionEntry]:
        """Append-only transition history, oldest first."""
        async with self._database.session() as session:
            result = await session.execute(
                select(NotificationTransitionModel)
                .where(NotificationTransitionModel.notification_id == notification_id)
                .order_by(NotificationTransitionModel.id)
            )
            return [NotificationTransitionEntry.model_validate(row) for row in result.scalars().all()]

    async def mark_server_synced(self, notification_id: str) -> None:
        """Flag an item as acknowledged by the durable backend."""
        async with self._database.session() as session:
            await session.execute(
                update(QueuedNotificationModel)
                .where(QueuedNotificationModel.id == notification_id)
                .values(server_synced=True, local_only=False)
            )
