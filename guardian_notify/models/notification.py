# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Queued notification models and public operation outcomes."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from guardian_notify.core.rules.models import ResolvedAudience


class NotificationStatus(str, Enum):
    """Lifecycle status of a queued notification.

    Forward-only: pending -> ready -> sending -> sent | failed, with
    pending/ready -> cancelled during the delay window and
    sent -> escalated when an escalation policy fires.
    """

    PENDING = "pending"
    READY = "ready"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ESCALATED = "escalated"


CANCELLABLE_STATUSES = (NotificationStatus.PENDING, NotificationStatus.READY)


class QueuedNotification(BaseModel):
    """Read model of a queued notification."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    rule_id: str
    category: str
    trigger_class: str
    subject_id: str
    school_id: str
    event_date: date
    template_id: str
    variables: dict[str, Any] = Field(default_factory=dict)
    subject: str
    body: str
    audience: ResolvedAudience
    content_warnings: list[str] = Field(default_factory=list)
    status: NotificationStatus
    scheduled_for: datetime
    cancellable_until: datetime
    escalation_level: int = 0
    parent_id: str | None = None
    escalation_error: str | None = None
    attempts: int = 0
    next_attempt_at: datetime | None = None
    last_error: str | None = None
    sent_at: datetime | None = None
    provider_message_id: str | None = None
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    local_only: bool = True
    server_synced: bool = False
    source_event: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        """True once no further automatic transition can happen."""
        if self.status in (NotificationStatus.CANCELLED, NotificationStatus.ESCALATED):
            return True
        if self.status == NotificationStatus.FAILED:
            return self.next_attempt_at is None
        return False


class NotificationTransitionEntry(BaseModel):
    """One entry of a notification's append-only history."""

    model_config = ConfigDict(from_attributes=True)

    notification_id: str
    from_status: NotificationStatus | None
    to_status: NotificationStatus
    actor: str | None = None
    detail: str | None = None
    occurred_at: datetime


class SubmitStatus(str, Enum):
    """Outcome of submitting a trigger event."""

    QUEUED = "queued"
    SUPPRESSED = "suppressed"
    BLOCKED = "blocked"
    INVALID = "invalid"
    ERROR = "error"


@dataclass(frozen=True)
class SubmitOutcome:
    """Typed result of NotificationService.submit_event.

    ``SUPPRESSED`` and ``BLOCKED`` are policy rejections; ``INVALID`` is a
    validation error; ``ERROR`` means the local store failed.
    """

    status: SubmitStatus
    reason: str
    notification: QueuedNotification | None = None
    rule_id: str | None = None
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()

    @property
    def queued(self) -> bool:
        return self.status == SubmitStatus.QUEUED


class CancelStatus(str, Enum):
    """Outcome of a cancellation request."""

    CANCELLED = "cancelled"
    ALREADY_CANCELLED = "already_cancelled"
    TOO_LATE = "too_late"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class CancelOutcome:
    """Typed result of a cancellation request."""

    status: CancelStatus
    notification: QueuedNotification | None = None
    message: str = ""

    @property
    def cancelled(self) -> bool:
        return self.status in (CancelStatus.CANCELLED, CancelStatus.ALREADY_CANCELLED)


class AckStatus(str, Enum):
    """Outcome of an acknowledgment."""

    ACKNOWLEDGED = "acknowledged"
    ALREADY_ACKNOWLEDGED = "already_acknowledged"
    NOT_SENT = "not_sent"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class AckOutcome:
    """Typed result of an acknowledgment."""

    status: AckStatus
    notification: QueuedNotification | None = None
    message: str = ""


@dataclass
class DispatchReport:
    """Counters for one queue tick."""

    promoted: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    escalated: int = 0
    errors: list[str] = field(default_factory=list)
