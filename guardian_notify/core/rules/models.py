# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Rule configuration and evaluation result models.

Rules are configuration data: they are loaded once (defaults or YAML),
validated by Pydantic, and never mutated at evaluation time.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Self
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, model_validator

from guardian_notify.core.rules.conditions import Condition, ConditionResult
from guardian_notify.core.rules.events import OverrideAction, TriggerEvent, TriggerKind


class NotificationCategory(str, Enum):
    """Category of a guardian notification."""

    ATTENDANCE = "attendance"
    ABSENCE = "absence"
    LATE_ARRIVAL = "late_arrival"
    EARLY_PICKUP = "early_pickup"
    EMERGENCY_NOTICE = "emergency_notice"
    SCHOOL_WIDE_ALERT = "school_wide_alert"


class AudienceKind(str, Enum):
    """Who receives a notification.

    Guardian kinds are deferred pointers resolved by the delivery channel;
    staff kinds are used by escalation levels.
    """

    PRIMARY_GUARDIAN = "primary_guardian"
    ALL_GUARDIANS = "all_guardians"
    EMERGENCY_CONTACTS = "emergency_contacts"
    CLASS_PARENTS = "class_parents"
    SCHOOL_WIDE = "school_wide"
    SPECIFIC_GUARDIANS = "specific_guardians"
    CLASS_TEACHER = "class_teacher"
    SCHOOL_ADMIN = "school_admin"
    PRINCIPAL = "principal"


class ResolvedAudience(BaseModel):
    """Audience bound to a concrete event, as handed to the delivery channel."""

    model_config = ConfigDict(frozen=True)

    kind: AudienceKind
    school_id: str
    subject_id: str
    class_id: str | None = None
    guardian_ids: list[str] = Field(default_factory=list)


class TargetAudience(BaseModel):
    """Audience descriptor on a rule or escalation level."""

    model_config = ConfigDict(frozen=True)

    kind: AudienceKind
    guardian_ids: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_guardian_ids(self) -> Self:
        """Specific-guardian audiences must name at least one guardian."""
        if self.kind == AudienceKind.SPECIFIC_GUARDIANS and not self.guardian_ids:
            raise ValueError("specific_guardians audience requires guardian_ids")
        return self

    def bind(self, event: TriggerEvent) -> ResolvedAudience:
        """Bind the descriptor to the subject of an event."""
        return ResolvedAudience(
            kind=self.kind,
            school_id=event.school_id,
            subject_id=event.subject_id,
            class_id=event.class_id,
            guardian_ids=list(self.guardian_ids),
        )


class AllowedHours(BaseModel):
    """Hours of the school day during which sending is allowed, [start, end)."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0, le=23)
    end: int = Field(ge=1, le=24)

    @model_validator(mode="after")
    def validate_order(self) -> Self:
        if self.start >= self.end:
            raise ValueError("allowed_hours.start must be before allowed_hours.end")
        return self


class DelayWindow(BaseModel):
    """Mandatory pause between acceptance and send.

    Attributes:
        delay_minutes: Minutes to wait after acceptance.
        allowed_hours: Optional sending hours in the school timezone.
        skip_weekends: Move Saturday/Sunday slots to the following Monday.
    """

    model_config = ConfigDict(frozen=True)

    delay_minutes: int = Field(default=0, ge=0)
    allowed_hours: AllowedHours | None = None
    skip_weekends: bool = False

    def next_slot(self, now: datetime, tz: ZoneInfo) -> datetime:
        """Compute the instant at which a notification accepted at ``now`` is due.

        The delay is added first; a result outside the allowed hours moves
        to the start of the next allowed slot, and weekend days are skipped
        when configured.

        Args:
            now: Acceptance instant (timezone-aware).
            tz: School timezone.

        Returns:
            Timezone-aware UTC instant.
        """
        local = (now + timedelta(minutes=self.delay_minutes)).astimezone(tz)

        if self.allowed_hours is not None:
            start = time(self.allowed_hours.start)
            if local.hour < self.allowed_hours.start:
                local = datetime.combine(local.date(), start, tzinfo=tz)
            elif local.hour >= self.allowed_hours.end:
                local = datetime.combine(local.date() + timedelta(days=1), start, tzinfo=tz)

        if self.skip_weekends:
            moved = False
            while local.weekday() >= 5:
                local = local + timedelta(days=1)
                moved = True
            if moved and self.allowed_hours is not None:
                local = datetime.combine(local.date(), time(self.allowed_hours.start), tzinfo=tz)

        return local.astimezone(ZoneInfo("UTC"))


class EscalationLevel(BaseModel):
    """One step of an escalation path."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    audience: TargetAudience


class EscalationPolicy(BaseModel):
    """Re-target an unacknowledged notice after a timeout.

    Level N (1-based) is notified when level N-1 has gone unacknowledged
    for ``timeout_minutes``; level 0 is the original audience.
    """

    model_config = ConfigDict(frozen=True)

    timeout_minutes: int = Field(gt=0)
    levels: list[EscalationLevel] = Field(min_length=1)

    @property
    def max_level(self) -> int:
        return len(self.levels)

    def level(self, number: int) -> EscalationLevel:
        """Return escalation level ``number`` (1-based)."""
        return self.levels[number - 1]


class OverridePermissions(BaseModel):
    """Roles that may suppress or fast-track a notification before send."""

    model_config = ConfigDict(frozen=True)

    roles: list[str] = Field(default_factory=list)

    def allows(self, role: str) -> bool:
        return role in self.roles


class Rule(BaseModel):
    """Deterministic mapping from a trigger plus conditions to a send decision.

    Attributes:
        id: Stable identifier.
        name: Human-readable name.
        category: Notification category.
        trigger: Trigger kind this rule matches.
        conditions: Conditions evaluated with AND semantics.
        audience: Target audience.
        template_id: Catalog template to render.
        delay_window: Delay before send.
        overrides: Roles allowed to suppress or force the notification.
        escalation: Optional escalation policy.
        priority: Lower values are evaluated first.
        is_active: Inactive rules never match.
        school_id: Optional school scope; None applies to all schools.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    name: str
    description: str = ""
    category: NotificationCategory
    trigger: TriggerKind
    conditions: list[Condition] = Field(default_factory=list)
    audience: TargetAudience
    template_id: str
    delay_window: DelayWindow = Field(default_factory=DelayWindow)
    overrides: OverridePermissions = Field(default_factory=OverridePermissions)
    escalation: EscalationPolicy | None = None
    priority: int
    is_active: bool = True
    school_id: str | None = None

    @property
    def is_emergency(self) -> bool:
        return self.category == NotificationCategory.EMERGENCY_NOTICE

    def applies_to_school(self, school_id: str) -> bool:
        return self.school_id is None or self.school_id == school_id


def trigger_class(kind: TriggerKind | str, escalation_level: int = 0) -> str:
    """Suppression trigger class for a kind, distinct per escalation level.

    Example:
        >>> trigger_class(TriggerKind.STUDENT_MARKED_ABSENT, 1)
        'student_marked_absent:escalation:1'
    """
    value = kind.value if isinstance(kind, TriggerKind) else kind
    if escalation_level:
        return f"{value}:escalation:{escalation_level}"
    return value


@dataclass(frozen=True)
class SuppressionKey:
    """Ledger key: one successful send per subject, date and trigger class."""

    subject_id: str
    date: date
    trigger_class: str

    @classmethod
    def for_event(cls, event: TriggerEvent, escalation_level: int = 0) -> "SuppressionKey":
        return cls(event.subject_id, event.event_date, trigger_class(event.kind, escalation_level))


class EvaluationReason(str, Enum):
    """Reason codes on evaluation results."""

    MATCHED = "matched"
    NO_MATCHING_RULE = "no matching rule"
    DUPLICATE_SUPPRESSED = "duplicate suppressed"
    SUPPRESSED_BY_OVERRIDE = "suppressed by override"
    CONTENT_BLOCKED = "content blocked"


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of evaluating one trigger event.

    A policy rejection is an ordinary result with ``should_send=False`` and
    a reason; it is never raised.
    """

    should_send: bool
    reason: EvaluationReason
    rule: Rule | None = None
    template_id: str | None = None
    variables: dict[str, Any] = field(default_factory=dict)
    scheduled_for: datetime | None = None
    suppression_key: SuppressionKey | None = None
    condition_results: tuple[ConditionResult, ...] = ()
    override_action: OverrideAction | None = None
    evaluated_at: datetime | None = None

    @property
    def rule_id(self) -> str | None:
        return self.rule.id if self.rule else None
