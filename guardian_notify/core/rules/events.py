# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Trigger events: immutable facts that feed rule evaluation.

A trigger event is created by the calling context (attendance sheet,
emergency console, announcement editor), never mutated, and consumed once
per evaluation. Events arrive as plain mappings and are validated here so
that malformed input is rejected before any state is created.
"""

import datetime as dt
from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from guardian_notify.core.errors import EventValidationError


class TriggerKind(str, Enum):
    """Kinds of facts that can trigger a guardian notification."""

    STUDENT_MARKED_ABSENT = "student_marked_absent"
    STUDENT_MARKED_LATE = "student_marked_late"
    ATTENDANCE_CORRECTED_TO_PRESENT = "attendance_corrected_to_present"
    ATTENDANCE_NOT_MARKED = "attendance_not_marked"
    EARLY_PICKUP_REQUESTED = "early_pickup_requested"
    EARLY_PICKUP_COMPLETED = "early_pickup_completed"
    EMERGENCY_DECLARED = "emergency_declared"
    EMERGENCY_RESOLVED = "emergency_resolved"
    SCHOOL_ANNOUNCEMENT_CREATED = "school_announcement_created"
    CONSECUTIVE_ABSENCE_THRESHOLD = "consecutive_absence_threshold"
    PATTERN_DETECTED = "pattern_detected"


class OverrideAction(str, Enum):
    """What a human override asks the evaluator to do."""

    SUPPRESS = "suppress"
    FORCE_SEND = "force_send"


class OverrideRequest(BaseModel):
    """A human request to suppress or fast-track a notification before send."""

    model_config = ConfigDict(frozen=True)

    actor: str = Field(min_length=1)
    role: str = Field(min_length=1)
    action: OverrideAction
    reason: str = "No reason provided"


class TriggerEvent(BaseModel):
    """Immutable fact about something that happened at school.

    Attributes:
        subject_id: Student (or emergency/announcement) the fact is about.
        school_id: School the fact belongs to.
        event_date: Calendar date of the fact, used for suppression keys.
        kind: Trigger kind.
        actor: User who recorded the fact.
        subject_name: Display name used in templates.
        class_id: Class, if the fact is class-scoped.
        time: Clock time of the fact (late arrival time, pickup time).
        previous_state: State before the change, for corrections.
        data: Extra fields for conditions and template variables.
        override: Optional human override request.
        event_id: Unique identifier of the fact.
        occurred_at: When the fact was recorded.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    subject_id: str = Field(min_length=1)
    school_id: str = Field(min_length=1)
    event_date: date
    kind: TriggerKind
    actor: str = Field(min_length=1)
    subject_name: str | None = None
    class_id: str | None = None
    time: dt.time | None = None
    previous_state: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    override: OverrideRequest | None = None
    event_id: str = Field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TriggerEvent":
        """Validate a raw mapping into a TriggerEvent.

        Args:
            payload: Raw event as received from the calling context.

        Returns:
            Validated event.

        Raises:
            EventValidationError: With one message per invalid field.
        """
        try:
            return cls.model_validate(dict(payload))
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(part) for part in err['loc']) or 'event'}: {err['msg']}"
                for err in e.errors()
            ]
            raise EventValidationError(errors) from e

    def field_value(self, name: str) -> Any:
        """Look up a field for condition evaluation.

        ``data`` entries take precedence over top-level attributes so that
        callers can pass derived values (e.g. ``consecutive_days``).

        Returns:
            The value, or None when the field is absent.
        """
        if name in self.data:
            return self.data[name]
        if name in type(self).model_fields and name not in ("data", "override"):
            value = getattr(self, name)
            return value.value if isinstance(value, Enum) else value
        return None

    def template_variables(self) -> dict[str, str]:
        """Build template variables from the event.

        Standard variables are derived from the event fields; anything in
        ``data`` overrides them.
        """
        variables: dict[str, str] = {
            "date": self.event_date.isoformat(),
            "school_id": self.school_id,
        }
        if self.subject_name:
            variables["student_name"] = self.subject_name
        if self.class_id:
            variables["class_id"] = self.class_id
        if self.time is not None:
            variables["time"] = self.time.strftime("%H:%M")
            variables.setdefault("arrival_time", variables["time"])
        for key, value in self.data.items():
            if value is not None:
                variables[key] = str(value)
        return variables


def attendance_trigger_kind(new_status: str, previous_status: str | None = None) -> TriggerKind | None:
    """Map an attendance status change to a trigger kind.

    Args:
        new_status: Status just recorded (absent, late, present).
        previous_status: Status before the change, if any.

    Returns:
        The trigger kind, or None if the change needs no notification.
    """
    if new_status == "absent":
        return TriggerKind.STUDENT_MARKED_ABSENT
    if new_status == "late":
        return TriggerKind.STUDENT_MARKED_LATE
    if new_status == "present" and previous_status == "absent":
        return TriggerKind.ATTENDANCE_CORRECTED_TO_PRESENT
    return None
