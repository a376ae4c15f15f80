# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Template and trigger catalog.

Static mapping from trigger kinds to message templates and the event
fields each trigger must carry. Templates use ``{{variable}}``
placeholders; rendering fails loudly on missing required variables and
never leaves a placeholder in the output.

Example:
    >>> catalog = TemplateCatalog()
    >>> message = catalog.render("absence_first_day", {
    ...     "student_name": "Amara", "date": "2024-05-01", "school_name": "Hillside",
    ... })
    >>> "Amara" in message.body
    True
"""

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from guardian_notify.core.errors import EventValidationError, NotFoundError, TemplateRenderError
from guardian_notify.core.rules.events import TriggerEvent, TriggerKind
from guardian_notify.core.rules.models import NotificationCategory

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}")


@dataclass(frozen=True)
class MessageTemplate:
    """A guardian message template.

    Attributes:
        id: Template identifier referenced by rules.
        category: Notification category.
        subject: Subject line with placeholders.
        body: Body with placeholders.
        required_variables: Variables that must be supplied and non-empty.
        optional_variables: Variables rendered as empty text when absent.
    """

    id: str
    category: NotificationCategory
    subject: str
    body: str
    required_variables: tuple[str, ...]
    optional_variables: tuple[str, ...] = ()

    def placeholders(self) -> set[str]:
        """Names of every placeholder used in subject and body."""
        return set(PLACEHOLDER_PATTERN.findall(self.subject)) | set(
            PLACEHOLDER_PATTERN.findall(self.body)
        )


@dataclass(frozen=True)
class TriggerSpec:
    """Variable schema for a trigger kind.

    Attributes:
        kind: Trigger kind.
        required_fields: Event ``data`` fields every event of this kind must carry.
        description: What the trigger means.
    """

    kind: TriggerKind
    required_fields: tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class RenderedMessage:
    """Immutable rendered subject and body."""

    template_id: str
    subject: str
    body: str

    @property
    def text(self) -> str:
        return f"{self.subject}\n\n{self.body}"


DEFAULT_TEMPLATES: tuple[MessageTemplate, ...] = (
    MessageTemplate(
        id="absence_first_day",
        category=NotificationCategory.ABSENCE,
        subject="Absence Notice: {{student_name}}",
        body=(
            "Dear Parent/Guardian,\n\n"
            "This is to inform you that {{student_name}} was marked absent on {{date}}.\n\n"
            "If this is unexpected, please contact the school office.\n\n"
            "Regards,\n{{school_name}}"
        ),
        required_variables=("student_name", "date", "school_name"),
    ),
    MessageTemplate(
        id="absence_consecutive",
        category=NotificationCategory.ABSENCE,
        subject="Extended Absence Notice: {{student_name}}",
        body=(
            "Dear Parent/Guardian,\n\n"
            "{{student_name}} has been absent for {{consecutive_days}} consecutive days "
            "({{date_range}}).\n\n"
            "Please contact the school to discuss.\n\n"
            "Regards,\n{{school_name}}"
        ),
        required_variables=("student_name", "consecutive_days", "date_range", "school_name"),
    ),
    MessageTemplate(
        id="late_arrival",
        category=NotificationCategory.LATE_ARRIVAL,
        subject="Late Arrival: {{student_name}}",
        body=(
            "Dear Parent/Guardian,\n\n"
            "{{student_name}} arrived late to school today at {{arrival_time}}.\n\n"
            "Regards,\n{{school_name}}"
        ),
        required_variables=("student_name", "arrival_time", "school_name"),
    ),
    MessageTemplate(
        id="early_pickup_request",
        category=NotificationCategory.EARLY_PICKUP,
        subject="Early Pickup Confirmation: {{student_name}}",
        body=(
            "Dear Parent/Guardian,\n\n"
            "A request for early pickup of {{student_name}} at {{pickup_time}} has been received.\n\n"
            "Pickup by: {{pickup_person}}\n\n"
            "Regards,\n{{school_name}}"
        ),
        required_variables=("student_name", "pickup_time", "pickup_person", "school_name"),
    ),
    MessageTemplate(
        id="emergency_notice",
        category=NotificationCategory.EMERGENCY_NOTICE,
        subject="URGENT: {{emergency_type}}",
        body=(
            "{{emergency_message}}\n\n"
            "Please follow instructions from school authorities.\n\n"
            "{{school_name}}"
        ),
        required_variables=("emergency_type", "emergency_message", "school_name"),
    ),
    MessageTemplate(
        id="school_announcement",
        category=NotificationCategory.SCHOOL_WIDE_ALERT,
        subject="{{announcement_title}}",
        body="{{announcement_body}}\n\n{{school_name}}",
        required_variables=("announcement_title", "announcement_body", "school_name"),
    ),
    MessageTemplate(
        id="attendance_reminder",
        category=NotificationCategory.ATTENDANCE,
        subject="Attendance Update: {{student_name}}",
        body=(
            "Dear Parent/Guardian,\n\n"
            "This is your daily attendance update for {{student_name}} on {{date}}.\n\n"
            "Status: {{attendance_status}}\n\n"
            "Regards,\n{{school_name}}"
        ),
        required_variables=("student_name", "date", "attendance_status", "school_name"),
    ),
    MessageTemplate(
        id="attendance_correction_notice",
        category=NotificationCategory.ATTENDANCE,
        subject="Attendance Correction for {{student_name}}",
        body=(
            "Dear Parent/Guardian,\n\n"
            "This is a brief update regarding attendance records for {{student_name}}.\n\n"
            "We wanted to let you know that {{student_name}}'s attendance for {{date}} "
            "has been updated. The record now shows that {{student_name}} was present.\n\n"
            "Thank you for your understanding.\n\n"
            "Warm regards,\n{{school_name}}"
        ),
        required_variables=("student_name", "date", "school_name"),
        optional_variables=("class_name",),
    ),
    MessageTemplate(
        id="escalation_notice",
        category=NotificationCategory.ATTENDANCE,
        subject="Unacknowledged notice: {{original_subject}}",
        body=(
            "The following notice has not been acknowledged within "
            "{{timeout_minutes}} minutes and is escalated to {{level_name}}.\n\n"
            "{{original_body}}"
        ),
        required_variables=("original_subject", "original_body", "timeout_minutes", "level_name"),
    ),
)


DEFAULT_TRIGGERS: tuple[TriggerSpec, ...] = (
    TriggerSpec(TriggerKind.STUDENT_MARKED_ABSENT, description="Student marked absent"),
    TriggerSpec(TriggerKind.STUDENT_MARKED_LATE, description="Student marked late"),
    TriggerSpec(
        TriggerKind.ATTENDANCE_CORRECTED_TO_PRESENT,
        description="Absence corrected to present",
    ),
    TriggerSpec(TriggerKind.ATTENDANCE_NOT_MARKED, description="Attendance not taken"),
    TriggerSpec(
        TriggerKind.EARLY_PICKUP_REQUESTED,
        required_fields=("pickup_time", "pickup_person"),
        description="Guardian requested early pickup",
    ),
    TriggerSpec(TriggerKind.EARLY_PICKUP_COMPLETED, description="Early pickup completed"),
    TriggerSpec(
        TriggerKind.EMERGENCY_DECLARED,
        required_fields=("emergency_type", "emergency_message"),
        description="Emergency declared",
    ),
    TriggerSpec(TriggerKind.EMERGENCY_RESOLVED, description="Emergency resolved"),
    TriggerSpec(
        TriggerKind.SCHOOL_ANNOUNCEMENT_CREATED,
        required_fields=("announcement_title", "announcement_body"),
        description="School announcement created",
    ),
    TriggerSpec(
        TriggerKind.CONSECUTIVE_ABSENCE_THRESHOLD,
        required_fields=("consecutive_days",),
        description="Consecutive absence count crossed a threshold",
    ),
    TriggerSpec(TriggerKind.PATTERN_DETECTED, description="Attendance pattern detected"),
)


def render_text(text: str, variables: Mapping[str, Any]) -> str:
    """Substitute ``{{name}}`` placeholders; unknown names become empty text."""

    def substitute(match: re.Match[str]) -> str:
        value = variables.get(match.group(1))
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(substitute, text)


class TemplateCatalog:
    """Read-only lookup of templates and trigger schemas."""

    def __init__(
        self,
        templates: Iterable[MessageTemplate] = DEFAULT_TEMPLATES,
        triggers: Iterable[TriggerSpec] = DEFAULT_TRIGGERS,
    ) -> None:
        self._templates = {template.id: template for template in templates}
        self._triggers = {spec.kind: spec for spec in triggers}

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates

    @property
    def template_ids(self) -> list[str]:
        return sorted(self._templates)

    def get(self, template_id: str) -> MessageTemplate:
        """Get a template by id.

        Raises:
            NotFoundError: If the template does not exist.
        """
        try:
            return self._templates[template_id]
        except KeyError:
            raise NotFoundError("template", template_id) from None

    def trigger(self, kind: TriggerKind) -> TriggerSpec:
        return self._triggers.get(kind, TriggerSpec(kind))

    def check_event(self, event: TriggerEvent) -> None:
        """Check that an event carries the fields its trigger kind requires.

        Raises:
            EventValidationError: Listing every missing field.
        """
        spec = self.trigger(event.kind)
        missing = [name for name in spec.required_fields if event.field_value(name) in (None, "")]
        if missing:
            raise EventValidationError([f"data.{name}: required for {event.kind.value}" for name in missing])

    def render(self, template_id: str, variables: Mapping[str, Any]) -> RenderedMessage:
        """Render a template.

        Args:
            template_id: Template to render.
            variables: Variable values; extra keys are ignored.

        Returns:
            Rendered subject and body with no placeholders left.

        Raises:
            NotFoundError: If the template does not exist.
            TemplateRenderError: If a required variable is missing or empty.
        """
        template = self.get(template_id)
        missing = [
            name for name in template.required_variables if variables.get(name) in (None, "")
        ]
        if missing:
            raise TemplateRenderError(template_id, missing)

        rendered = RenderedMessage(
            template_id=template_id,
            subject=render_text(template.subject, variables),
            body=render_text(template.body, variables),
        )
        logger.debug("Rendered template %s", template_id)
        return rendered
