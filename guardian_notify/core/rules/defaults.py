# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Built-in rule set used when no rules file is configured."""

from guardian_notify.core.rules.conditions import ThresholdCondition
from guardian_notify.core.rules.events import TriggerKind
from guardian_notify.core.rules.models import (
    AllowedHours,
    AudienceKind,
    DelayWindow,
    EscalationLevel,
    EscalationPolicy,
    NotificationCategory,
    OverridePermissions,
    Rule,
    TargetAudience,
)

TEACHER_ROLE = "teacher"
ADMIN_ROLE = "school_admin"

DEFAULT_RULES: tuple[Rule, ...] = (
    Rule(
        id="first_day_absence",
        name="First Day Absence",
        description="Notify guardians when student is marked absent",
        category=NotificationCategory.ABSENCE,
        trigger=TriggerKind.STUDENT_MARKED_ABSENT,
        audience=TargetAudience(kind=AudienceKind.PRIMARY_GUARDIAN),
        template_id="absence_first_day",
        delay_window=DelayWindow(
            delay_minutes=30,
            allowed_hours=AllowedHours(start=8, end=18),
            skip_weekends=True,
        ),
        overrides=OverridePermissions(roles=[TEACHER_ROLE, ADMIN_ROLE]),
        priority=2,
    ),
    Rule(
        id="consecutive_absence",
        name="Consecutive Absence Alert",
        description="Escalated notice for 3+ consecutive absences",
        category=NotificationCategory.ABSENCE,
        trigger=TriggerKind.CONSECUTIVE_ABSENCE_THRESHOLD,
        conditions=[ThresholdCondition(field="consecutive_days", operator="gt", value=2)],
        audience=TargetAudience(kind=AudienceKind.ALL_GUARDIANS),
        template_id="absence_consecutive",
        delay_window=DelayWindow(allowed_hours=AllowedHours(start=8, end=18)),
        overrides=OverridePermissions(roles=[ADMIN_ROLE]),
        escalation=EscalationPolicy(
            timeout_minutes=60,
            levels=[
                EscalationLevel(name="teacher", audience=TargetAudience(kind=AudienceKind.CLASS_TEACHER)),
                EscalationLevel(name="admin", audience=TargetAudience(kind=AudienceKind.SCHOOL_ADMIN)),
            ],
        ),
        priority=1,
    ),
    Rule(
        id="late_arrival",
        name="Late Arrival Notice",
        description="Notify guardian when student arrives late",
        category=NotificationCategory.LATE_ARRIVAL,
        trigger=TriggerKind.STUDENT_MARKED_LATE,
        audience=TargetAudience(kind=AudienceKind.PRIMARY_GUARDIAN),
        template_id="late_arrival",
        delay_window=DelayWindow(delay_minutes=15, allowed_hours=AllowedHours(start=7, end=12)),
        overrides=OverridePermissions(roles=[TEACHER_ROLE, ADMIN_ROLE]),
        priority=3,
    ),
    Rule(
        id="attendance_correction",
        name="Attendance Correction Notice",
        description="Notify guardian when an absence is corrected to present",
        category=NotificationCategory.ATTENDANCE,
        trigger=TriggerKind.ATTENDANCE_CORRECTED_TO_PRESENT,
        audience=TargetAudience(kind=AudienceKind.PRIMARY_GUARDIAN),
        template_id="attendance_correction_notice",
        delay_window=DelayWindow(
            delay_minutes=15,
            allowed_hours=AllowedHours(start=8, end=16),
            skip_weekends=True,
        ),
        overrides=OverridePermissions(roles=[TEACHER_ROLE, ADMIN_ROLE]),
        priority=4,
    ),
    Rule(
        id="early_pickup",
        name="Early Pickup Confirmation",
        description="Confirm early pickup request to guardian",
        category=NotificationCategory.EARLY_PICKUP,
        trigger=TriggerKind.EARLY_PICKUP_REQUESTED,
        audience=TargetAudience(kind=AudienceKind.PRIMARY_GUARDIAN),
        template_id="early_pickup_request",
        overrides=OverridePermissions(roles=[TEACHER_ROLE, ADMIN_ROLE]),
        priority=1,
    ),
    Rule(
        id="emergency_notice",
        name="Emergency Notice",
        description="Immediate emergency notification to all contacts",
        category=NotificationCategory.EMERGENCY_NOTICE,
        trigger=TriggerKind.EMERGENCY_DECLARED,
        audience=TargetAudience(kind=AudienceKind.EMERGENCY_CONTACTS),
        template_id="emergency_notice",
        # Emergencies always send: no override roles.
        overrides=OverridePermissions(roles=[]),
        escalation=EscalationPolicy(
            timeout_minutes=5,
            levels=[
                EscalationLevel(name="principal", audience=TargetAudience(kind=AudienceKind.PRINCIPAL)),
            ],
        ),
        priority=0,
    ),
    Rule(
        id="school_announcement",
        name="School Announcement",
        description="School-wide announcement to all parents",
        category=NotificationCategory.SCHOOL_WIDE_ALERT,
        trigger=TriggerKind.SCHOOL_ANNOUNCEMENT_CREATED,
        audience=TargetAudience(kind=AudienceKind.SCHOOL_WIDE),
        template_id="school_announcement",
        delay_window=DelayWindow(delay_minutes=5, allowed_hours=AllowedHours(start=7, end=20)),
        overrides=OverridePermissions(roles=[ADMIN_ROLE]),
        priority=2,
    ),
)
