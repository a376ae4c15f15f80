# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for rule conditions, delay windows and audiences."""

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

import pytest
from pydantic import TypeAdapter, ValidationError

from guardian_notify.core.rules.conditions import (
    Condition,
    EqualityCondition,
    MembershipCondition,
    ThresholdCondition,
    TimeWindowCondition,
    evaluate_condition,
)
from guardian_notify.core.rules.events import TriggerEvent, TriggerKind
from guardian_notify.core.rules.models import (
    AllowedHours,
    AudienceKind,
    DelayWindow,
    SuppressionKey,
    TargetAudience,
    trigger_class,
)

UTC = ZoneInfo("UTC")


def make_event(**overrides) -> TriggerEvent:
    values = {
        "subject_id": "S1",
        "school_id": "school-1",
        "event_date": date(2024, 5, 1),
        "kind": TriggerKind.STUDENT_MARKED_LATE,
        "actor": "teacher-7",
        "class_id": "7A",
        "time": time(8, 40),
        "data": {"consecutive_days": 3},
    }
    values.update(overrides)
    return TriggerEvent(**values)


class TestConditions:
    """Tests for evaluate_condition over every condition kind."""

    @pytest.mark.parametrize(
        ("operator", "value", "expected"),
        [("gt", 2, True), ("gt", 3, False), ("gte", 3, True), ("lt", 3, False), ("lte", 3, True)],
    )
    def test_threshold(self, operator: str, value: float, expected: bool) -> None:
        condition = ThresholdCondition(field="consecutive_days", operator=operator, value=value)

        assert evaluate_condition(condition, make_event()).passed is expected

    def test_threshold_non_numeric_fails(self) -> None:
        condition = ThresholdCondition(field="consecutive_days", operator="gt", value=1)
        event = make_event(data={"consecutive_days": "many"})

        result = evaluate_condition(condition, event)

        assert result.passed is False
        assert "not numeric" in result.reason

    def test_equality_on_top_level_field(self) -> None:
        condition = EqualityCondition(field="previous_state", value="absent")

        assert evaluate_condition(condition, make_event(previous_state="absent")).passed
        assert not evaluate_condition(condition, make_event(previous_state="late")).passed

    def test_not_equals(self) -> None:
        condition = EqualityCondition(field="class_id", operator="not_equals", value="7B")

        assert evaluate_condition(condition, make_event()).passed

    def test_membership(self) -> None:
        inside = MembershipCondition(field="class_id", values=["7A", "7B"])
        outside = MembershipCondition(field="class_id", operator="not_in", values=["7A"])

        assert evaluate_condition(inside, make_event()).passed
        assert not evaluate_condition(outside, make_event()).passed

    def test_time_window_is_half_open(self) -> None:
        condition = TimeWindowCondition(start=time(8, 0), end=time(9, 0))

        assert evaluate_condition(condition, make_event(time=time(8, 0))).passed
        assert evaluate_condition(condition, make_event(time=time(8, 59))).passed
        assert not evaluate_condition(condition, make_event(time=time(9, 0))).passed

    def test_missing_field_never_passes(self) -> None:
        condition = EqualityCondition(field="nonexistent", value="x")

        result = evaluate_condition(condition, make_event())

        assert result.passed is False
        assert "not found" in result.reason

    def test_data_field_takes_precedence(self) -> None:
        condition = EqualityCondition(field="class_id", value="override")

        assert evaluate_condition(condition, make_event(data={"class_id": "override"})).passed

    def test_discriminated_union_parses_by_kind(self) -> None:
        adapter = TypeAdapter(Condition)

        parsed = adapter.validate_python({"kind": "membership", "field": "class_id", "values": ["7A"]})

        assert isinstance(parsed, MembershipCondition)

    def test_unknown_kind_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TypeAdapter(Condition).validate_python({"kind": "regex", "field": "x"})


class TestDelayWindow:
    """Tests for DelayWindow.next_slot."""

    def test_plain_delay(self) -> None:
        window = DelayWindow(delay_minutes=30)
        now = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

        assert window.next_slot(now, UTC) == datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)

    def test_before_allowed_hours_moves_to_start(self) -> None:
        window = DelayWindow(delay_minutes=15, allowed_hours=AllowedHours(start=8, end=18))
        now = datetime(2024, 5, 1, 6, 0, tzinfo=timezone.utc)

        assert window.next_slot(now, UTC) == datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)

    def test_after_allowed_hours_moves_to_next_day(self) -> None:
        window = DelayWindow(delay_minutes=30, allowed_hours=AllowedHours(start=8, end=18))
        now = datetime(2024, 5, 1, 17, 45, tzinfo=timezone.utc)

        assert window.next_slot(now, UTC) == datetime(2024, 5, 2, 8, 0, tzinfo=timezone.utc)

    def test_weekend_moves_to_monday_start(self) -> None:
        window = DelayWindow(
            delay_minutes=30,
            allowed_hours=AllowedHours(start=8, end=18),
            skip_weekends=True,
        )
        # Friday 17:50 -> Saturday 08:00 -> Monday 08:00
        now = datetime(2024, 5, 3, 17, 50, tzinfo=timezone.utc)

        assert window.next_slot(now, UTC) == datetime(2024, 5, 6, 8, 0, tzinfo=timezone.utc)

    def test_allowed_hours_use_school_timezone(self) -> None:
        window = DelayWindow(allowed_hours=AllowedHours(start=8, end=18))
        # 05:00 UTC is 07:00 in Johannesburg (UTC+2)
        now = datetime(2024, 5, 1, 5, 0, tzinfo=timezone.utc)

        slot = window.next_slot(now, ZoneInfo("Africa/Johannesburg"))

        assert slot == datetime(2024, 5, 1, 6, 0, tzinfo=timezone.utc)

    def test_invalid_allowed_hours(self) -> None:
        with pytest.raises(ValidationError):
            AllowedHours(start=18, end=8)


class TestAudienceAndKeys:
    """Tests for audience binding and suppression keys."""

    def test_bind_uses_event_subject(self) -> None:
        audience = TargetAudience(kind=AudienceKind.CLASS_PARENTS).bind(make_event())

        assert audience.subject_id == "S1"
        assert audience.class_id == "7A"
        assert audience.school_id == "school-1"

    def test_specific_guardians_requires_ids(self) -> None:
        with pytest.raises(ValidationError):
            TargetAudience(kind=AudienceKind.SPECIFIC_GUARDIANS)

    def test_trigger_class_distinguishes_escalation_levels(self) -> None:
        assert trigger_class(TriggerKind.STUDENT_MARKED_ABSENT) == "student_marked_absent"
        assert trigger_class(TriggerKind.STUDENT_MARKED_ABSENT, 2) == "student_marked_absent:escalation:2"

    def test_suppression_key_for_event(self) -> None:
        key = SuppressionKey.for_event(make_event(kind=TriggerKind.STUDENT_MARKED_ABSENT))

        assert key == SuppressionKey("S1", date(2024, 5, 1), "student_marked_absent")
