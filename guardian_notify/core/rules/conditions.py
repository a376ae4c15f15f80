# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Rule conditions as a tagged union.

Each condition kind is its own model with a literal ``kind`` tag, and
``evaluate_condition`` handles every kind explicitly; a new kind that is
added to ``Condition`` without an evaluator branch fails type checking at
``assert_never``.

Condition kinds:
- threshold: numeric comparison (consecutive_days > 2)
- equality: equals / not_equals (previous_state == "absent")
- membership: in / not_in a set (class_id in ["7A", "7B"])
- time_window: event time inside [start, end)
"""

from dataclasses import dataclass
from datetime import time
from typing import Annotated, Any, Literal, Union, assert_never

from pydantic import BaseModel, ConfigDict, Field

from guardian_notify.core.rules.events import TriggerEvent


class ThresholdCondition(BaseModel):
    """Numeric comparison against a fixed threshold."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["threshold"] = "threshold"
    field: str
    operator: Literal["gt", "gte", "lt", "lte"]
    value: float


class EqualityCondition(BaseModel):
    """Exact (in)equality against a scalar."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["equality"] = "equality"
    field: str
    operator: Literal["equals", "not_equals"] = "equals"
    value: str | int | float | bool


class MembershipCondition(BaseModel):
    """Set membership test."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["membership"] = "membership"
    field: str
    operator: Literal["in", "not_in"] = "in"
    values: list[str]


class TimeWindowCondition(BaseModel):
    """Clock time of the event within [start, end)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["time_window"] = "time_window"
    field: str = "time"
    start: time
    end: time


Condition = Annotated[
    Union[ThresholdCondition, EqualityCondition, MembershipCondition, TimeWindowCondition],
    Field(discriminator="kind"),
]


@dataclass(frozen=True)
class ConditionResult:
    """Audit record for one evaluated condition."""

    condition: Condition
    passed: bool
    reason: str


_THRESHOLD_OPS = {
    "gt": (lambda a, b: a > b, ">", "<="),
    "gte": (lambda a, b: a >= b, ">=", "<"),
    "lt": (lambda a, b: a < b, "<", ">="),
    "lte": (lambda a, b: a <= b, "<=", ">"),
}


def _as_time(value: Any) -> time | None:
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        try:
            return time.fromisoformat(value)
        except ValueError:
            return None
    return None


def evaluate_condition(condition: Condition, event: TriggerEvent) -> ConditionResult:
    """Evaluate one condition against an event.

    A missing field never passes.

    Args:
        condition: Condition to evaluate.
        event: Trigger event providing the field values.

    Returns:
        ConditionResult with a human-readable reason for the audit trail.
    """
    value = event.field_value(condition.field)
    if value is None:
        return ConditionResult(condition, False, f"Field '{condition.field}' not found in event")

    if isinstance(condition, ThresholdCondition):
        try:
            number = float(value)
        except (TypeError, ValueError):
            return ConditionResult(
                condition, False, f"{condition.field} ({value!r}) is not numeric"
            )
        compare, symbol, negated = _THRESHOLD_OPS[condition.operator]
        passed = compare(number, condition.value)
        op = symbol if passed else negated
        return ConditionResult(condition, passed, f"{condition.field} ({value}) {op} {condition.value:g}")

    elif isinstance(condition, EqualityCondition):
        equal = value == condition.value
        passed = equal if condition.operator == "equals" else not equal
        relation = "equals" if equal else "does not equal"
        return ConditionResult(condition, passed, f"{condition.field} ({value}) {relation} {condition.value}")

    elif isinstance(condition, MembershipCondition):
        member = str(value) in condition.values
        passed = member if condition.operator == "in" else not member
        relation = "is in" if member else "not in"
        return ConditionResult(
            condition, passed, f"{condition.field} ({value}) {relation} [{', '.join(condition.values)}]"
        )

    elif isinstance(condition, TimeWindowCondition):
        at = _as_time(value)
        if at is None:
            return ConditionResult(condition, False, f"{condition.field} ({value!r}) is not a time")
        passed = condition.start <= at < condition.end
        relation = "within" if passed else "outside"
        return ConditionResult(
            condition,
            passed,
            f"{condition.field} ({at.isoformat('minutes')}) {relation} "
            f"{condition.start.isoformat('minutes')}-{condition.end.isoformat('minutes')}",
        )

    else:
        assert_never(condition)
