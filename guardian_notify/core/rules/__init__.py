# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Trigger events, rule configuration and the deterministic rule evaluator."""

from guardian_notify.core.rules.catalog import (
    DEFAULT_TEMPLATES,
    DEFAULT_TRIGGERS,
    MessageTemplate,
    RenderedMessage,
    TemplateCatalog,
    TriggerSpec,
)
from guardian_notify.core.rules.conditions import (
    Condition,
    ConditionResult,
    EqualityCondition,
    MembershipCondition,
    ThresholdCondition,
    TimeWindowCondition,
    evaluate_condition,
)
from guardian_notify.core.rules.defaults import DEFAULT_RULES
from guardian_notify.core.rules.evaluator import RuleEvaluator
from guardian_notify.core.rules.events import (
    OverrideAction,
    OverrideRequest,
    TriggerEvent,
    TriggerKind,
    attendance_trigger_kind,
)
from guardian_notify.core.rules.loader import build_rules, load_rules
from guardian_notify.core.rules.models import (
    AllowedHours,
    AudienceKind,
    DelayWindow,
    EscalationLevel,
    EscalationPolicy,
    EvaluationReason,
    EvaluationResult,
    NotificationCategory,
    OverridePermissions,
    ResolvedAudience,
    Rule,
    SuppressionKey,
    TargetAudience,
    trigger_class,
)

__all__ = [
    # Events
    "TriggerEvent",
    "TriggerKind",
    "OverrideAction",
    "OverrideRequest",
    "attendance_trigger_kind",
    # Catalog
    "MessageTemplate",
    "RenderedMessage",
    "TemplateCatalog",
    "TriggerSpec",
    "DEFAULT_TEMPLATES",
    "DEFAULT_TRIGGERS",
    # Conditions
    "Condition",
    "ConditionResult",
    "ThresholdCondition",
    "EqualityCondition",
    "MembershipCondition",
    "TimeWindowCondition",
    "evaluate_condition",
    # Rules
    "Rule",
    "NotificationCategory",
    "AudienceKind",
    "TargetAudience",
    "ResolvedAudience",
    "AllowedHours",
    "DelayWindow",
    "EscalationLevel",
    "EscalationPolicy",
    "OverridePermissions",
    "SuppressionKey",
    "trigger_class",
    "DEFAULT_RULES",
    "build_rules",
    "load_rules",
    # Evaluation
    "RuleEvaluator",
    "EvaluationReason",
    "EvaluationResult",
]
