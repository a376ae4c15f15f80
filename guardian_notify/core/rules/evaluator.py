# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Deterministic rule evaluator.

Turns a trigger event into a send/suppress decision. Evaluation is a pure
function of (event, rule set, ledger snapshot, clock instant): the same
inputs always produce the same result, which keeps every decision
reproducible for audit.

Algorithm:
1. Walk rules in ascending (priority, id) order.
2. Skip inactive rules, other trigger kinds and rules scoped to another school.
3. Evaluate conditions with AND semantics; the first full match wins.
4. Check the suppression key against the ledger snapshot.
5. Apply an allowed human override (suppress or force_send).
6. Compute ``scheduled_for`` from the rule's delay window.
"""

import logging
from collections.abc import Container, Iterable
from datetime import datetime
from zoneinfo import ZoneInfo

from guardian_notify.core.errors import RuleConfigError
from guardian_notify.core.rules.catalog import TemplateCatalog
from guardian_notify.core.rules.conditions import ConditionResult, evaluate_condition
from guardian_notify.core.rules.events import OverrideAction, TriggerEvent
from guardian_notify.core.rules.models import (
    EvaluationReason,
    EvaluationResult,
    Rule,
    SuppressionKey,
)

logger = logging.getLogger(__name__)


class RuleEvaluator:
    """Priority-ordered, first-match rule evaluator.

    Example:
        >>> evaluator = RuleEvaluator(load_rules(), TemplateCatalog())
        >>> result = evaluator.evaluate(event, ledger_snapshot=set(), now=utc_now())
        >>> result.should_send, result.reason
        (True, <EvaluationReason.MATCHED: 'matched'>)
    """

    def __init__(
        self,
        rules: Iterable[Rule],
        catalog: TemplateCatalog,
        timezone: str = "UTC",
    ) -> None:
        """Initialize the evaluator.

        Args:
            rules: Rule set; declaration order is irrelevant.
            catalog: Template catalog used to check template references.
            timezone: School timezone for allowed hours and weekends.

        Raises:
            RuleConfigError: If rule ids repeat or a rule references an
                unknown template.
        """
        ordered = sorted(rules, key=lambda rule: (rule.priority, rule.id))
        seen: set[str] = set()
        for rule in ordered:
            if rule.id in seen:
                raise RuleConfigError(f"Duplicate rule id: {rule.id}")
            seen.add(rule.id)
            if rule.template_id not in catalog:
                raise RuleConfigError(f"Rule {rule.id} references unknown template {rule.template_id}")

        self._rules = tuple(ordered)
        self._catalog = catalog
        self._tz = ZoneInfo(timezone)

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self._rules

    @property
    def catalog(self) -> TemplateCatalog:
        return self._catalog

    @property
    def timezone(self) -> ZoneInfo:
        return self._tz

    def get_rule(self, rule_id: str) -> Rule | None:
        return next((rule for rule in self._rules if rule.id == rule_id), None)

    def match(self, event: TriggerEvent) -> tuple[Rule | None, tuple[ConditionResult, ...]]:
        """Find the first rule whose trigger and conditions all match.

        Returns:
            The selected rule (or None) and its condition audit trail.
        """
        for rule in self._rules:
            if not rule.is_active or rule.trigger != event.kind:
                continue
            if not rule.applies_to_school(event.school_id):
                continue

            results = tuple(evaluate_condition(condition, event) for condition in rule.conditions)
            if all(result.passed for result in results):
                return rule, results

            logger.debug(
                "Rule %s skipped for event %s: %s",
                rule.id,
                event.event_id,
                "; ".join(result.reason for result in results if not result.passed),
            )
        return None, ()

    def evaluate(
        self,
        event: TriggerEvent,
        ledger_snapshot: Container[SuppressionKey],
        now: datetime,
    ) -> EvaluationResult:
        """Evaluate an event.

        Args:
            event: Trigger event.
            ledger_snapshot: Suppression keys already reserved or sent.
            now: Evaluation instant (timezone-aware).

        Returns:
            EvaluationResult; rejections carry ``should_send=False`` and a reason.
        """
        rule, condition_results = self.match(event)
        if rule is None:
            return EvaluationResult(
                should_send=False,
                reason=EvaluationReason.NO_MATCHING_RULE,
                evaluated_at=now,
            )

        key = SuppressionKey.for_event(event)
        common = {
            "rule": rule,
            "template_id": rule.template_id,
            "suppression_key": key,
            "condition_results": condition_results,
            "evaluated_at": now,
        }

        if key in ledger_snapshot:
            logger.info("Duplicate suppressed for %s (rule %s)", key, rule.id)
            return EvaluationResult(should_send=False, reason=EvaluationReason.DUPLICATE_SUPPRESSED, **common)

        override_action: OverrideAction | None = None
        if event.override is not None:
            if rule.overrides.allows(event.override.role):
                override_action = event.override.action
            else:
                logger.warning(
                    "Override by %s (%s) not permitted for rule %s",
                    event.override.actor,
                    event.override.role,
                    rule.id,
                )

        if override_action == OverrideAction.SUPPRESS:
            logger.info(
                "Rule %s suppressed by %s: %s",
                rule.id,
                event.override.actor,
                event.override.reason,
            )
            return EvaluationResult(
                should_send=False,
                reason=EvaluationReason.SUPPRESSED_BY_OVERRIDE,
                override_action=override_action,
                **common,
            )

        if override_action == OverrideAction.FORCE_SEND:
            scheduled_for = now
        else:
            scheduled_for = rule.delay_window.next_slot(now, self._tz)

        return EvaluationResult(
            should_send=True,
            reason=EvaluationReason.MATCHED,
            variables=event.template_variables(),
            scheduled_for=scheduled_for,
            override_action=override_action,
            **common,
        )
