# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Rule set loading from YAML.

A rules file may add rules, replace rules by id, and override individual
fields of existing rules:

.. code-block:: yaml

    replace_defaults: false
    rules:
      - id: staff_meeting
        name: Staff Meeting
        category: school_wide_alert
        trigger: school_announcement_created
        audience: {kind: school_wide}
        template_id: school_announcement
        priority: 5
    overrides:
      first_day_absence:
        delay_window: {delay_minutes: 45}

Files in a directory are applied in name order.
"""

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from guardian_notify.core.config.yaml_loader import YAMLLoadError, deep_merge, load_yaml_documents
from guardian_notify.core.errors import RuleConfigError
from guardian_notify.core.rules.defaults import DEFAULT_RULES
from guardian_notify.core.rules.models import Rule

logger = logging.getLogger(__name__)


def _apply_document(rules: dict[str, dict[str, Any]], document: dict[str, Any], source: str) -> None:
    if document.get("replace_defaults"):
        rules.clear()

    for raw in document.get("rules") or []:
        if not isinstance(raw, dict) or not raw.get("id"):
            raise RuleConfigError(f"{source}: every rule needs an id")
        rules[raw["id"]] = raw

    for rule_id, override in (document.get("overrides") or {}).items():
        if rule_id not in rules:
            raise RuleConfigError(f"{source}: override for unknown rule '{rule_id}'")
        if not isinstance(override, dict):
            raise RuleConfigError(f"{source}: override for '{rule_id}' must be a mapping")
        rules[rule_id] = deep_merge(rules[rule_id], override)


def build_rules(
    documents: Iterable[dict[str, Any]],
    base: Iterable[Rule] = DEFAULT_RULES,
    source: str = "<rules>",
) -> list[Rule]:
    """Apply rule documents on top of a base rule set.

    Args:
        documents: Parsed rule documents, applied in order.
        base: Rules to start from.
        source: Name used in error messages.

    Returns:
        Validated rules sorted by (priority, id).

    Raises:
        RuleConfigError: If a document is malformed or a rule fails validation.
    """
    rules: dict[str, dict[str, Any]] = {rule.id: rule.model_dump(mode="json") for rule in base}
    for document in documents:
        _apply_document(rules, document, source)

    validated: list[Rule] = []
    for rule_id, raw in rules.items():
        try:
            validated.append(Rule.model_validate(raw))
        except ValidationError as e:
            raise RuleConfigError(f"{source}: invalid rule '{rule_id}'", original_error=e) from e

    return sorted(validated, key=lambda rule: (rule.priority, rule.id))


def load_rules(path: Path | None = None) -> list[Rule]:
    """Load the rule set.

    Args:
        path: YAML file or directory; None returns the built-in rules.

    Returns:
        Validated rules sorted by (priority, id).

    Raises:
        RuleConfigError: If the files cannot be read or a rule is invalid.
    """
    if path is None:
        return sorted(DEFAULT_RULES, key=lambda rule: (rule.priority, rule.id))

    try:
        documents = load_yaml_documents(path)
    except YAMLLoadError as e:
        raise RuleConfigError(f"Cannot load rules from {path}", original_error=e) from e

    rules = build_rules(documents, source=str(path))
    logger.info("Loaded %d rules from %s", len(rules), path)
    return rules
