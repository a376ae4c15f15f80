# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Exception hierarchy for the notification core.

These exceptions are raised inside the core and translated into typed
outcomes at the public service boundary. Policy rejections (duplicate
suppression, blocked content) and sync conflicts are *not* exceptions;
they are ordinary results.
"""


class GuardianNotifyError(Exception):
    """Base exception for notification core operations."""

    def __init__(
        self,
        message: str,
        code: str = "notify_error",
        original_error: Exception | None = None,
    ):
        self.message = message
        self.code = code
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class EventValidationError(GuardianNotifyError):
    """Raised when a trigger event is malformed."""

    def __init__(self, errors: list[str]):
        super().__init__(
            message="Invalid trigger event: " + "; ".join(errors),
            code="invalid_event",
        )
        self.errors = errors


class TemplateRenderError(GuardianNotifyError):
    """Raised when a template cannot be rendered with the given variables."""

    def __init__(self, template_id: str, missing: list[str]):
        super().__init__(
            message=f"Template {template_id} missing variables: {', '.join(missing)}",
            code="missing_variables",
        )
        self.template_id = template_id
        self.missing = missing


class RuleConfigError(GuardianNotifyError):
    """Raised when rule configuration is invalid."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message=message, code="rule_config", original_error=original_error)


class NotFoundError(GuardianNotifyError):
    """Raised when a queued notification or sync item does not exist."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(message=f"{kind} not found: {identifier}", code="not_found")
        self.identifier = identifier


class InvalidTransitionError(GuardianNotifyError):
    """Raised when a status change is not allowed by the state machine."""

    def __init__(self, identifier: str, current: str, target: str):
        super().__init__(
            message=f"Cannot move {identifier} from {current} to {target}",
            code="invalid_transition",
        )
        self.identifier = identifier
        self.current = current
        self.target = target
