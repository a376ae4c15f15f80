# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Content validation for rendered guardian messages."""

from guardian_notify.core.content.validator import (
    DEFAULT_POLICY,
    SAFE_ALTERNATIVES,
    ContentValidator,
    PatternCategory,
    Severity,
    ValidationResult,
    Violation,
)

__all__ = [
    "ContentValidator",
    "PatternCategory",
    "Severity",
    "ValidationResult",
    "Violation",
    "DEFAULT_POLICY",
    "SAFE_ALTERNATIVES",
]
