# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Utility functions and helpers for Guardian Notify.

This package contains cross-cutting utilities:
- logging: Structured logging with structlog
- datetime: Timezone-aware datetime operations and the injectable clock
"""

from guardian_notify.utils.datetime import (
    Clock,
    ManualClock,
    SystemClock,
    ensure_utc,
    exponential_backoff,
    format_iso,
    local_date,
    parse_iso,
    utc_now,
)
from guardian_notify.utils.logging import add_device_context, bind_context, clear_context, setup_logging

__all__ = [
    # Logging
    "setup_logging",
    "add_device_context",
    "bind_context",
    "clear_context",
    # Datetime
    "Clock",
    "ManualClock",
    "SystemClock",
    "utc_now",
    "ensure_utc",
    "format_iso",
    "parse_iso",
    "local_date",
    "exponential_backoff",
]
