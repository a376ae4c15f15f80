# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Delayed delivery queue with cancellation, retries and escalation."""

from guardian_notify.domains.queue.service import ESCALATION_TEMPLATE_ID, DeliveryQueue
from guardian_notify.domains.queue.state import (
    ALLOWED_TRANSITIONS,
    can_transition,
    check_transition,
)

__all__ = [
    "DeliveryQueue",
    "ESCALATION_TEMPLATE_ID",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "check_transition",
]
