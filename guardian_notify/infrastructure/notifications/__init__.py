# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification delivery infrastructure."""

from guardian_notify.infrastructure.notifications.channels import (
    DeliveryChannel,
    DeliveryResult,
    LogChannel,
    OutboundMessage,
    WebhookChannel,
)

__all__ = [
    "DeliveryChannel",
    "DeliveryResult",
    "OutboundMessage",
    "LogChannel",
    "WebhookChannel",
]
