# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Delivery channel implementations.

Available channels:
- WebhookChannel: Posts rendered messages to an external sender gateway
- LogChannel: Logs messages; for development without a gateway
"""

from guardian_notify.infrastructure.notifications.channels.base import (
    DeliveryChannel,
    DeliveryResult,
    LogChannel,
    OutboundMessage,
)
from guardian_notify.infrastructure.notifications.channels.webhook import WebhookChannel

__all__ = [
    "DeliveryChannel",
    "DeliveryResult",
    "OutboundMessage",
    "LogChannel",
    "WebhookChannel",
]
