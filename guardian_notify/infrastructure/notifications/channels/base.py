# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Base classes for delivery channels.

A delivery channel hands a fully rendered message to an external sender
and reports success or failure. The core does not interpret provider
error codes beyond that; retries and terminal failure are decided by the
delivery queue.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from guardian_notify.core.rules.models import ResolvedAudience


@dataclass(frozen=True)
class OutboundMessage:
    """A rendered notification ready for delivery.

    Attributes:
        notification_id: Queue item identifier, used as idempotency key.
        category: Notification category.
        subject: Rendered subject line.
        body: Rendered body.
        escalation_level: 0 for the original notice.
        metadata: Extra data for the sender (rule id, template id).
    """

    notification_id: str
    category: str
    subject: str
    body: str
    escalation_level: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of a single send.

    Attributes:
        success: Whether the sender accepted the message.
        provider_message_id: Sender's message id, if any.
        error_code: Short failure code, if any.
        error_message: Failure description for operators.
    """

    success: bool
    provider_message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None


class DeliveryChannel(ABC):
    """Abstract base class for delivery channels.

    Implementations should return a failed DeliveryResult for sender
    errors rather than raising; the queue still treats any exception as a
    failed attempt.
    """

    name: str = "channel"

    def __init__(self) -> None:
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    async def send(self, message: OutboundMessage, audience: ResolvedAudience) -> DeliveryResult:
        """Send a message to an audience.

        Args:
            message: Rendered message.
            audience: Audience bound to the subject of the notification.

        Returns:
            DeliveryResult with the sender's outcome.
        """
        ...

    async def close(self) -> None:
        """Release any resources held by the channel."""

    def create_success_result(self, provider_message_id: str | None = None) -> DeliveryResult:
        return DeliveryResult(success=True, provider_message_id=provider_message_id)

    def create_failure_result(self, error_code: str, error_message: str | None = None) -> DeliveryResult:
        return DeliveryResult(success=False, error_code=error_code, error_message=error_message)


class LogChannel(DeliveryChannel):
    """Channel that records messages in the log and always succeeds.

    Used in development when no sender gateway is configured.
    """

    name = "log"

    async def send(self, message: OutboundMessage, audience: ResolvedAudience) -> DeliveryResult:
        self.logger.info(
            "Delivering %s to %s of %s: %s",
            message.notification_id,
            audience.kind.value,
            audience.subject_id,
            message.subject,
        )
        return self.create_success_result(provider_message_id=f"log-{message.notification_id}")
