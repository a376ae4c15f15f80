# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Webhook delivery channel.

Posts the rendered message as JSON to an external sender gateway, which
owns push/SMS/email transport and guardian contact resolution.

Configuration (via environment variables):
- DELIVERY_WEBHOOK_URL: Gateway endpoint
- DELIVERY_WEBHOOK_TOKEN: Optional bearer token
- DELIVERY_SEND_TIMEOUT_SECONDS: Request timeout
"""

import httpx

from guardian_notify.core.rules.models import ResolvedAudience
from guardian_notify.infrastructure.notifications.channels.base import (
    DeliveryChannel,
    DeliveryResult,
    OutboundMessage,
)


class WebhookChannel(DeliveryChannel):
    """Delivery channel backed by an HTTP sender gateway.

    The notification id is sent as ``Idempotency-Key`` so that a retried
    request after a timeout does not produce a second message.
    """

    name = "webhook"

    def __init__(
        self,
        url: str,
        token: str | None = None,
        timeout_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__()
        self._url = url
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds, headers=headers)

    def _build_body(self, message: OutboundMessage, audience: ResolvedAudience) -> dict:
        return {
            "notification_id": message.notification_id,
            "category": message.category,
            "subject": message.subject,
            "body": message.body,
            "escalation_level": message.escalation_level,
            "audience": audience.model_dump(mode="json"),
            "metadata": message.metadata,
        }

    async def send(self, message: OutboundMessage, audience: ResolvedAudience) -> DeliveryResult:
        try:
            response = await self._client.post(
                self._url,
                json=self._build_body(message, audience),
                headers={"Idempotency-Key": message.notification_id},
            )
        except httpx.TimeoutException as e:
            self.logger.warning("Gateway timeout for %s: %s", message.notification_id, str(e))
            return self.create_failure_result("timeout", str(e))
        except httpx.HTTPError as e:
            self.logger.warning("Gateway request failed for %s: %s", message.notification_id, str(e))
            return self.create_failure_result("transport_error", str(e))

        if response.is_success:
            data = response.json() if response.content else {}
            return self.create_success_result(provider_message_id=data.get("message_id"))

        self.logger.warning(
            "Gateway rejected %s (%d): %s",
            message.notification_id,
            response.status_code,
            response.text,
        )
        return self.create_failure_result(f"http_{response.status_code}", response.text)

    async def close(self) -> None:
        await self._client.aclose()
