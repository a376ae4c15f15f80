# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""HTTP sync backend.

Configuration (via environment variables):
- SYNC_BASE_URL: Base URL of the sync API
- SYNC_API_TOKEN: Optional bearer token
- SYNC_TIMEOUT_SECONDS: Request timeout

Protocol:
    POST {base_url}/v1/sync/upsert
    200/201 -> accepted: {"server_version": int, "server_timestamp": iso}
    409     -> conflict: {"server_version": int, "server_timestamp": iso,
                          "server_payload": {...}}
    other   -> error
"""

import logging

import httpx

from guardian_notify.infrastructure.sync.backend import (
    SyncBackend,
    SyncRecord,
    UpsertResult,
    UpsertStatus,
)
from guardian_notify.utils.datetime import parse_iso

logger = logging.getLogger(__name__)

UPSERT_PATH = "/v1/sync/upsert"


class HttpSyncBackend(SyncBackend):
    """Sync backend speaking JSON over HTTP."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            headers=headers,
        )

    async def upsert(self, record: SyncRecord) -> UpsertResult:
        try:
            response = await self._client.post(
                UPSERT_PATH,
                json=record.to_dict(),
                headers={"Idempotency-Key": record.local_id},
            )
        except httpx.HTTPError as e:
            logger.warning("Sync request for %s failed: %s", record.local_id, str(e))
            return UpsertResult(status=UpsertStatus.ERROR, error=f"{type(e).__name__}: {e}")

        if response.status_code in (200, 201):
            data = response.json()
            return UpsertResult(
                status=UpsertStatus.ACCEPTED,
                server_version=data.get("server_version"),
                server_timestamp=parse_iso(data.get("server_timestamp")),
            )

        if response.status_code == 409:
            data = response.json()
            return UpsertResult(
                status=UpsertStatus.CONFLICT,
                server_version=data.get("server_version"),
                server_timestamp=parse_iso(data.get("server_timestamp")),
                server_payload=data.get("server_payload"),
            )

        logger.warning(
            "Sync API rejected %s (%d): %s",
            record.local_id,
            response.status_code,
            response.text,
        )
        return UpsertResult(
            status=UpsertStatus.ERROR,
            error=f"http_{response.status_code}: {response.text[:200]}",
        )

    async def close(self) -> None:
        await self._client.aclose()
