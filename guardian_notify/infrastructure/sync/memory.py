# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-process sync backend for local development.

Keeps one versioned record per (entity_type, logical_key) and applies the
same optimistic concurrency contract as the HTTP backend. Several sync
engines (devices) can share one instance.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from guardian_notify.infrastructure.sync.backend import (
    SyncBackend,
    SyncRecord,
    UpsertResult,
    UpsertStatus,
)
from guardian_notify.utils.datetime import Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass
class ServerRecord:
    """Current server state of one logical record."""

    version: int
    payload: dict[str, Any]
    updated_at: datetime
    device_id: str
    local_id: str


class InMemorySyncBackend(SyncBackend):
    """Versioned in-memory store with conflict detection."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._records: dict[tuple[str, str], ServerRecord] = {}
        self._applied: dict[str, int] = {}
        self._lock = asyncio.Lock()
        self.upsert_count = 0

    def get(self, entity_type: str, logical_key: str) -> ServerRecord | None:
        return self._records.get((entity_type, logical_key))

    async def upsert(self, record: SyncRecord) -> UpsertResult:
        async with self._lock:
            self.upsert_count += 1
            key = (record.entity_type, record.logical_key)
            current = self._records.get(key)

            # Replayed write after a lost response.
            if record.local_id in self._applied:
                version = self._applied[record.local_id]
                return UpsertResult(
                    status=UpsertStatus.ACCEPTED,
                    server_version=version,
                    server_timestamp=current.updated_at if current else self._clock.now(),
                )

            current_version = current.version if current else None
            if record.base_version != current_version:
                logger.info(
                    "Conflict on %s/%s: base %s, server %s (device %s)",
                    record.entity_type,
                    record.logical_key,
                    record.base_version,
                    current_version,
                    record.device_id,
                )
                return UpsertResult(
                    status=UpsertStatus.CONFLICT,
                    server_version=current_version,
                    server_timestamp=current.updated_at if current else None,
                    server_payload=dict(current.payload) if current else None,
                )

            new_version = (current_version or 0) + 1
            now = self._clock.now()
            self._records[key] = ServerRecord(
                version=new_version,
                payload=dict(record.payload),
                updated_at=now,
                device_id=record.device_id,
                local_id=record.local_id,
            )
            self._applied[record.local_id] = new_version
            return UpsertResult(
                status=UpsertStatus.ACCEPTED,
                server_version=new_version,
                server_timestamp=now,
            )
