# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Sync backend interface.

The durable backend is a black box that accepts upsert-style writes
guarded by an optimistic concurrency token. A write whose base version
does not match the record's current server version is answered with a
conflict marker instead of overwriting.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class UpsertStatus(str, Enum):
    """Backend verdict for a single upsert."""

    ACCEPTED = "accepted"
    CONFLICT = "conflict"
    ERROR = "error"


@dataclass(frozen=True)
class SyncRecord:
    """One locally captured write, as sent to the backend.

    Attributes:
        local_id: Device-local identifier; the backend treats it as an
            idempotency key.
        entity_type: attendance, notes, grades, uploads or notification.
        logical_key: Server record the payload writes to.
        payload: Entity data.
        school_id: Origin school.
        class_id: Origin class, if any.
        user_id: User who captured the data.
        device_id: Device that captured the data.
        local_timestamp: When the data was captured on the device.
        base_version: Server version the write is based on; None for a
            record the device has never seen on the server.
    """

    local_id: str
    entity_type: str
    logical_key: str
    payload: dict[str, Any]
    school_id: str
    class_id: str | None
    user_id: str
    device_id: str
    local_timestamp: datetime
    base_version: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "local_id": self.local_id,
            "entity_type": self.entity_type,
            "logical_key": self.logical_key,
            "payload": self.payload,
            "school_id": self.school_id,
            "class_id": self.class_id,
            "user_id": self.user_id,
            "device_id": self.device_id,
            "local_timestamp": self.local_timestamp.isoformat(),
            "base_version": self.base_version,
        }


@dataclass(frozen=True)
class UpsertResult:
    """Backend response to an upsert.

    Attributes:
        status: accepted, conflict or error.
        server_version: Version after the write (accepted) or the current
            version that caused the conflict.
        server_timestamp: Server time of the current version.
        server_payload: Current server payload on conflict.
        error: Error description on error.
    """

    status: UpsertStatus
    server_version: int | None = None
    server_timestamp: datetime | None = None
    server_payload: dict[str, Any] | None = None
    error: str | None = None


class SyncBackend(ABC):
    """Abstract durable backend used by the sync engine."""

    @abstractmethod
    async def upsert(self, record: SyncRecord) -> UpsertResult:
        """Attempt one upsert of a local record."""
        ...

    async def close(self) -> None:
        """Release any resources held by the backend."""
