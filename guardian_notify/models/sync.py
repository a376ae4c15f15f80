# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Offline sync item models and sync outcomes."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EntityType(str, Enum):
    """Kinds of entities that can be captured offline."""

    ATTENDANCE = "attendance"
    NOTES = "notes"
    GRADES = "grades"
    UPLOADS = "uploads"
    NOTIFICATION = "notification"


class SyncStatus(str, Enum):
    """Sync status of an offline item; exactly one at any time."""

    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    CONFLICT = "conflict"
    FAILED = "failed"


class ConflictResolution(str, Enum):
    """Reviewer decision for a conflicting item."""

    LOCAL_WINS = "local_wins"
    SERVER_WINS = "server_wins"
    MERGED = "merged"
    ADMIN_REVIEW = "admin_review"


class LocalEntity(BaseModel):
    """An entity captured on the device, before it becomes a sync item.

    Attributes:
        entity_type: Kind of entity.
        logical_key: Server record this write targets.
        payload: Entity data.
        school_id: Origin school.
        class_id: Origin class.
        user_id: User who captured the data.
    """

    model_config = ConfigDict(frozen=True)

    entity_type: EntityType
    logical_key: str = Field(min_length=1)
    payload: dict[str, Any]
    school_id: str = Field(min_length=1)
    class_id: str | None = None
    user_id: str = Field(min_length=1)


class SyncItem(BaseModel):
    """Read model of an offline sync item."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    entity_type: EntityType
    logical_key: str
    payload: dict[str, Any]
    school_id: str
    class_id: str | None = None
    user_id: str
    device_id: str
    local_timestamp: datetime
    sequence: int
    server_timestamp: datetime | None = None
    server_version: int | None = None
    server_payload: dict[str, Any] | None = None
    status: SyncStatus
    retry_count: int = 0
    next_retry_at: datetime | None = None
    last_error: str | None = None
    conflict_resolution: ConflictResolution | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    synced_at: datetime | None = None


@dataclass(frozen=True)
class SyncReport:
    """Counters for one sync pass.

    Attributes:
        synced: Items the backend accepted.
        failed: Items whose attempt failed (retried later or terminal).
        conflicts: Items the backend reported as conflicting.
        skipped: Items another pass already claimed, or held behind an
            earlier unsynced write to the same record.
    """

    synced: int = 0
    failed: int = 0
    conflicts: int = 0
    skipped: int = 0

    @property
    def attempted(self) -> int:
        return self.synced + self.failed + self.conflicts


class ResolveStatus(str, Enum):
    """Outcome of a conflict resolution request."""

    RESOLVED = "resolved"
    HELD_FOR_REVIEW = "held_for_review"
    STILL_CONFLICTING = "still_conflicting"
    FAILED = "failed"
    NOT_A_CONFLICT = "not_a_conflict"
    FORBIDDEN = "forbidden"
    INVALID = "invalid"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ResolveOutcome:
    """Typed result of resolve_conflict."""

    status: ResolveStatus
    item: SyncItem | None = None
    message: str = ""


@dataclass(frozen=True)
class SyncStats:
    """Item counts by sync status."""

    pending: int = 0
    syncing: int = 0
    synced: int = 0
    conflicts: int = 0
    failed: int = 0
