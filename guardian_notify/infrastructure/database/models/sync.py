# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Offline sync item table."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from guardian_notify.infrastructure.database.models.base import Base, UTCDateTime


class OfflineSyncItem(Base):
    """A locally captured entity waiting to be reconciled with the backend."""

    __tablename__ = "offline_sync_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    logical_key: Mapped[str] = mapped_column(String(200), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    school_id: Mapped[str] = mapped_column(String(100), nullable=False)
    class_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    device_id: Mapped[str] = mapped_column(String(100), nullable=False)

    local_timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    # Capture order on this device; strictly increasing.
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    server_timestamp: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    server_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    server_payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    conflict_resolution: Mapped[str | None] = mapped_column(String(20), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_offline_sync_items_status_local_ts", "status", "local_timestamp"),
        Index("ix_offline_sync_items_entity_key", "entity_type", "logical_key", "sequence"),
        Index("ix_offline_sync_items_school_status", "school_id", "status"),
    )
