# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Suppression ledger table."""

from datetime import date, datetime

from sqlalchemy import Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from guardian_notify.infrastructure.database.models.base import Base, UTCDateTime


class SuppressionRecord(Base):
    """One row per (subject, date, trigger class).

    The composite primary key is what makes a reservation atomic: a second
    insert for the same key is rejected by the store.
    """

    __tablename__ = "suppression_records"

    subject_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    record_date: Mapped[date] = mapped_column(Date, primary_key=True)
    trigger_class: Mapped[str] = mapped_column(String(120), primary_key=True)
    notification_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reserved_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (Index("ix_suppression_records_record_date", "record_date"),)
