# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure for the embedded local store.

Example:
    from guardian_notify.infrastructure.database import LocalDatabase

    database = LocalDatabase(settings.local_db.url)
    await database.create_all()
    async with database.session() as session:
        ...
"""

from guardian_notify.infrastructure.database import models
from guardian_notify.infrastructure.database.connection import DatabaseError, LocalDatabase

__all__ = [
    "DatabaseError",
    "LocalDatabase",
    "models",
]
