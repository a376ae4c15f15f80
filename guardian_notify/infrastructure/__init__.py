# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Infrastructure layer for storage and external integrations.

This package contains clients and managers for:
- Local database (SQLite via aiosqlite)
- Delivery channels (sender gateway)
- Sync backends
- In-process event bus
- Background scheduling (APScheduler)
"""
