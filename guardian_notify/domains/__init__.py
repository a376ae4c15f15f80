# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Domain services layer for Guardian Notify.

Domains:
    notifications: Admission pipeline and staff-facing operations.
    queue: Delayed, cancellable delivery queue with escalation.
    suppression: Duplicate suppression ledger.
    sync: Offline-first local store and sync engine.
"""
