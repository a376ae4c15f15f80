# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Guardian notification service."""

from guardian_notify.domains.notifications.service import NotificationService

__all__ = ["NotificationService"]
