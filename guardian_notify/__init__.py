"""Guardian Notify.

Offline-first guardian notification core: deterministic rule evaluation,
duplicate suppression, a cancellable delayed delivery queue with
escalation, and local-first sync with conflict handling.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
