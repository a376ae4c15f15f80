# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Delivery queue state machine.

Allowed transitions::

    (new)   -> pending | ready
    pending -> ready | cancelled
    ready   -> sending | cancelled
    sending -> sent | failed
    failed  -> sending          (retry, only while next_attempt_at is set)
    sent    -> escalated

Everything else is rejected. ``cancelled``, ``escalated`` and ``failed``
without a scheduled retry are terminal.
"""

from guardian_notify.core.errors import InvalidTransitionError
from guardian_notify.models.notification import NotificationStatus

ALLOWED_TRANSITIONS: dict[NotificationStatus | None, frozenset[NotificationStatus]] = {
    None: frozenset({NotificationStatus.PENDING, NotificationStatus.READY}),
    NotificationStatus.PENDING: frozenset({NotificationStatus.READY, NotificationStatus.CANCELLED}),
    NotificationStatus.READY: frozenset({NotificationStatus.SENDING, NotificationStatus.CANCELLED}),
    NotificationStatus.SENDING: frozenset({NotificationStatus.SENT, NotificationStatus.FAILED}),
    NotificationStatus.FAILED: frozenset({NotificationStatus.SENDING}),
    NotificationStatus.SENT: frozenset({NotificationStatus.ESCALATED}),
    NotificationStatus.CANCELLED: frozenset(),
    NotificationStatus.ESCALATED: frozenset(),
}


def can_transition(current: NotificationStatus | None, target: NotificationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def check_transition(
    identifier: str,
    current: NotificationStatus | None,
    target: NotificationStatus,
) -> None:
    """Raise if ``current -> target`` is not an allowed transition.

    Raises:
        InvalidTransitionError: For any transition not in the table.
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(
            identifier,
            current.value if current else "new",
            target.value,
        )
