# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Duplicate suppression ledger."""

from guardian_notify.domains.suppression.ledger import SuppressionLedger

__all__ = ["SuppressionLedger"]
