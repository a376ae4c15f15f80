# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Core package for Guardian Notify.

This package contains the pure decision logic and shared configuration:
- config: Application configuration and settings
- rules: Trigger events, rule definitions, template catalog and evaluator
- content: Message content policy validator
- errors: Exception hierarchy
"""
