# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Logging setup for the device runtime.

Modules log through ``logging.getLogger(__name__)``. structlog carries the
per-event context (event, subject, school) bound by the notification
service and stamps every entry with the device identity, since device
logs are read long after the fact and away from the device.
"""

import logging
import sys
from typing import TYPE_CHECKING

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

if TYPE_CHECKING:
    from guardian_notify.core.config.settings import Settings

# Libraries whose DEBUG output drowns the queue and sync logs.
_QUIET_LOGGERS = ("sqlalchemy", "aiosqlite", "httpx", "httpcore", "apscheduler", "asyncio")


def add_device_context(device_id: str, school_timezone: str) -> Processor:
    """Build a processor stamping entries with the device id and school timezone.

    Values bound explicitly on an entry win.
    """

    def processor(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("device_id", device_id)
        event_dict.setdefault("school_tz", school_timezone)
        return event_dict

    return processor


def _renderer(settings: "Settings") -> list[Processor]:
    if settings.is_development or settings.debug:
        return [structlog.dev.ConsoleRenderer(colors=True)]
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def setup_logging(settings: "Settings") -> None:
    """Configure structlog and the stdlib root handler from settings.

    Console output in development, one JSON object per line otherwise.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_device_context(settings.sync.device_id, settings.school_timezone),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            *_renderer(settings),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
        level=level,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("guardian_notify").setLevel(level)


def bind_context(**kwargs: object) -> None:
    """Bind values (event_id, subject_id, school_id) to the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
