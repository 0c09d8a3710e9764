"""Bridge between the event recorder and the standard logging module."""

from __future__ import annotations

import logging
from typing import Optional

from tether.observability.events import EventRecorder, ResolutionEvent, get_event_recorder

LOGGER = logging.getLogger("tether")

_WARNING_SUFFIXES = (".error", ".unavailable", ".conflict", ".unresolved")
_INFO_SUFFIXES = (".reused", ".created", ".awaiting_choice", ".complete")


def _level_for(event: ResolutionEvent) -> int:
    if event.name.endswith(_WARNING_SUFFIXES):
        return logging.WARNING
    if event.name.endswith(_INFO_SUFFIXES):
        return logging.INFO
    return logging.DEBUG


def logging_observer(event: ResolutionEvent) -> None:
    """Log an event at a level derived from its name."""

    logger = LOGGER.getChild(event.service) if event.service else LOGGER
    level = _level_for(event)
    if not logger.isEnabledFor(level):
        return
    logger.log(level, "%s %s", event.name, event.payload)


def configure_logging(
    level: str = "INFO",
    *,
    recorder: Optional[EventRecorder] = None,
) -> EventRecorder:
    """Set the ``tether`` logger level and route events into it."""

    LOGGER.setLevel(getattr(logging, level.upper(), logging.INFO))
    target = recorder or get_event_recorder()
    target.register(logging_observer)
    return target
