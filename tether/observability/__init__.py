"""Observability primitives for Tether."""

from tether.observability.events import (
    EventObserver,
    EventRecorder,
    ResolutionEvent,
    get_event_recorder,
    reset_event_recorder,
    set_event_recorder,
)
from tether.observability.logging import configure_logging, logging_observer
from tether.observability.storage import (
    EventLogStore,
    attach_persistent_observer,
)

__all__ = [
    "EventLogStore",
    "EventObserver",
    "EventRecorder",
    "ResolutionEvent",
    "attach_persistent_observer",
    "configure_logging",
    "get_event_recorder",
    "logging_observer",
    "reset_event_recorder",
    "set_event_recorder",
]
