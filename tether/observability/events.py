"""Event primitives and dispatcher for Tether observability."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from threading import RLock
from typing import Any, Dict, Iterator, List, Optional, Tuple

Payload = Dict[str, Any]
EventObserver = Callable[["ResolutionEvent"], None]


@dataclass(slots=True, frozen=True)
class ResolutionEvent:
    """A single event emitted by a Tether subsystem."""

    timestamp: datetime
    service: str
    name: str
    payload: Payload = field(default_factory=dict)

    @property
    def qualified_name(self) -> str:
        if not self.service:
            return self.name
        return f"{self.service}.{self.name}"


class _ObserverHub:
    """Observer list shared by a recorder and all of its scoped children."""

    __slots__ = ("observers", "lock")

    def __init__(self) -> None:
        self.observers: List[EventObserver] = []
        self.lock = RLock()

    def snapshot(self) -> Tuple[EventObserver, ...]:
        with self.lock:
            return tuple(self.observers)


def _split_service(service: Sequence[str] | str | None) -> Tuple[str, ...]:
    if service is None:
        return ()
    if isinstance(service, str):
        return tuple(part for part in service.split(".") if part)
    return tuple(part for part in service if part)


class EventRecorder:
    """Dispatches events to registered observers.

    Scoped recorders share observers with the recorder they were derived from
    and prefix every event with their service path, so registering a single
    observer on the root recorder sees events from every subsystem.
    """

    __slots__ = ("_path", "_hub")

    def __init__(
        self,
        service: Sequence[str] | str | None = None,
        *,
        parent: "EventRecorder" | None = None,
    ) -> None:
        if parent is None:
            self._hub = _ObserverHub()
            self._path: Tuple[str, ...] = _split_service(service)
        else:
            self._hub = parent._hub
            self._path = parent._path + _split_service(service)

    @property
    def service(self) -> str:
        """Return the dotted service namespace of this recorder."""

        return ".".join(self._path)

    def scoped(self, service: Sequence[str] | str) -> "EventRecorder":
        """Return a child recorder nested under ``service``."""

        return EventRecorder(service, parent=self)

    def register(self, observer: EventObserver) -> None:
        with self._hub.lock:
            if observer not in self._hub.observers:
                self._hub.observers.append(observer)

    def unregister(self, observer: EventObserver) -> None:
        with self._hub.lock:
            if observer in self._hub.observers:
                self._hub.observers.remove(observer)

    def clear_observers(self) -> None:
        with self._hub.lock:
            self._hub.observers.clear()

    @contextmanager
    def temporary_observer(self, observer: EventObserver) -> Iterator[None]:
        """Register ``observer`` for the duration of the block."""

        self.register(observer)
        try:
            yield
        finally:
            self.unregister(observer)

    def record(
        self,
        name: str,
        payload: Payload | None = None,
        *,
        service: Sequence[str] | str | None = None,
        timestamp: Optional[datetime] = None,
    ) -> ResolutionEvent:
        """Build an event under this recorder's namespace and dispatch it."""

        event = ResolutionEvent(
            timestamp=timestamp or datetime.utcnow(),
            service=".".join(self._path + _split_service(service)),
            name=name,
            payload=dict(payload or {}),
        )
        self._dispatch(event)
        return event

    def emit(self, event: ResolutionEvent) -> None:
        """Forward an already-built event, adopting this namespace if it has none."""

        if not event.service and self._path:
            event = ResolutionEvent(
                timestamp=event.timestamp,
                service=self.service,
                name=event.name,
                payload=dict(event.payload),
            )
        self._dispatch(event)

    def _dispatch(self, event: ResolutionEvent) -> None:
        for observer in self._hub.snapshot():
            try:
                observer(event)
            except Exception:
                # Observers are best-effort and must never break resolution.
                continue


_GLOBAL_RECORDER = EventRecorder()


def get_event_recorder(service: Sequence[str] | str | None = None) -> EventRecorder:
    """Return the global recorder, or a child scoped to ``service``."""

    if service is None:
        return _GLOBAL_RECORDER
    return _GLOBAL_RECORDER.scoped(service)


def set_event_recorder(recorder: EventRecorder) -> None:
    """Replace the global event recorder."""

    global _GLOBAL_RECORDER
    _GLOBAL_RECORDER = recorder


def reset_event_recorder() -> None:
    """Reset the global recorder to a clean instance."""

    set_event_recorder(EventRecorder())
