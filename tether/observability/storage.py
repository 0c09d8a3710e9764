"""SQLAlchemy audit log for resolution events.

Every recorded event becomes one row. Resolution events carry the field path
and record type in their payload; both are copied into indexed columns so the
log can answer "what happened to ``items[2].product_id``" without scanning
JSON.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, create_engine, func, or_, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from tether.observability.events import EventObserver, EventRecorder, ResolutionEvent


class Base(DeclarativeBase):
    """Declarative base for observability tables."""


class EventRow(Base):
    __tablename__ = "resolution_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), index=True)
    service: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String, index=True)
    record_type: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    field_path: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)


def _payload_text(payload: Any, key: str) -> str | None:
    value = payload.get(key) if isinstance(payload, dict) else None
    return str(value) if value is not None else None


class EventLogStore:
    """Audit trail of resolution events backed by any SQLAlchemy URL."""

    def __init__(self, database_url: str) -> None:
        self._engine = create_engine(database_url, future=True)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False)
        Base.metadata.create_all(self._engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def persist_events(self, events: Sequence[ResolutionEvent]) -> None:
        if not events:
            return
        rows = [self._to_row(event) for event in events]
        with self.session() as session:
            session.add_all(rows)

    def fetch_events(
        self,
        *,
        service: str | None = None,
        name: str | None = None,
        record_type: str | None = None,
        field_path: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[ResolutionEvent]:
        """Return stored events in timestamp order, optionally filtered.

        ``field_path`` also matches the entries nested under it, so
        ``"items"`` returns ``items[0].product_id`` and ``"customer_id"``
        returns ``customer_id.category_id``.
        """

        stmt = select(EventRow).order_by(EventRow.timestamp.asc(), EventRow.id.asc())
        if service:
            stmt = stmt.where(EventRow.service == service)
        if name:
            stmt = stmt.where(EventRow.name == name)
        if record_type:
            stmt = stmt.where(EventRow.record_type == record_type)
        if field_path:
            stmt = stmt.where(
                or_(
                    EventRow.field_path == field_path,
                    EventRow.field_path.startswith(f"{field_path}.", autoescape=True),
                    EventRow.field_path.startswith(f"{field_path}[", autoescape=True),
                )
            )
        if since:
            stmt = stmt.where(EventRow.timestamp >= since)
        if until:
            stmt = stmt.where(EventRow.timestamp <= until)
        if limit:
            stmt = stmt.limit(limit)

        with self.session() as session:
            rows = session.execute(stmt).scalars().all()
        return [self._from_row(row) for row in rows]

    def decision_counts(self, *, record_type: str | None = None) -> dict[str, int]:
        """Count ``field.*`` events by decision kind (``reused``, ``created`` ...)."""

        stmt = (
            select(EventRow.name, func.count(EventRow.id))
            .where(EventRow.name.startswith("field."))
            .group_by(EventRow.name)
        )
        if record_type:
            stmt = stmt.where(EventRow.record_type == record_type)
        with self.session() as session:
            counts = session.execute(stmt).all()
        return {event_name.removeprefix("field."): count for event_name, count in counts}

    def replay_to(self, recorder: EventRecorder, *, service: str | None = None) -> None:
        for event in self.fetch_events(service=service):
            recorder.emit(event)

    def create_persistent_observer(self) -> EventObserver:
        """Return an observer that writes each event as it is recorded."""

        def _observer(event: ResolutionEvent) -> None:
            self.persist_events([event])

        return _observer

    def close(self) -> None:
        self._engine.dispose()

    @staticmethod
    def _to_row(event: ResolutionEvent) -> EventRow:
        payload = dict(event.payload)
        return EventRow(
            timestamp=event.timestamp,
            service=event.service,
            name=event.name,
            record_type=_payload_text(payload, "record_type"),
            field_path=_payload_text(payload, "field_path"),
            payload=payload,
        )

    @staticmethod
    def _from_row(row: EventRow) -> ResolutionEvent:
        return ResolutionEvent(
            timestamp=row.timestamp,
            service=row.service,
            name=row.name,
            payload=dict(row.payload or {}),
        )


def attach_persistent_observer(
    recorder: EventRecorder,
    store: EventLogStore,
) -> Callable[[], None]:
    """Persist every event seen by ``recorder``; returns a detach callback."""

    observer = store.create_persistent_observer()
    recorder.register(observer)

    def _remove() -> None:
        recorder.unregister(observer)

    return _remove
