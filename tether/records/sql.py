"""SQLAlchemy-backed record store."""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, ForeignKey, Integer, String, case, create_engine, delete, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from tether.errors import RecordStoreUnavailable, UnknownRecordType
from tether.records.base import (
    RecordStore,
    StoredRecord,
    _record_store_event,
    matches_filters,
    normalize_text,
)


class Base(DeclarativeBase):
    """Declarative base for record store tables."""


class RecordTypeRow(Base):
    __tablename__ = "record_types"

    name: Mapped[str] = mapped_column(String, primary_key=True)


class RecordRow(Base):
    __tablename__ = "records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    record_type: Mapped[str] = mapped_column(
        String, ForeignKey("record_types.name"), index=True
    )
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)


class RecordFieldRow(Base):
    """Normalized copy of each scalar field, used for text search."""

    __tablename__ = "record_fields"

    record_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("records.id", ondelete="CASCADE"), primary_key=True
    )
    field: Mapped[str] = mapped_column(String, primary_key=True)
    record_type: Mapped[str] = mapped_column(String, index=True)
    value: Mapped[str] = mapped_column(String, index=True)


class RecordKeyRow(Base):
    """Uniqueness claim taken by conflict-checked inserts."""

    __tablename__ = "record_keys"

    record_type: Mapped[str] = mapped_column(String, primary_key=True)
    field: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(String, primary_key=True)
    scope: Mapped[str] = mapped_column(String, primary_key=True, default="")
    record_id: Mapped[int] = mapped_column(Integer, ForeignKey("records.id"))


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _scope_key(scope: Mapping[str, Any] | None) -> str:
    """Canonical text form of a uniqueness scope; empty when unscoped."""
    if not scope:
        return ""
    return json.dumps(_jsonable(dict(scope)), sort_keys=True, default=str)


def _field_rows(record_id: int, record_type: str, data: Mapping[str, Any]) -> list[RecordFieldRow]:
    rows = []
    for key, value in data.items():
        if isinstance(value, (str, int, float, bool)):
            rows.append(
                RecordFieldRow(
                    record_id=record_id,
                    field=key,
                    record_type=record_type,
                    value=normalize_text(value),
                )
            )
    return rows


class SQLRecordStore(RecordStore):
    """
    RecordStore over any SQLAlchemy URL.

    Records are stored as JSON documents. A side table of normalized scalar
    values serves case-insensitive search, and a key table with a composite
    primary key on ``(record_type, field, value, scope)`` makes ``create_if_absent``
    safe across processes: the losing writer hits an ``IntegrityError`` and
    reads back the winner's id.
    """

    def __init__(self, database_url: str, record_types: Iterable[str] = ()) -> None:
        engine_kwargs: dict[str, Any] = {"future": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool
        self._database_url = database_url
        self._engine = create_engine(database_url, **engine_kwargs)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False)
        try:
            Base.metadata.create_all(self._engine)
        except OperationalError as exc:
            raise RecordStoreUnavailable(str(exc)) from exc
        for record_type in record_types:
            self.add_record_type(record_type)

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except OperationalError as exc:
            session.rollback()
            _record_store_event(
                "sql.unavailable",
                {"database_url": self._database_url, "error": str(exc)},
            )
            raise RecordStoreUnavailable(str(exc)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def add_record_type(self, record_type: str) -> None:
        with self.session() as session:
            if session.get(RecordTypeRow, record_type) is None:
                session.add(RecordTypeRow(name=record_type))

    def record_types(self) -> list[str]:
        with self.session() as session:
            return sorted(session.execute(select(RecordTypeRow.name)).scalars().all())

    def _require_type(self, session: Session, record_type: str) -> None:
        if session.get(RecordTypeRow, record_type) is None:
            raise UnknownRecordType(record_type)

    def search(
        self,
        record_type: str,
        field: str,
        value: str,
        *,
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[StoredRecord]:
        needle = normalize_text(value)
        stmt = (
            select(RecordRow)
            .join(RecordFieldRow, RecordFieldRow.record_id == RecordRow.id)
            .where(RecordFieldRow.record_type == record_type)
            .where(RecordFieldRow.field == field)
            .where(RecordFieldRow.value.contains(needle, autoescape=True))
            .order_by(case((RecordFieldRow.value == needle, 0), else_=1), RecordRow.id.asc())
        )
        with self.session() as session:
            self._require_type(session, record_type)
            rows = session.execute(stmt).scalars().all()
            results = []
            for row in rows:
                data = dict(row.data or {})
                if not matches_filters(data, filters):
                    continue
                results.append(StoredRecord(row.id, record_type, data))
                if limit and len(results) >= limit:
                    break
        return results

    def get(self, record_type: str, record_id: Any) -> StoredRecord | None:
        with self.session() as session:
            self._require_type(session, record_type)
            row = session.get(RecordRow, record_id)
            if row is None or row.record_type != record_type:
                return None
            return StoredRecord(row.id, record_type, dict(row.data or {}))

    def _insert(self, session: Session, record_type: str, data: Mapping[str, Any]) -> RecordRow:
        row = RecordRow(record_type=record_type, data=_jsonable(data))
        session.add(row)
        session.flush()
        session.add_all(_field_rows(row.id, record_type, row.data))
        return row

    def create(self, record_type: str, data: Mapping[str, Any]) -> Any:
        with self.session() as session:
            self._require_type(session, record_type)
            row = self._insert(session, record_type, data)
            record_id = row.id
        _record_store_event(
            "sql.create.complete",
            {"record_type": record_type, "record_id": record_id},
        )
        return record_id

    def _existing_id(
        self,
        session: Session,
        record_type: str,
        unique_field: str,
        key: str,
        scope: Mapping[str, Any] | None,
    ) -> int | None:
        claimed = session.get(RecordKeyRow, (record_type, unique_field, key, _scope_key(scope)))
        if claimed is not None:
            return claimed.record_id
        stmt = (
            select(RecordRow)
            .join(RecordFieldRow, RecordFieldRow.record_id == RecordRow.id)
            .where(RecordFieldRow.record_type == record_type)
            .where(RecordFieldRow.field == unique_field)
            .where(RecordFieldRow.value == key)
            .order_by(RecordRow.id.asc())
        )
        wanted = _jsonable(dict(scope)) if scope else None
        for row in session.execute(stmt).scalars():
            if matches_filters(row.data or {}, wanted):
                return row.id
        return None

    def create_if_absent(
        self,
        record_type: str,
        unique_field: str,
        data: Mapping[str, Any],
        *,
        scope: Mapping[str, Any] | None = None,
    ) -> tuple[Any, bool]:
        key = normalize_text(data.get(unique_field, ""))
        try:
            with self.session() as session:
                self._require_type(session, record_type)
                existing = self._existing_id(session, record_type, unique_field, key, scope)
                if existing is None:
                    row = self._insert(session, record_type, data)
                    session.add(
                        RecordKeyRow(
                            record_type=record_type,
                            field=unique_field,
                            value=key,
                            scope=_scope_key(scope),
                            record_id=row.id,
                        )
                    )
                    session.flush()
                    record_id = row.id
        except IntegrityError:
            with self.session() as session:
                existing = self._existing_id(session, record_type, unique_field, key, scope)
            if existing is None:
                raise

        if existing is not None:
            _record_store_event(
                "sql.create.conflict",
                {
                    "record_type": record_type,
                    "unique_field": unique_field,
                    "existing_id": existing,
                },
            )
            return existing, False

        _record_store_event(
            "sql.create.complete",
            {"record_type": record_type, "record_id": record_id},
        )
        return record_id, True

    def update(
        self,
        record_type: str,
        record_id: Any,
        updates: Mapping[str, Any],
        *,
        remove: Sequence[str] = (),
    ) -> bool:
        with self.session() as session:
            self._require_type(session, record_type)
            row = session.get(RecordRow, record_id)
            if row is None or row.record_type != record_type:
                return False
            data = dict(row.data or {})
            for name in remove:
                data.pop(name, None)
            data.update(_jsonable(dict(updates)))
            row.data = data
            session.execute(delete(RecordFieldRow).where(RecordFieldRow.record_id == row.id))
            session.add_all(_field_rows(row.id, record_type, data))
        _record_store_event(
            "sql.update.complete",
            {"record_type": record_type, "record_id": record_id, "fields": sorted(updates)},
        )
        return True

    def count(self, record_type: str) -> int:
        with self.session() as session:
            self._require_type(session, record_type)
            rows = session.execute(
                select(RecordRow.id).where(RecordRow.record_type == record_type)
            ).scalars().all()
        return len(rows)

    def close(self) -> None:
        self._engine.dispose()
