"""
store.py

Purpose:
  Relational persistence for elements, connections, line paths and events,
  on SQLModel/SQLAlchemy. This is the system of record; services above it
  enforce topology and lifecycle rules.

Guarantees:
  - Writes that must be atomic (connection upsert, point list + length,
    conditional event transitions) run inside a single transaction and roll
    back entirely on failure.
  - Driver-level failures (timeouts, lost connections) surface as
    `TransientStoreError`. Idempotent reads are retried with backoff first.
"""
from __future__ import annotations

import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy import delete, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlmodel import Session, select

from gridmon import errors
from gridmon.models.db import ConnectionRecord, EventRecord, GridElementRecord, LinePointRecord
from gridmon.models.domain import (
    Connection,
    ElementType,
    Event,
    EventStatus,
    GridElement,
    LinePathPoint,
    Lifecycle,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_transient(exc: DBAPIError) -> bool:
    # Timeouts and lost connections; not constraint or SQL errors
    return isinstance(exc, OperationalError) or bool(exc.connection_invalidated)


def _pair(a: str, b: str) -> Tuple[str, str]:
    return (a, b) if a <= b else (b, a)


def _element(rec: GridElementRecord) -> GridElement:
    return GridElement(
        id=rec.id,
        element_type=rec.element_type,
        name=rec.name,
        description=rec.description,
        status=rec.status,
        latitude=rec.latitude,
        longitude=rec.longitude,
        properties=dict(rec.properties or {}),
        lifecycle=rec.lifecycle,
        created_at=rec.created_at,
        updated_at=rec.updated_at,
        deleted_at=rec.deleted_at,
    )


def _connection(rec: ConnectionRecord) -> Connection:
    return Connection(
        id=rec.id,
        from_element_id=rec.from_element_id,
        to_element_id=rec.to_element_id,
        connection_type=rec.connection_type,
        is_connected=rec.is_connected,
        created_at=rec.created_at,
        updated_at=rec.updated_at,
    )


def _point(rec: LinePointRecord) -> LinePathPoint:
    return LinePathPoint(
        sequence_order=rec.sequence_order,
        latitude=rec.latitude,
        longitude=rec.longitude,
        elevation=rec.elevation,
        point_type=rec.point_type,
        description=rec.description,
    )


def _event(rec: EventRecord) -> Event:
    return Event(
        id=rec.id,
        element_id=rec.element_id,
        event_type=rec.event_type,
        severity=rec.severity,
        category=rec.category,
        description=rec.description,
        parameters=dict(rec.parameters or {}),
        status=rec.status,
        created_at=rec.created_at,
        acknowledged_at=rec.acknowledged_at,
        acknowledged_by=rec.acknowledged_by,
        resolved_at=rec.resolved_at,
        resolved_by=rec.resolved_by,
    )


class GridStore:
    def __init__(self, engine: Engine, retry_attempts: int = 3, retry_backoff_s: float = 0.05):
        self.engine = engine
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_backoff_s = retry_backoff_s

    # -----------------------------
    # Session helpers
    # -----------------------------
    def _read(self, fn: Callable[[Session], T]) -> T:
        last: Optional[Exception] = None
        for attempt in range(self.retry_attempts):
            try:
                with Session(self.engine) as session:
                    return fn(session)
            except DBAPIError as exc:
                if not _is_transient(exc):
                    raise
                last = exc
                logger.warning("Store read failed (attempt %d/%d): %s", attempt + 1, self.retry_attempts, exc)
                if attempt + 1 < self.retry_attempts:
                    time.sleep(self.retry_backoff_s * (2 ** attempt))
        raise errors.TransientStoreError("Store unavailable, retry later") from last

    @contextmanager
    def _write(self) -> Iterator[Session]:
        with Session(self.engine) as session:
            try:
                yield session
                session.commit()
            except IntegrityError:
                session.rollback()
                raise
            except DBAPIError as exc:
                session.rollback()
                if not _is_transient(exc):
                    raise
                logger.error("Store write failed: %s", exc)
                raise errors.TransientStoreError("Store unavailable, retry later") from exc
            except Exception:
                session.rollback()
                raise

    # -----------------------------
    # Elements
    # -----------------------------
    def insert_element(
        self,
        element_type: ElementType,
        name: str,
        properties: Dict[str, Any],
        status: str = "active",
        description: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        path: Optional[Sequence[LinePathPoint]] = None,
    ) -> GridElement:
        with self._write() as session:
            dup = session.exec(
                select(GridElementRecord.id).where(
                    GridElementRecord.name == name,
                    GridElementRecord.lifecycle == Lifecycle.LIVE.value,
                )
            ).first()
            if dup is not None:
                raise errors.Conflict(f"Element with name '{name}' already exists")

            now = utcnow()
            rec = GridElementRecord(
                id=str(uuid.uuid4()),
                element_type=ElementType(element_type).value,
                name=name,
                description=description,
                latitude=latitude,
                longitude=longitude,
                status=status,
                properties=dict(properties),
                created_at=now,
                updated_at=now,
            )
            session.add(rec)
            for p in path or ():
                session.add(self._point_record(rec.id, p))
            session.flush()
            session.refresh(rec)
            return _element(rec)

    def get_element(self, element_id: str, include_deleted: bool = False) -> Optional[GridElement]:
        def fn(session: Session) -> Optional[GridElement]:
            rec = session.get(GridElementRecord, element_id)
            if rec is None:
                return None
            if not include_deleted and rec.lifecycle != Lifecycle.LIVE.value:
                return None
            return _element(rec)

        return self._read(fn)

    def get_elements(self, element_ids: Sequence[str], include_deleted: bool = False) -> Dict[str, GridElement]:
        def fn(session: Session) -> Dict[str, GridElement]:
            stmt = select(GridElementRecord).where(GridElementRecord.id.in_(list(element_ids)))
            if not include_deleted:
                stmt = stmt.where(GridElementRecord.lifecycle == Lifecycle.LIVE.value)
            return {r.id: _element(r) for r in session.exec(stmt).all()}

        return self._read(fn)

    def list_elements(
        self,
        element_type: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[GridElement]:
        def fn(session: Session) -> List[GridElement]:
            stmt = select(GridElementRecord).where(GridElementRecord.lifecycle == Lifecycle.LIVE.value)
            if element_type:
                stmt = stmt.where(GridElementRecord.element_type == element_type)
            if status:
                stmt = stmt.where(GridElementRecord.status == status)
            if search:
                stmt = stmt.where(GridElementRecord.name.contains(search))
            stmt = stmt.order_by(GridElementRecord.created_at, GridElementRecord.name)
            return [_element(r) for r in session.exec(stmt).all()]

        return self._read(fn)

    def update_element(self, element_id: str, changes: Dict[str, Any]) -> Optional[GridElement]:
        with self._write() as session:
            rec = session.get(GridElementRecord, element_id)
            if rec is None or rec.lifecycle != Lifecycle.LIVE.value:
                return None
            new_name = changes.get("name")
            if new_name and new_name != rec.name:
                dup = session.exec(
                    select(GridElementRecord.id).where(
                        GridElementRecord.name == new_name,
                        GridElementRecord.lifecycle == Lifecycle.LIVE.value,
                        GridElementRecord.id != element_id,
                    )
                ).first()
                if dup is not None:
                    raise errors.Conflict(f"Element with name '{new_name}' already exists")
            for key, value in changes.items():
                if key == "properties":
                    value = dict(value)
                setattr(rec, key, value)
            rec.updated_at = utcnow()
            session.add(rec)
            session.flush()
            session.refresh(rec)
            return _element(rec)

    def soft_delete_element(self, element_id: str) -> bool:
        with self._write() as session:
            result = session.connection().execute(
                update(GridElementRecord)
                .where(
                    GridElementRecord.id == element_id,
                    GridElementRecord.lifecycle == Lifecycle.LIVE.value,
                )
                .values(lifecycle=Lifecycle.DELETED.value, deleted_at=utcnow(), updated_at=utcnow())
            )
            return result.rowcount == 1

    # -----------------------------
    # Connections
    # -----------------------------
    def upsert_connection(
        self,
        from_id: str,
        to_id: str,
        connection_type: str = "electrical",
        is_connected: bool = True,
    ) -> Tuple[Connection, bool]:
        """
        Update-or-insert keyed by the unordered endpoint pair. If a concurrent
        writer inserts the same pair first, the unique constraint rejects our
        insert and we retry as an update.
        """
        low, high = _pair(from_id, to_id)
        for _ in range(2):
            try:
                with self._write() as session:
                    rec = session.exec(
                        select(ConnectionRecord).where(
                            ConnectionRecord.pair_low == low,
                            ConnectionRecord.pair_high == high,
                        )
                    ).first()
                    created = rec is None
                    now = utcnow()
                    if rec is None:
                        rec = ConnectionRecord(
                            id=str(uuid.uuid4()),
                            from_element_id=from_id,
                            to_element_id=to_id,
                            pair_low=low,
                            pair_high=high,
                            connection_type=connection_type,
                            is_connected=is_connected,
                            created_at=now,
                            updated_at=now,
                        )
                    else:
                        rec.connection_type = connection_type
                        rec.is_connected = is_connected
                        rec.updated_at = now
                    session.add(rec)
                    session.flush()
                    session.refresh(rec)
                    return _connection(rec), created
            except IntegrityError:
                logger.info("Connection %s<->%s inserted concurrently, retrying as update", low, high)
        raise errors.TransientStoreError("Connection upsert contended, retry later")

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        def fn(session: Session) -> Optional[Connection]:
            rec = session.get(ConnectionRecord, connection_id)
            return _connection(rec) if rec is not None else None

        return self._read(fn)

    def set_connected(self, connection_id: str, is_connected: bool) -> Optional[Connection]:
        with self._write() as session:
            rec = session.get(ConnectionRecord, connection_id)
            if rec is None:
                return None
            rec.is_connected = is_connected
            rec.updated_at = utcnow()
            session.add(rec)
            session.flush()
            session.refresh(rec)
            return _connection(rec)

    def list_connections(self, include_disconnected: bool = False) -> List[Connection]:
        def fn(session: Session) -> List[Connection]:
            stmt = select(ConnectionRecord)
            if not include_disconnected:
                stmt = stmt.where(ConnectionRecord.is_connected == True)  # noqa: E712
            stmt = stmt.order_by(ConnectionRecord.created_at, ConnectionRecord.id)
            return [_connection(r) for r in session.exec(stmt).all()]

        return self._read(fn)

    def connections_for(self, element_id: str) -> List[Connection]:
        def fn(session: Session) -> List[Connection]:
            stmt = select(ConnectionRecord).where(
                (ConnectionRecord.from_element_id == element_id) | (ConnectionRecord.to_element_id == element_id)
            )
            return [_connection(r) for r in session.exec(stmt).all()]

        return self._read(fn)

    # -----------------------------
    # Line paths
    # -----------------------------
    @staticmethod
    def _point_record(line_id: str, p: LinePathPoint) -> LinePointRecord:
        return LinePointRecord(
            line_id=line_id,
            sequence_order=p.sequence_order,
            latitude=p.latitude,
            longitude=p.longitude,
            elevation=p.elevation,
            point_type=p.point_type.value,
            description=p.description,
        )

    def get_line_points(self, line_id: str) -> List[LinePathPoint]:
        def fn(session: Session) -> List[LinePathPoint]:
            stmt = (
                select(LinePointRecord)
                .where(LinePointRecord.line_id == line_id)
                .order_by(LinePointRecord.sequence_order)
            )
            return [_point(r) for r in session.exec(stmt).all()]

        return self._read(fn)

    def replace_line_points(self, line_id: str, points: Sequence[LinePathPoint], length_km: float) -> List[LinePathPoint]:
        """
        Replaces the full point list and rewrites the line length as one unit.
        """
        with self._write() as session:
            rec = session.get(GridElementRecord, line_id)
            if rec is None or rec.lifecycle != Lifecycle.LIVE.value:
                raise errors.NotFound("Transmission line")
            if rec.element_type != ElementType.LINE.value:
                raise errors.ValidationError.field("id", f"Element {line_id} is a {rec.element_type}, not a line")

            session.connection().execute(delete(LinePointRecord).where(LinePointRecord.line_id == line_id))
            for p in points:
                session.add(self._point_record(line_id, p))

            props = dict(rec.properties or {})
            props["length"] = length_km
            rec.properties = props
            rec.updated_at = utcnow()
            session.add(rec)
            return list(points)

    # -----------------------------
    # Events
    # -----------------------------
    def insert_event(self, event: Event) -> Event:
        with self._write() as session:
            rec = EventRecord(
                id=event.id,
                element_id=event.element_id,
                event_type=event.event_type,
                severity=event.severity.value,
                category=event.category,
                description=event.description,
                parameters=dict(event.parameters),
                status=event.status.value,
                created_at=event.created_at,
            )
            session.add(rec)
            session.flush()
            session.refresh(rec)
            return _event(rec)

    def get_event(self, event_id: str) -> Optional[Event]:
        def fn(session: Session) -> Optional[Event]:
            rec = session.get(EventRecord, event_id)
            return _event(rec) if rec is not None else None

        return self._read(fn)

    def list_events(
        self,
        statuses: Optional[Sequence[str]] = None,
        severity: Optional[str] = None,
        event_type: Optional[str] = None,
        element_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[Event]:
        def fn(session: Session) -> List[Event]:
            stmt = select(EventRecord)
            if statuses:
                stmt = stmt.where(EventRecord.status.in_(list(statuses)))
            if severity:
                stmt = stmt.where(EventRecord.severity == severity)
            if event_type:
                stmt = stmt.where(EventRecord.event_type == event_type)
            if element_id:
                stmt = stmt.where(EventRecord.element_id == element_id)
            if start_date:
                stmt = stmt.where(EventRecord.created_at >= start_date)
            if end_date:
                stmt = stmt.where(EventRecord.created_at <= end_date)
            return [_event(r) for r in session.exec(stmt).all()]

        return self._read(fn)

    def compare_and_set_event(
        self,
        event_id: str,
        changes: Dict[str, Any],
        expected_statuses: Optional[Sequence[EventStatus]] = None,
        require_unacknowledged: bool = False,
        expected_severity: Optional[str] = None,
    ) -> Optional[Event]:
        """
        Conditional UPDATE: applies `changes` only if the row still matches the
        expected state. Returns the updated event, or None if the precondition
        no longer held (or the id does not resolve).
        """
        stmt = update(EventRecord).where(EventRecord.id == event_id)
        if expected_statuses is not None:
            stmt = stmt.where(EventRecord.status.in_([s.value for s in expected_statuses]))
        if require_unacknowledged:
            stmt = stmt.where(EventRecord.acknowledged_at.is_(None))
        if expected_severity is not None:
            stmt = stmt.where(EventRecord.severity == expected_severity)

        values = {k: (v.value if hasattr(v, "value") else v) for k, v in changes.items()}
        with self._write() as session:
            result = session.connection().execute(stmt.values(**values))
            if result.rowcount != 1:
                return None
            rec = session.get(EventRecord, event_id)
            session.refresh(rec)
            return _event(rec)
