"""
SQLAlchemy implementation of the scheduling store.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from typing import Callable, Iterator, List, Optional

import pendulum
from pendulum import DateTime
from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..domain.exceptions import (
    AppointmentNotFound,
    ExceptionNotFound,
    SlotUnavailable,
    TransientStorageError,
    WindowNotFound,
)
from ..domain.models import Appointment, AppointmentStatus, AvailabilityWindow, ExceptionDay
from .database import create_session_factory
from .orm import AppointmentRow, AvailabilityWindowRow, ExceptionDayRow

logger = logging.getLogger(__name__)


def _window_from_row(row: AvailabilityWindowRow) -> AvailabilityWindow:
    return AvailabilityWindow(
        id=row.id,
        operator_id=row.operator_id,
        day_of_week=row.day_of_week,
        start_time=row.start_time,
        end_time=row.end_time,
    )


def _exception_from_row(row: ExceptionDayRow) -> ExceptionDay:
    return ExceptionDay(
        id=row.id,
        operator_id=row.operator_id,
        date=row.date,
        is_available=bool(row.is_available),
        start_time=row.start_time,
        end_time=row.end_time,
        reason=row.reason,
    )


def _appointment_from_row(row: AppointmentRow) -> Appointment:
    return Appointment(
        id=row.id,
        client_id=row.client_id,
        operator_id=row.operator_id,
        start_time=row.start_time,
        end_time=row.end_time,
        status=AppointmentStatus(row.status),
        notes=row.notes or "",
        created_at=row.created_at,
    )


class SqlBookingUnit:
    """Reads and writes that share the booking transaction."""

    def __init__(self, session: Session, operator_id: str):
        self._session = session
        self.operator_id = operator_id

    def active_appointments(self, start: DateTime, end: DateTime) -> List[Appointment]:
        """Current active appointments of the operator overlapping ``[start, end)``."""
        return _query_active(self._session, self.operator_id, start, end)

    def insert(self, appointment: Appointment) -> Appointment:
        row = AppointmentRow(
            client_id=appointment.client_id,
            operator_id=appointment.operator_id,
            start_time=appointment.start_time,
            end_time=appointment.end_time,
            status=appointment.status.value,
            notes=appointment.notes or "",
            created_at=appointment.created_at or pendulum.now("UTC"),
        )
        self._session.add(row)
        self._session.flush()
        return _appointment_from_row(row)


def _query_active(session: Session, operator_id: str, start: DateTime, end: DateTime) -> List[Appointment]:
    stmt = (
        select(AppointmentRow)
        .where(
            AppointmentRow.operator_id == operator_id,
            AppointmentRow.status != AppointmentStatus.CANCELLED.value,
            AppointmentRow.start_time < end,
            AppointmentRow.end_time > start,
        )
        .order_by(AppointmentRow.start_time)
    )
    return [_appointment_from_row(row) for row in session.scalars(stmt)]


class SqlSchedulingStore:
    """
    Transactional persistence for availability and appointments.

    Database errors are translated into domain errors:
    - IntegrityError while booking -> SlotUnavailable
    - lock, serialization and stale-version failures -> TransientStorageError
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = create_session_factory(engine)

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        except (OperationalError, StaleDataError) as exc:
            logger.warning("Transient storage failure: %s", exc)
            raise TransientStorageError(str(exc)) from exc
        finally:
            session.close()

    # ── Availability windows ────────────────────────────────────────────

    def list_windows(self, operator_id: str) -> List[AvailabilityWindow]:
        with self._transaction() as session:
            stmt = (
                select(AvailabilityWindowRow)
                .where(AvailabilityWindowRow.operator_id == operator_id)
                .order_by(AvailabilityWindowRow.day_of_week, AvailabilityWindowRow.start_time)
            )
            return [_window_from_row(row) for row in session.scalars(stmt)]

    def add_window(self, window: AvailabilityWindow) -> AvailabilityWindow:
        with self._transaction() as session:
            row = AvailabilityWindowRow(
                operator_id=window.operator_id,
                day_of_week=window.day_of_week,
                start_time=window.start_time,
                end_time=window.end_time,
            )
            session.add(row)
            session.flush()
            return _window_from_row(row)

    def update_window(self, window: AvailabilityWindow) -> AvailabilityWindow:
        with self._transaction() as session:
            row = self._get_window_row(session, window.operator_id, window.id)
            row.day_of_week = window.day_of_week
            row.start_time = window.start_time
            row.end_time = window.end_time
            session.flush()
            return _window_from_row(row)

    def delete_window(self, operator_id: str, window_id: int) -> None:
        with self._transaction() as session:
            session.delete(self._get_window_row(session, operator_id, window_id))

    @staticmethod
    def _get_window_row(session: Session, operator_id: str, window_id: Optional[int]) -> AvailabilityWindowRow:
        row = session.get(AvailabilityWindowRow, window_id) if window_id is not None else None
        if row is None or row.operator_id != operator_id:
            raise WindowNotFound(f"No availability window {window_id} for operator {operator_id}")
        return row

    # ── Exception days ──────────────────────────────────────────────────

    def list_exceptions(
        self,
        operator_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[ExceptionDay]:
        """Exceptions of the operator, optionally limited to ``start <= date <= end``."""
        with self._transaction() as session:
            stmt = select(ExceptionDayRow).where(ExceptionDayRow.operator_id == operator_id)
            if start is not None:
                stmt = stmt.where(ExceptionDayRow.date >= start)
            if end is not None:
                stmt = stmt.where(ExceptionDayRow.date <= end)
            stmt = stmt.order_by(ExceptionDayRow.date)
            return [_exception_from_row(row) for row in session.scalars(stmt)]

    def get_exception(self, operator_id: str, on: date) -> Optional[ExceptionDay]:
        with self._transaction() as session:
            row = self._find_exception_row(session, operator_id, on)
            return _exception_from_row(row) if row else None

    def save_exception(self, exception: ExceptionDay) -> ExceptionDay:
        """Insert the exception or replace the one already recorded for that date."""
        try:
            with self._transaction() as session:
                row = self._find_exception_row(session, exception.operator_id, exception.date)
                if row is None:
                    row = ExceptionDayRow(operator_id=exception.operator_id, date=exception.date)
                    session.add(row)
                row.is_available = exception.is_available
                row.start_time = exception.start_time
                row.end_time = exception.end_time
                row.reason = exception.reason
                session.flush()
                return _exception_from_row(row)
        except IntegrityError as exc:
            raise TransientStorageError(
                f"Concurrent write of exception {exception.operator_id}/{exception.date}"
            ) from exc

    def delete_exception(self, operator_id: str, on: date) -> None:
        with self._transaction() as session:
            row = self._find_exception_row(session, operator_id, on)
            if row is None:
                raise ExceptionNotFound(f"No exception for operator {operator_id} on {on}")
            session.delete(row)

    @staticmethod
    def _find_exception_row(session: Session, operator_id: str, on: date) -> Optional[ExceptionDayRow]:
        stmt = select(ExceptionDayRow).where(
            ExceptionDayRow.operator_id == operator_id,
            ExceptionDayRow.date == on,
        )
        return session.scalars(stmt).first()

    # ── Appointments ────────────────────────────────────────────────────

    def get_appointment(self, appointment_id: int) -> Appointment:
        with self._transaction() as session:
            row = session.get(AppointmentRow, appointment_id)
            if row is None:
                raise AppointmentNotFound(f"Appointment {appointment_id} does not exist")
            return _appointment_from_row(row)

    def list_appointments(
        self,
        operator_id: Optional[str] = None,
        client_id: Optional[str] = None,
        start: Optional[DateTime] = None,
        end: Optional[DateTime] = None,
        status: Optional[AppointmentStatus] = None,
        active_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[Appointment]:
        """Appointments starting in ``[start, end)`` matching the filters, by start time."""
        stmt = select(AppointmentRow)
        if operator_id is not None:
            stmt = stmt.where(AppointmentRow.operator_id == operator_id)
        if client_id is not None:
            stmt = stmt.where(AppointmentRow.client_id == client_id)
        if start is not None:
            stmt = stmt.where(AppointmentRow.start_time >= start)
        if end is not None:
            stmt = stmt.where(AppointmentRow.start_time < end)
        if status is not None:
            stmt = stmt.where(AppointmentRow.status == AppointmentStatus(status).value)
        if active_only:
            stmt = stmt.where(AppointmentRow.status != AppointmentStatus.CANCELLED.value)
        stmt = stmt.order_by(AppointmentRow.start_time, AppointmentRow.id)
        if limit is not None:
            stmt = stmt.limit(limit)

        with self._transaction() as session:
            return [_appointment_from_row(row) for row in session.scalars(stmt)]

    def active_appointments(self, operator_id: str, start: DateTime, end: DateTime) -> List[Appointment]:
        """Snapshot of the operator's active appointments overlapping ``[start, end)``."""
        with self._transaction() as session:
            return _query_active(session, operator_id, start, end)

    @contextmanager
    def booking_transaction(self, operator_id: str) -> Iterator[SqlBookingUnit]:
        """
        Open the transaction in which a booking is re-checked and inserted.

        SQLite engines already hold the write lock (BEGIN IMMEDIATE); other
        databases run the transaction at SERIALIZABLE isolation. The partial
        unique index on active slots turns a lost race into SlotUnavailable.
        """
        try:
            with self._transaction() as session:
                if self.engine.dialect.name != "sqlite":
                    session.connection(execution_options={"isolation_level": "SERIALIZABLE"})
                yield SqlBookingUnit(session, operator_id)
        except IntegrityError as exc:
            logger.info("Insert rejected by database for operator %s: %s", operator_id, exc.orig)
            raise SlotUnavailable("The requested slot was booked concurrently") from exc

    def update_appointment(
        self,
        appointment_id: int,
        mutate: Callable[[Appointment], Appointment],
    ) -> Appointment:
        """
        Load an appointment, let ``mutate`` change it and persist its status.

        The write is guarded by the row version; a concurrent change raises
        TransientStorageError.
        """
        with self._transaction() as session:
            row = session.get(AppointmentRow, appointment_id)
            if row is None:
                raise AppointmentNotFound(f"Appointment {appointment_id} does not exist")

            appointment = mutate(_appointment_from_row(row))
            row.status = appointment.status.value
            session.flush()
            return _appointment_from_row(row)
