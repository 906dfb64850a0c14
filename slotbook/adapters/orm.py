"""
Relational mapping of availability windows, exception days and appointments.
"""

import pendulum
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Time,
    TypeDecorator,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """
    Stores aware datetimes as naive UTC and loads them back as pendulum UTC datetimes.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Refusing to store naive datetime {value!r}")
        return pendulum.instance(value).in_timezone("UTC").naive()

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return pendulum.instance(value, tz="UTC")


class AvailabilityWindowRow(Base):
    __tablename__ = 'availability_windows'
    __table_args__ = (
        CheckConstraint('day_of_week BETWEEN 0 AND 6', name='ck_window_day_of_week'),
    )

    id = Column(Integer, primary_key=True)
    operator_id = Column(String(64), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)  # 00:00 closes at midnight


class ExceptionDayRow(Base):
    __tablename__ = 'exception_days'
    __table_args__ = (
        UniqueConstraint('operator_id', 'date', name='uq_exception_operator_date'),
    )

    id = Column(Integer, primary_key=True)
    operator_id = Column(String(64), nullable=False, index=True)
    date = Column(Date, nullable=False)
    is_available = Column(Boolean, nullable=False, server_default=text('0'))
    start_time = Column(Time)
    end_time = Column(Time)
    reason = Column(Text)


class AppointmentRow(Base):
    __tablename__ = 'appointments'
    __table_args__ = (
        CheckConstraint('start_time < end_time', name='ck_appointment_order'),
        Index('ix_appointments_operator_start', 'operator_id', 'start_time'),
        # Backstop for racing inserts of the same slot
        Index(
            'uq_appointments_active_slot',
            'operator_id',
            'start_time',
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    client_id = Column(String(64), nullable=False, index=True)
    operator_id = Column(String(64), nullable=False)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    status = Column(String(16), nullable=False, server_default=text("'pending'"))
    notes = Column(Text, nullable=False, server_default=text("''"))
    created_at = Column(UTCDateTime, nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
