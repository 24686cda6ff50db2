from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .auth_models import User
from .db import Base


class AppointmentStatus(enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# statuses counted as "waiting" on the dashboard
WAITING_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)


def _status_enum() -> Enum:
    # persist the lowercase values, not the member names
    return Enum(
        AppointmentStatus,
        name="appointment_status",
        values_callable=lambda e: [m.value for m in e],
        validate_strings=True,
    )


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str | None] = mapped_column(String(120), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    appointments: Mapped[list["Appointment"]] = relationship(back_populates="patient")

    def __repr__(self) -> str:
        return f"Patient({self.id}, {self.name})"


class Dentist(Base):
    __tablename__ = "dentists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    # CRO registration number
    license_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    specialty: Mapped[str | None] = mapped_column(String(120), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    email: Mapped[str | None] = mapped_column(String(120), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    appointments: Mapped[list["Appointment"]] = relationship(back_populates="dentist")

    def __repr__(self) -> str:
        return f"Dentist({self.id}, {self.name}, {self.license_number})"


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # conflict checks scan one dentist's calendar
        Index("ix_appointments_dentist_start", "dentist_id", "start_time"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), nullable=False)
    dentist_id: Mapped[int] = mapped_column(ForeignKey("dentists.id"), nullable=False)

    # half-open interval [start_time, end_time)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    status: Mapped[AppointmentStatus] = mapped_column(
        _status_enum(), default=AppointmentStatus.SCHEDULED, nullable=False
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    patient: Mapped["Patient"] = relationship(back_populates="appointments")
    dentist: Mapped["Dentist"] = relationship(back_populates="appointments")
    logs: Mapped[list["StatusLog"]] = relationship(
        back_populates="appointment", order_by="StatusLog.id"
    )

    def __repr__(self) -> str:
        return f"Appointment({self.id}, dentist={self.dentist_id}, {self.start_time:%Y-%m-%d %H:%M}, {self.status.value})"


class StatusLog(Base):
    """Append-only: one row per status transition, creation included."""
    __tablename__ = "status_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    appointment_id: Mapped[int] = mapped_column(ForeignKey("appointments.id"), nullable=False, index=True)
    status: Mapped[AppointmentStatus] = mapped_column(_status_enum(), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    appointment: Mapped["Appointment"] = relationship(back_populates="logs")
    user: Mapped["User"] = relationship()
