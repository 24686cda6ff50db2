from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.orm import Session, selectinload

from .errors import ConflictError, NotFoundError, ValidationError
from .models import Appointment, AppointmentStatus, Dentist, Patient, StatusLog

logger = logging.getLogger(__name__)


# =========================
# Conflict check
# =========================
def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open intervals [a_start, a_end) and [b_start, b_end): touching ones do not overlap."""
    return a_start < b_end and b_start < a_end


def has_conflict(
    s: Session,
    dentist_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_appointment_id: int | None = None,
) -> bool:
    """
    True if the dentist already has a non-cancelled appointment overlapping
    [start_time, end_time). An inverted interval is evaluated as given and
    matches nothing.
    """
    conditions = [
        Appointment.dentist_id == dentist_id,
        Appointment.status != AppointmentStatus.CANCELLED,
        # overlap [start, end)
        Appointment.start_time < end_time,
        Appointment.end_time > start_time,
    ]
    if exclude_appointment_id is not None:
        conditions.append(Appointment.id != exclude_appointment_id)

    q = select(Appointment.id).where(and_(*conditions)).limit(1)
    return s.execute(q).first() is not None


def _validate_interval(start_time: datetime, end_time: datetime) -> None:
    if end_time <= start_time:
        raise ValidationError("End time must be after start time")


def _lock_dentist(s: Session, dentist_id: int) -> Dentist | None:
    # serializes check-and-write per dentist (no-op on SQLite, which locks the whole database)
    return s.execute(select(Dentist).where(Dentist.id == dentist_id).with_for_update()).scalar_one_or_none()


def _active_patient(s: Session, patient_id: int) -> Patient:
    p = s.get(Patient, patient_id)
    if not p or not p.active:
        raise NotFoundError("Patient not found")
    return p


def _active_dentist(s: Session, dentist_id: int) -> Dentist:
    d = _lock_dentist(s, dentist_id)
    if not d or not d.active:
        raise NotFoundError("Dentist not found")
    return d


def _ensure_slot_free(
    s: Session, dentist_id: int, start_time: datetime, end_time: datetime, exclude_appointment_id: int | None = None
) -> None:
    if has_conflict(s, dentist_id, start_time, end_time, exclude_appointment_id):
        logger.info(
            "booking rejected: dentist %s busy in [%s, %s)", dentist_id, start_time.isoformat(), end_time.isoformat()
        )
        raise ConflictError("Dentist already has an appointment in this time slot")


def _append_log(s: Session, appointment: Appointment, status: AppointmentStatus, actor_id: int) -> StatusLog:
    entry = StatusLog(appointment_id=appointment.id, status=status, user_id=actor_id)
    s.add(entry)
    return entry


# =========================
# Lifecycle
# =========================
def create_appointment(
    s: Session,
    patient_id: int,
    dentist_id: int,
    start_time: datetime,
    end_time: datetime,
    actor_id: int,
    notes: str | None = None,
) -> Appointment:
    """
    Book an appointment in "scheduled" status.
    - patient and dentist must exist and be active
    - the dentist must be free over [start_time, end_time)
    - the initial status log entry is written in the same transaction
    """
    _validate_interval(start_time, end_time)
    _active_patient(s, patient_id)
    _active_dentist(s, dentist_id)
    _ensure_slot_free(s, dentist_id, start_time, end_time)

    app = Appointment(
        patient_id=patient_id,
        dentist_id=dentist_id,
        start_time=start_time,
        end_time=end_time,
        status=AppointmentStatus.SCHEDULED,
        notes=notes,
    )
    s.add(app)
    s.flush()

    _append_log(s, app, AppointmentStatus.SCHEDULED, actor_id)
    s.flush()

    logger.info(
        "appointment %s booked: patient %s, dentist %s, %s", app.id, patient_id, dentist_id, start_time.isoformat()
    )
    return app


def get_appointment_row(s: Session, appointment_id: int) -> Appointment:
    app = s.get(Appointment, appointment_id)
    if not app:
        raise NotFoundError("Appointment not found")
    return app


def update_appointment(s: Session, appointment_id: int, changes: dict[str, Any]) -> Appointment:
    """
    Partial update. Moving the appointment (dentist, start or end) re-runs the
    conflict check against every other appointment of the target dentist.
    """
    app = get_appointment_row(s, appointment_id)

    if changes.get("patient_id") is not None and changes["patient_id"] != app.patient_id:
        _active_patient(s, changes["patient_id"])

    dentist_id = changes.get("dentist_id") or app.dentist_id
    start_time = changes.get("start_time") or app.start_time
    end_time = changes.get("end_time") or app.end_time
    moved = any(changes.get(k) is not None for k in ("dentist_id", "start_time", "end_time"))

    if moved:
        _validate_interval(start_time, end_time)
        if dentist_id != app.dentist_id:
            _active_dentist(s, dentist_id)
        else:
            _lock_dentist(s, dentist_id)
        if app.status != AppointmentStatus.CANCELLED:
            _ensure_slot_free(s, dentist_id, start_time, end_time, exclude_appointment_id=app.id)

    for field, value in changes.items():
        if value is not None or field == "notes":
            setattr(app, field, value)
    s.flush()

    logger.info("appointment %s updated (%s)", app.id, ", ".join(sorted(changes)) or "no fields")
    return app


def set_status(s: Session, appointment_id: int, new_status: AppointmentStatus, actor_id: int) -> Appointment:
    """
    Any status is accepted from any prior status, the same one included.
    Every call appends exactly one log entry.
    """
    app = get_appointment_row(s, appointment_id)

    if app.status == AppointmentStatus.CANCELLED and new_status != AppointmentStatus.CANCELLED:
        # reviving a cancelled slot: someone else may have booked it meanwhile
        _lock_dentist(s, app.dentist_id)
        _ensure_slot_free(s, app.dentist_id, app.start_time, app.end_time, exclude_appointment_id=app.id)

    previous = app.status
    app.status = new_status
    _append_log(s, app, new_status, actor_id)
    s.flush()

    logger.info("appointment %s: %s -> %s (user %s)", app.id, previous.value, new_status.value, actor_id)
    return app


def cancel_appointment(s: Session, appointment_id: int, actor_id: int) -> Appointment:
    """Soft cancel: the row stays, the slot is freed for new bookings."""
    return set_status(s, appointment_id, AppointmentStatus.CANCELLED, actor_id)


# =========================
# Queries
# =========================
def list_appointments(
    s: Session,
    patient_id: int | None = None,
    dentist_id: int | None = None,
    status: AppointmentStatus | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> list[Appointment]:
    q = select(Appointment).options(selectinload(Appointment.patient), selectinload(Appointment.dentist))

    if patient_id is not None:
        q = q.where(Appointment.patient_id == patient_id)
    if dentist_id is not None:
        q = q.where(Appointment.dentist_id == dentist_id)
    if status is not None:
        q = q.where(Appointment.status == status)
    if date_from is not None:
        q = q.where(Appointment.start_time >= date_from)
    if date_to is not None:
        q = q.where(Appointment.start_time <= date_to)

    return list(s.scalars(q.order_by(Appointment.start_time.asc(), Appointment.id.asc())))


def get_appointment(s: Session, appointment_id: int) -> Appointment:
    """Appointment with patient, dentist and its status history loaded."""
    q = (
        select(Appointment)
        .where(Appointment.id == appointment_id)
        .options(
            selectinload(Appointment.patient),
            selectinload(Appointment.dentist),
            selectinload(Appointment.logs).selectinload(StatusLog.user),
        )
    )
    app = s.scalars(q).first()
    if not app:
        raise NotFoundError("Appointment not found")
    return app


def status_history(s: Session, appointment_id: int) -> list[StatusLog]:
    q = (
        select(StatusLog)
        .where(StatusLog.appointment_id == appointment_id)
        .order_by(StatusLog.changed_at.desc(), StatusLog.id.desc())
    )
    return list(s.scalars(q))
