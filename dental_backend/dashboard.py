from __future__ import annotations

from collections import Counter
from datetime import MAXYEAR, MINYEAR, date, datetime, timedelta

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session, selectinload

from .errors import ValidationError
from .models import WAITING_STATUSES, Appointment, AppointmentStatus, Dentist, Patient


def _day_window(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, datetime.min.time())
    return start, start + timedelta(days=1)


def _count_appointments(s: Session, *conditions) -> int:
    q = select(func.count(Appointment.id)).where(and_(*conditions))
    return int(s.execute(q).scalar_one())


def stats_snapshot(s: Session, today: date) -> dict[str, int]:
    """
    Dashboard counters for the clinic-local day `today`:
    - appointments_today: today's non-cancelled appointments
    - waiting: today's scheduled or confirmed ones
    - completed_today: today's completed ones
    - appointments_next_7_days: non-cancelled, start within [today, today + 7 days]
    - active_patients / active_dentists
    """
    day_start, day_end = _day_window(today)
    week_end = day_start + timedelta(days=7)

    today_filter = (Appointment.start_time >= day_start, Appointment.start_time < day_end)
    not_cancelled = Appointment.status != AppointmentStatus.CANCELLED

    return {
        "appointments_today": _count_appointments(s, *today_filter, not_cancelled),
        "active_patients": int(s.execute(select(func.count(Patient.id)).where(Patient.active.is_(True))).scalar_one()),
        "waiting": _count_appointments(s, *today_filter, Appointment.status.in_(WAITING_STATUSES)),
        "completed_today": _count_appointments(s, *today_filter, Appointment.status == AppointmentStatus.COMPLETED),
        "appointments_next_7_days": _count_appointments(
            s, Appointment.start_time >= day_start, Appointment.start_time <= week_end, not_cancelled
        ),
        "active_dentists": int(s.execute(select(func.count(Dentist.id)).where(Dentist.active.is_(True))).scalar_one()),
    }


def recent_appointments(s: Session, today: date, limit: int = 10) -> list[Appointment]:
    """Today's appointments, any status, earliest first."""
    day_start, day_end = _day_window(today)
    q = (
        select(Appointment)
        .options(selectinload(Appointment.patient), selectinload(Appointment.dentist))
        .where(and_(Appointment.start_time >= day_start, Appointment.start_time < day_end))
        .order_by(Appointment.start_time.asc(), Appointment.id.asc())
        .limit(limit)
    )
    return list(s.scalars(q))


def monthly_counts(s: Session, year: int, month: int) -> dict[int, int]:
    """Non-cancelled appointments per day of month, days without appointments omitted."""
    if not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12")
    if not MINYEAR <= year <= MAXYEAR:
        raise ValidationError(f"Year must be between {MINYEAR} and {MAXYEAR}")

    conditions = [
        Appointment.start_time >= datetime(year, month, 1),
        Appointment.status != AppointmentStatus.CANCELLED,
    ]
    # December of the last representable year has no "next month"
    if (year, month) != (MAXYEAR, 12):
        next_year, next_month = divmod(year * 12 + month, 12)
        conditions.append(Appointment.start_time < datetime(next_year, next_month + 1, 1))

    q = select(Appointment.start_time).where(and_(*conditions))
    by_day = Counter(start.day for start in s.scalars(q))
    return dict(sorted(by_day.items()))
