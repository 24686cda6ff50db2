from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from .auth_models import UserRole
from .models import AppointmentStatus


def _check_interval(start: datetime | None, end: datetime | None) -> None:
    if start is None or end is None:
        return
    # naive vs aware cannot be compared here; the service layer re-checks after normalization
    if (start.tzinfo is None) != (end.tzinfo is None):
        return
    if end <= start:
        raise ValueError("end_time must be after start_time")


def _reject_nulls(model: BaseModel, fields: tuple[str, ...]) -> None:
    # partial updates: a field may be omitted, but not cleared
    for field in fields:
        if field in model.model_fields_set and getattr(model, field) is None:
            raise ValueError(f"{field} cannot be null")


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Auth

class RegisterIn(BaseModel):
    name: str = Field(..., min_length=3)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: UserRole = UserRole.FRONT_DESK


class RegisterOut(BaseModel):
    message: str
    user_id: int


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    name: str
    role: UserRole


class MeOut(ORMModel):
    id: int
    name: str
    email: str
    role: UserRole
    is_active: bool


# Patients

class PatientCreateIn(BaseModel):
    name: str = Field(..., min_length=3)
    email: EmailStr | None = None
    phone: str | None = None
    birth_date: date | None = None
    notes: str | None = None


class PatientUpdateIn(BaseModel):
    name: str | None = Field(None, min_length=3)
    email: EmailStr | None = None
    phone: str | None = None
    birth_date: date | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _not_null(self) -> "PatientUpdateIn":
        _reject_nulls(self, ("name",))
        return self


class PatientOut(ORMModel):
    id: int
    name: str
    email: str | None
    phone: str | None
    birth_date: date | None
    notes: str | None
    active: bool
    created_at: datetime
    updated_at: datetime


class PatientCreatedOut(BaseModel):
    patient_id: int


# Dentists

class DentistCreateIn(BaseModel):
    name: str = Field(..., min_length=3)
    license_number: str = Field(..., min_length=3)
    specialty: str | None = None
    phone: str | None = None
    email: EmailStr | None = None


class DentistUpdateIn(BaseModel):
    name: str | None = Field(None, min_length=3)
    license_number: str | None = Field(None, min_length=3)
    specialty: str | None = None
    phone: str | None = None
    email: EmailStr | None = None

    @model_validator(mode="after")
    def _not_null(self) -> "DentistUpdateIn":
        _reject_nulls(self, ("name", "license_number"))
        return self


class DentistOut(ORMModel):
    id: int
    name: str
    license_number: str
    specialty: str | None
    phone: str | None
    email: str | None
    active: bool
    created_at: datetime
    updated_at: datetime


class DentistCreatedOut(BaseModel):
    dentist_id: int


# Appointments

class AppointmentCreateIn(BaseModel):
    patient_id: int
    dentist_id: int
    start_time: datetime
    end_time: datetime
    notes: str | None = None

    @model_validator(mode="after")
    def _interval(self) -> "AppointmentCreateIn":
        _check_interval(self.start_time, self.end_time)
        return self


class AppointmentUpdateIn(BaseModel):
    patient_id: int | None = None
    dentist_id: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _not_null(self) -> "AppointmentUpdateIn":
        _reject_nulls(self, ("patient_id", "dentist_id", "start_time", "end_time"))
        _check_interval(self.start_time, self.end_time)
        return self


class StatusIn(BaseModel):
    status: AppointmentStatus


class AppointmentCreatedOut(BaseModel):
    appointment_id: int


class PersonRef(ORMModel):
    id: int
    name: str


class PatientRef(ORMModel):
    id: int
    name: str
    phone: str | None
    email: str | None


class DentistRef(ORMModel):
    id: int
    name: str
    license_number: str
    specialty: str | None


class AppointmentOut(ORMModel):
    id: int
    patient_id: int
    dentist_id: int
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    notes: str | None
    created_at: datetime
    updated_at: datetime


class AppointmentListOut(AppointmentOut):
    patient: PatientRef
    dentist: DentistRef


class StatusLogOut(ORMModel):
    id: int
    status: AppointmentStatus
    changed_at: datetime
    user: PersonRef


class AppointmentDetailOut(AppointmentOut):
    patient: PatientOut
    dentist: DentistOut
    logs: list[StatusLogOut]


# Dashboard

class StatsOut(BaseModel):
    appointments_today: int
    active_patients: int
    waiting: int
    completed_today: int
    appointments_next_7_days: int
    active_dentists: int


class RecentAppointmentOut(ORMModel):
    id: int
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    patient: PersonRef
    dentist: PersonRef


class MonthlyOut(BaseModel):
    year: int
    month: int
    appointments_by_day: dict[int, int]


# Notifications

class SendMessageIn(BaseModel):
    phone_number: str = Field(..., min_length=10)
    message: str = Field(..., min_length=1)


class AppointmentNoticeIn(BaseModel):
    appointment_id: int


class NotificationOut(BaseModel):
    success: bool
    message_id: str | None = None
    message: str


class MessageOut(BaseModel):
    message: str
