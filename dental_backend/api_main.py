from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session, sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import dashboard, scheduling, services
from .auth_models import User
from .auth_security import create_access_token, get_subject
from .auth_service import authenticate, create_user, get_user_by_id
from .config import Settings, configure_logging, get_settings
from .db import create_db_engine, db_session, init_db, make_session_factory
from .errors import ClinicError, UnauthorizedError, UpstreamFailure
from .models import AppointmentStatus
from .notifications import AppointmentNotice, send_appointment_notice
from .schemas import (
    AppointmentCreatedOut,
    AppointmentCreateIn,
    AppointmentDetailOut,
    AppointmentListOut,
    AppointmentNoticeIn,
    AppointmentOut,
    AppointmentUpdateIn,
    DentistCreatedOut,
    DentistCreateIn,
    DentistOut,
    DentistUpdateIn,
    LoginIn,
    MeOut,
    MessageOut,
    MonthlyOut,
    NotificationOut,
    PatientCreatedOut,
    PatientCreateIn,
    PatientOut,
    PatientUpdateIn,
    RecentAppointmentOut,
    RegisterIn,
    RegisterOut,
    SendMessageIn,
    StatsOut,
    StatusIn,
    TokenOut,
)
from .whatsapp import WhatsAppClient, format_phone_number

logger = logging.getLogger(__name__)

# OAuth2 Bearer (Authorization: Bearer <token>); a missing token is reported by get_current_user
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

router = APIRouter(prefix="/api")


# Dependencies

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_sessions(request: Request) -> sessionmaker[Session]:
    return request.app.state.sessions


def get_whatsapp(request: Request) -> WhatsAppClient:
    return request.app.state.whatsapp


def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    settings: Settings = Depends(get_app_settings),
    sessions: sessionmaker[Session] = Depends(get_sessions),
) -> User:
    if not token:
        raise UnauthorizedError("Unauthorized")

    # strip accidental spaces / quotes
    token = token.strip().strip('"').strip("'")

    subject = get_subject(settings, token)
    if not subject or not subject.isdigit():
        logger.info("rejected request with invalid token")
        raise UnauthorizedError("Invalid token")

    with db_session(sessions) as s:
        u = get_user_by_id(s, int(subject))
    if not u or not u.is_active:
        raise UnauthorizedError("Invalid user")
    return u


# Error handlers

async def clinic_error_handler(request: Request, exc: ClinicError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthorizedError) else None
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_body()), headers=headers)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Invalid request", "error": jsonable_encoder(exc.errors())},
    )


# Auth endpoints

@router.post("/auth/register", response_model=RegisterOut, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterIn, sessions: sessionmaker[Session] = Depends(get_sessions)) -> RegisterOut:
    with db_session(sessions) as s:
        u = create_user(s, payload.name, payload.email, payload.password, payload.role)
        return RegisterOut(message="User created", user_id=u.id)


@router.post("/auth/login", response_model=TokenOut)
def login(
    payload: LoginIn,
    settings: Settings = Depends(get_app_settings),
    sessions: sessionmaker[Session] = Depends(get_sessions),
) -> TokenOut:
    with db_session(sessions) as s:
        u = authenticate(s, payload.email, payload.password)
    if not u:
        logger.info("failed login for %s", payload.email)
        raise UnauthorizedError("Invalid credentials")

    token = create_access_token(settings, subject=str(u.id), extra={"name": u.name, "role": u.role.value})
    return TokenOut(access_token=token, name=u.name, role=u.role)


@router.get("/auth/me", response_model=MeOut)
def me(user: User = Depends(get_current_user)) -> MeOut:
    return MeOut.model_validate(user)


@router.get("/health")
def health() -> dict[str, Any]:
    return {"ok": True}


# Patients

@router.post("/patients", response_model=PatientCreatedOut, status_code=status.HTTP_201_CREATED)
def api_create_patient(
    payload: PatientCreateIn,
    user: User = Depends(get_current_user),
    sessions: sessionmaker[Session] = Depends(get_sessions),
) -> PatientCreatedOut:
    with db_session(sessions) as s:
        p = services.create_patient(s, **payload.model_dump())
        return PatientCreatedOut(patient_id=p.id)


@router.get("/patients", response_model=list[PatientOut])
def api_list_patients(
    user: User = Depends(get_current_user), sessions: sessionmaker[Session] = Depends(get_sessions)
) -> list[PatientOut]:
    with db_session(sessions) as s:
        return [PatientOut.model_validate(p) for p in services.list_patients(s)]


@router.get("/patients/{patient_id}", response_model=PatientOut)
def api_get_patient(
    patient_id: int, user: User = Depends(get_current_user), sessions: sessionmaker[Session] = Depends(get_sessions)
) -> PatientOut:
    with db_session(sessions) as s:
        return PatientOut.model_validate(services.get_patient(s, patient_id))


@router.put("/patients/{patient_id}", response_model=PatientOut)
def api_update_patient(
    patient_id: int,
    payload: PatientUpdateIn,
    user: User = Depends(get_current_user),
    sessions: sessionmaker[Session] = Depends(get_sessions),
) -> PatientOut:
    with db_session(sessions) as s:
        p = services.update_patient(s, patient_id, payload.model_dump(exclude_unset=True))
        return PatientOut.model_validate(p)


@router.delete("/patients/{patient_id}", response_model=MessageOut)
def api_delete_patient(
    patient_id: int, user: User = Depends(get_current_user), sessions: sessionmaker[Session] = Depends(get_sessions)
) -> MessageOut:
    with db_session(sessions) as s:
        services.deactivate_patient(s, patient_id)
    return MessageOut(message="Patient removed")


# Dentists

@router.post("/dentists", response_model=DentistCreatedOut, status_code=status.HTTP_201_CREATED)
def api_create_dentist(
    payload: DentistCreateIn,
    user: User = Depends(get_current_user),
    sessions: sessionmaker[Session] = Depends(get_sessions),
) -> DentistCreatedOut:
    with db_session(sessions) as s:
        d = services.create_dentist(s, **payload.model_dump())
        return DentistCreatedOut(dentist_id=d.id)


@router.get("/dentists", response_model=list[DentistOut])
def api_list_dentists(
    user: User = Depends(get_current_user), sessions: sessionmaker[Session] = Depends(get_sessions)
) -> list[DentistOut]:
    with db_session(sessions) as s:
        return [DentistOut.model_validate(d) for d in services.list_dentists(s)]


@router.get("/dentists/{dentist_id}", response_model=DentistOut)
def api_get_dentist(
    dentist_id: int, user: User = Depends(get_current_user), sessions: sessionmaker[Session] = Depends(get_sessions)
) -> DentistOut:
    with db_session(sessions) as s:
        return DentistOut.model_validate(services.get_dentist(s, dentist_id))


@router.put("/dentists/{dentist_id}", response_model=DentistOut)
def api_update_dentist(
    dentist_id: int,
    payload: DentistUpdateIn,
    user: User = Depends(get_current_user),
    sessions: sessionmaker[Session] = Depends(get_sessions),
) -> DentistOut:
    with db_session(sessions) as s:
        d = services.update_dentist(s, dentist_id, payload.model_dump(exclude_unset=True))
        return DentistOut.model_validate(d)


@router.delete("/dentists/{dentist_id}", response_model=MessageOut)
def api_delete_dentist(
    dentist_id: int, user: User = Depends(get_current_user), sessions: sessionmaker[Session] = Depends(get_sessions)
) -> MessageOut:
    with db_session(sessions) as s:
        services.deactivate_dentist(s, dentist_id)
    return MessageOut(message="Dentist removed")


# Appointments

@router.post("/appointments", response_model=AppointmentCreatedOut, status_code=status.HTTP_201_CREATED)
def api_create_appointment(
    payload: AppointmentCreateIn,
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    sessions: sessionmaker[Session] = Depends(get_sessions),
) -> AppointmentCreatedOut:
    with db_session(sessions) as s:
        app = scheduling.create_appointment(
            s,
            patient_id=payload.patient_id,
            dentist_id=payload.dentist_id,
            start_time=settings.to_local_naive(payload.start_time),
            end_time=settings.to_local_naive(payload.end_time),
            actor_id=user.id,
            notes=payload.notes,
        )
        return AppointmentCreatedOut(appointment_id=app.id)


@router.get("/appointments", response_model=list[AppointmentListOut])
def api_list_appointments(
    patient_id: int | None = None,
    dentist_id: int | None = None,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    sessions: sessionmaker[Session] = Depends(get_sessions),
) -> list[AppointmentListOut]:
    with db_session(sessions) as s:
        rows = scheduling.list_appointments(
            s,
            patient_id=patient_id,
            dentist_id=dentist_id,
            status=status_filter,
            date_from=settings.to_local_naive(date_from) if date_from else None,
            date_to=settings.to_local_naive(date_to) if date_to else None,
        )
        return [AppointmentListOut.model_validate(a) for a in rows]


@router.get("/appointments/{appointment_id}", response_model=AppointmentDetailOut)
def api_get_appointment(
    appointment_id: int,
    user: User = Depends(get_current_user),
    sessions: sessionmaker[Session] = Depends(get_sessions),
) -> AppointmentDetailOut:
    with db_session(sessions) as s:
        app = scheduling.get_appointment(s, appointment_id)
        out = AppointmentDetailOut.model_validate(app)
    # newest transition first
    out.logs.reverse()
    return out


@router.put("/appointments/{appointment_id}", response_model=AppointmentOut)
def api_update_appointment(
    appointment_id: int,
    payload: AppointmentUpdateIn,
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    sessions: sessionmaker[Session] = Depends(get_sessions),
) -> AppointmentOut:
    changes = payload.model_dump(exclude_unset=True)
    for field in ("start_time", "end_time"):
        if changes.get(field) is not None:
            changes[field] = settings.to_local_naive(changes[field])

    with db_session(sessions) as s:
        app = scheduling.update_appointment(s, appointment_id, changes)
        return AppointmentOut.model_validate(app)


@router.patch("/appointments/{appointment_id}/status", response_model=AppointmentOut)
def api_set_status(
    appointment_id: int,
    payload: StatusIn,
    user: User = Depends(get_current_user),
    sessions: sessionmaker[Session] = Depends(get_sessions),
) -> AppointmentOut:
    with db_session(sessions) as s:
        app = scheduling.set_status(s, appointment_id, payload.status, actor_id=user.id)
        return AppointmentOut.model_validate(app)


@router.delete("/appointments/{appointment_id}", response_model=MessageOut)
def api_cancel_appointment(
    appointment_id: int,
    user: User = Depends(get_current_user),
    sessions: sessionmaker[Session] = Depends(get_sessions),
) -> MessageOut:
    with db_session(sessions) as s:
        scheduling.cancel_appointment(s, appointment_id, actor_id=user.id)
    return MessageOut(message="Appointment cancelled")


# Dashboard

@router.get("/dashboard/stats", response_model=StatsOut)
def api_dashboard_stats(
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    sessions: sessionmaker[Session] = Depends(get_sessions),
) -> StatsOut:
    with db_session(sessions) as s:
        return StatsOut(**dashboard.stats_snapshot(s, settings.local_today()))


@router.get("/dashboard/recent-appointments", response_model=list[RecentAppointmentOut])
def api_dashboard_recent(
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    sessions: sessionmaker[Session] = Depends(get_sessions),
) -> list[RecentAppointmentOut]:
    with db_session(sessions) as s:
        rows = dashboard.recent_appointments(s, settings.local_today(), limit=limit)
        return [RecentAppointmentOut.model_validate(a) for a in rows]


@router.get("/dashboard/monthly", response_model=MonthlyOut)
def api_dashboard_monthly(
    year: int = Query(..., ge=1, le=9999),
    month: int = Query(..., ge=1, le=12),
    user: User = Depends(get_current_user),
    sessions: sessionmaker[Session] = Depends(get_sessions),
) -> MonthlyOut:
    with db_session(sessions) as s:
        by_day = dashboard.monthly_counts(s, year, month)
    return MonthlyOut(year=year, month=month, appointments_by_day=by_day)


# Notifications (WhatsApp)

@router.post("/notifications/send", response_model=NotificationOut)
def api_send_message(
    payload: SendMessageIn,
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    client: WhatsAppClient = Depends(get_whatsapp),
) -> NotificationOut:
    phone = format_phone_number(payload.phone_number, settings.default_country_code)
    result = client.send_text_message(phone, payload.message)
    if not result.success:
        raise UpstreamFailure("Failed to send WhatsApp message", error=result.error)
    return NotificationOut(success=True, message_id=result.message_id, message="Message sent")


def _notify(
    notice: AppointmentNotice,
    appointment_id: int,
    settings: Settings,
    sessions: sessionmaker[Session],
    client: WhatsAppClient,
) -> NotificationOut:
    with db_session(sessions) as s:
        result = send_appointment_notice(s, client, appointment_id, notice, settings.default_country_code)
    if not result.success:
        raise UpstreamFailure(f"Failed to send WhatsApp {notice.value}", error=result.error)
    return NotificationOut(success=True, message_id=result.message_id, message=f"{notice.value.capitalize()} sent")


@router.post("/notifications/appointment-reminder", response_model=NotificationOut)
def api_send_reminder(
    payload: AppointmentNoticeIn,
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    sessions: sessionmaker[Session] = Depends(get_sessions),
    client: WhatsAppClient = Depends(get_whatsapp),
) -> NotificationOut:
    return _notify(AppointmentNotice.REMINDER, payload.appointment_id, settings, sessions, client)


@router.post("/notifications/appointment-confirmation", response_model=NotificationOut)
def api_send_confirmation(
    payload: AppointmentNoticeIn,
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    sessions: sessionmaker[Session] = Depends(get_sessions),
    client: WhatsAppClient = Depends(get_whatsapp),
) -> NotificationOut:
    return _notify(AppointmentNotice.CONFIRMATION, payload.appointment_id, settings, sessions, client)


@router.post("/notifications/appointment-cancellation", response_model=NotificationOut)
def api_send_cancellation(
    payload: AppointmentNoticeIn,
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    sessions: sessionmaker[Session] = Depends(get_sessions),
    client: WhatsAppClient = Depends(get_whatsapp),
) -> NotificationOut:
    return _notify(AppointmentNotice.CANCELLATION, payload.appointment_id, settings, sessions, client)


# App factory

def create_app(settings: Settings | None = None, whatsapp: WhatsAppClient | None = None) -> FastAPI:
    """
    Build the API. The engine, session factory and WhatsApp client live on
    app.state and are handed to the routes through dependencies.
    Run with: uvicorn --factory dental_backend.api_main:create_app
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    engine = create_db_engine(settings)

    app = FastAPI(title="Dental Clinic API", version="1.0.0")
    app.state.settings = settings
    app.state.engine = engine
    app.state.sessions = make_session_factory(engine)
    app.state.whatsapp = whatsapp or WhatsAppClient.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ClinicError, clinic_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(router)

    @app.on_event("startup")
    def startup() -> None:
        init_db(engine)

    @app.on_event("shutdown")
    def shutdown() -> None:
        engine.dispose()

    return app
