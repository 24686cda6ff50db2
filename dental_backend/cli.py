from __future__ import annotations

import argparse
from datetime import datetime

from sqlalchemy.orm import Session, sessionmaker

from . import scheduling, services
from .auth_models import UserRole
from .auth_service import create_user, get_user_by_id
from .config import Settings, configure_logging, load_settings
from .db import create_db_engine, db_session, init_db, make_session_factory
from .errors import ClinicError, NotFoundError, ValidationError
from .models import AppointmentStatus
from .notifications import AppointmentNotice, send_appointment_notice
from .seed import seed_base
from .whatsapp import WhatsAppClient


def _actor_id(s: Session, user_id: int) -> int:
    """The acting user recorded in the status log must exist and be active."""
    u = get_user_by_id(s, user_id)
    if not u or not u.is_active:
        raise NotFoundError(f"User {user_id} not found or inactive")
    return u.id


def _parse_datetime(value: str, option: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(f"{option}: invalid ISO datetime '{value}'") from e


def cmd_init(args: argparse.Namespace, settings: Settings, sessions: sessionmaker[Session]) -> None:
    with db_session(sessions) as s:
        added = seed_base(s)
    print(f"DB initialized, {added} sample dentists added.")


def cmd_add_user(args: argparse.Namespace, settings: Settings, sessions: sessionmaker[Session]) -> None:
    with db_session(sessions) as s:
        u = create_user(s, args.name, args.email, args.password, UserRole(args.role))
        print(f"User created: {u.id} ({u.email}, {u.role.value})")


def cmd_list(args: argparse.Namespace, settings: Settings, sessions: sessionmaker[Session]) -> None:
    with db_session(sessions) as s:
        if args.entity == "patients":
            for p in services.list_patients(s):
                print(f"{p.id} | {p.name} | {p.phone or '-'} | {p.email or '-'}")
        elif args.entity == "dentists":
            for d in services.list_dentists(s):
                print(f"{d.id} | {d.name} | {d.license_number} | {d.specialty or '-'}")
        elif args.entity == "appointments":
            for a in scheduling.list_appointments(s, dentist_id=args.dentist_id):
                print(
                    f"{a.id} | {a.start_time:%Y-%m-%d %H:%M}-{a.end_time:%H:%M} | "
                    f"{a.dentist.name} | {a.patient.name} | {a.status.value}"
                )


def cmd_book(args: argparse.Namespace, settings: Settings, sessions: sessionmaker[Session]) -> None:
    start = _parse_datetime(args.start, "--start")  # format: 2026-01-14T10:30
    end = _parse_datetime(args.end, "--end")
    with db_session(sessions) as s:
        app = scheduling.create_appointment(
            s,
            patient_id=args.patient_id,
            dentist_id=args.dentist_id,
            start_time=settings.to_local_naive(start),
            end_time=settings.to_local_naive(end),
            actor_id=_actor_id(s, args.user_id),
            notes=args.notes,
        )
        print(f"Appointment booked: {app.id}")


def cmd_status(args: argparse.Namespace, settings: Settings, sessions: sessionmaker[Session]) -> None:
    with db_session(sessions) as s:
        actor_id = _actor_id(s, args.user_id)
        app = scheduling.set_status(s, args.appointment_id, AppointmentStatus(args.status), actor_id=actor_id)
        print(f"Appointment {app.id} is now {app.status.value}.")


def cmd_cancel(args: argparse.Namespace, settings: Settings, sessions: sessionmaker[Session]) -> None:
    with db_session(sessions) as s:
        scheduling.cancel_appointment(s, args.appointment_id, actor_id=_actor_id(s, args.user_id))
    print("Cancelled.")


def cmd_history(args: argparse.Namespace, settings: Settings, sessions: sessionmaker[Session]) -> None:
    with db_session(sessions) as s:
        scheduling.get_appointment_row(s, args.appointment_id)
        for log in scheduling.status_history(s, args.appointment_id):
            print(f"{log.changed_at:%Y-%m-%d %H:%M:%S} | {log.status.value} | user {log.user_id}")


def cmd_remind(args: argparse.Namespace, settings: Settings, sessions: sessionmaker[Session]) -> None:
    """Send a WhatsApp notice for one appointment (reminder by default)."""
    client = WhatsAppClient.from_settings(settings)
    with db_session(sessions) as s:
        result = send_appointment_notice(
            s, client, args.appointment_id, AppointmentNotice(args.kind), settings.default_country_code
        )
    if result.success:
        print(f"Sent, message id {result.message_id}")
    else:
        print(f"Not sent: {result.error}")
        raise SystemExit(1)


def cmd_serve(args: argparse.Namespace, settings: Settings, sessions: sessionmaker[Session]) -> None:
    import uvicorn

    from .api_main import create_app

    uvicorn.run(create_app(settings), host=args.host, port=args.port)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="dental-clinic", description="Dental clinic scheduling backend")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Create the DB and load sample data")
    p_init.set_defaults(func=cmd_init)

    p_user = sub.add_parser("add-user", help="Create an application user")
    p_user.add_argument("--name", required=True)
    p_user.add_argument("--email", required=True)
    p_user.add_argument("--password", required=True)
    p_user.add_argument("--role", choices=[r.value for r in UserRole], default=UserRole.ADMIN.value)
    p_user.set_defaults(func=cmd_add_user)

    p_list = sub.add_parser("list", help="List entities")
    p_list.add_argument("entity", choices=["patients", "dentists", "appointments"])
    p_list.add_argument("--dentist-id", type=int, default=None, help="Only this dentist's appointments")
    p_list.set_defaults(func=cmd_list)

    p_book = sub.add_parser("book", help="Book an appointment")
    p_book.add_argument("--patient-id", type=int, required=True)
    p_book.add_argument("--dentist-id", type=int, required=True)
    p_book.add_argument("--start", required=True, help="ISO datetime, e.g. 2026-01-14T10:30")
    p_book.add_argument("--end", required=True, help="ISO datetime, e.g. 2026-01-14T11:00")
    p_book.add_argument("--notes", default=None)
    p_book.add_argument("--user-id", type=int, required=True, help="Acting user, recorded in the status log")
    p_book.set_defaults(func=cmd_book)

    p_status = sub.add_parser("status", help="Change an appointment status")
    p_status.add_argument("--appointment-id", type=int, required=True)
    p_status.add_argument("--status", choices=[st.value for st in AppointmentStatus], required=True)
    p_status.add_argument("--user-id", type=int, required=True)
    p_status.set_defaults(func=cmd_status)

    p_cancel = sub.add_parser("cancel", help="Cancel an appointment")
    p_cancel.add_argument("--appointment-id", type=int, required=True)
    p_cancel.add_argument("--user-id", type=int, required=True)
    p_cancel.set_defaults(func=cmd_cancel)

    p_hist = sub.add_parser("history", help="Show an appointment's status log")
    p_hist.add_argument("--appointment-id", type=int, required=True)
    p_hist.set_defaults(func=cmd_history)

    p_remind = sub.add_parser("remind", help="Send a WhatsApp notice for an appointment")
    p_remind.add_argument("--appointment-id", type=int, required=True)
    p_remind.add_argument("--kind", choices=[n.value for n in AppointmentNotice], default="reminder")
    p_remind.set_defaults(func=cmd_remind)

    p_serve = sub.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.set_defaults(func=cmd_serve)

    return p


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_settings()
    configure_logging(settings.log_level)
    engine = create_db_engine(settings)
    init_db(engine)  # make sure the tables exist

    try:
        args.func(args, settings, make_session_factory(engine))
    except ClinicError as e:
        print(f"Error: {e.message}")
        raise SystemExit(1)
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
