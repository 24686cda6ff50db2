from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest
from fastapi.testclient import TestClient

from dental_backend.api_main import create_app
from dental_backend.auth_models import User, UserRole
from dental_backend.config import Settings
from dental_backend.db import create_db_engine, db_session, init_db, make_session_factory
from dental_backend.models import Dentist, Patient
from dental_backend.whatsapp import WhatsAppClient


class FakeResponse:
    def __init__(self, status_code: int, data: Any) -> None:
        self.status_code = status_code
        self._data = data
        self.text = str(data)

    def json(self) -> Any:
        if isinstance(self._data, Exception):
            raise self._data
        return self._data


class FakeHTTP:
    """Stands in for requests.Session: records posts, answers with a canned response."""

    def __init__(self, response: FakeResponse | None = None, exc: Exception | None = None) -> None:
        self.response = response or FakeResponse(200, {"messages": [{"id": "wamid.TEST"}]})
        self.exc = exc
        self.calls: list[dict[str, Any]] = []

    def post(self, url: str, json: dict, headers: dict, timeout: float) -> FakeResponse:
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.response


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        jwt_secret="test-secret",
        clinic_timezone="UTC",
        whatsapp_token="test-token",
        whatsapp_phone_number_id="1234567890",
        log_level="WARNING",
    )


@pytest.fixture
def sessions(settings):
    engine = create_db_engine(settings)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def actor(sessions) -> User:
    with db_session(sessions) as s:
        u = User(name="Front Desk", email="desk@clinic.com.br", password_hash="x", role=UserRole.FRONT_DESK)
        s.add(u)
        s.flush()
        return u


@pytest.fixture
def patient(sessions) -> Patient:
    with db_session(sessions) as s:
        p = Patient(name="Maria Silva", phone="(11) 98888-7777", email="maria@example.com")
        s.add(p)
        s.flush()
        return p


@pytest.fixture
def dentist(sessions) -> Dentist:
    with db_session(sessions) as s:
        d = Dentist(name="Dr. Paulo Costa", license_number="CRO-SP 11111", specialty="Ortodontia")
        s.add(d)
        s.flush()
        return d


@pytest.fixture
def fake_http() -> FakeHTTP:
    return FakeHTTP()


@pytest.fixture
def whatsapp(settings, fake_http) -> WhatsAppClient:
    return WhatsAppClient(
        token=settings.whatsapp_token,
        phone_number_id=settings.whatsapp_phone_number_id,
        api_url=settings.whatsapp_api_url,
        session=fake_http,
    )


@pytest.fixture
def client(settings, whatsapp):
    app = create_app(settings, whatsapp=whatsapp)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_client(client):
    r = client.post(
        "/api/auth/register",
        json={"name": "Admin User", "email": "admin@clinic.com.br", "password": "secret123", "role": "admin"},
    )
    assert r.status_code == 201, r.text
    r = client.post("/api/auth/login", json={"email": "admin@clinic.com.br", "password": "secret123"})
    assert r.status_code == 200, r.text
    client.headers["Authorization"] = f"Bearer {r.json()['access_token']}"
    return client


def at(hour: int, minute: int = 0, day: int = 20, month: int = 10, year: int = 2026) -> datetime:
    return datetime(year, month, day, hour, minute)


def create_patient(client, **overrides) -> int:
    payload = {"name": "Maria Silva", "email": "maria@example.com", "phone": "(11) 98888-7777"}
    payload.update(overrides)
    r = client.post("/api/patients", json=payload)
    assert r.status_code == 201, r.text
    return r.json()["patient_id"]


def create_dentist(client, license_number="CRO-SP 11111", **overrides) -> int:
    payload = {"name": "Dr. Paulo Costa", "license_number": license_number, "specialty": "Ortodontia"}
    payload.update(overrides)
    r = client.post("/api/dentists", json=payload)
    assert r.status_code == 201, r.text
    return r.json()["dentist_id"]


@pytest.fixture
def booking(auth_client):
    """Books appointments through the API for one patient and one dentist."""
    pid = create_patient(auth_client)
    did = create_dentist(auth_client)

    def _book(start: str, end: str, dentist_id: int = did, patient_id: int = pid, **extra):
        return auth_client.post(
            "/api/appointments",
            json={"patient_id": patient_id, "dentist_id": dentist_id, "start_time": start, "end_time": end, **extra},
        )

    _book.patient_id = pid
    _book.dentist_id = did
    return _book
