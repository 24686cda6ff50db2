from __future__ import annotations

import pytest

from dental_backend.auth_models import UserRole
from dental_backend.auth_security import create_access_token
from dental_backend.auth_service import create_user
from dental_backend.config import Settings
from dental_backend.db import db_session
from dental_backend.errors import ValidationError


def test_register_and_login(client):
    r = client.post(
        "/api/auth/register",
        json={"name": "Julia Reis", "email": "Julia@Clinic.test", "password": "secret123", "role": "dentist"},
    )
    assert r.status_code == 201
    assert r.json()["user_id"] > 0

    r = client.post("/api/auth/login", json={"email": "julia@clinic.com.br", "password": "secret123"})
    assert r.status_code == 200
    body = r.json()
    assert body["token_type"] == "bearer"
    assert body["name"] == "Julia Reis"
    assert body["role"] == "dentist"

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "julia@clinic.com.br"


def test_register_duplicate_email_conflicts(client):
    payload = {"name": "Julia Reis", "email": "julia@clinic.com.br", "password": "secret123"}
    assert client.post("/api/auth/register", json=payload).status_code == 201

    r = client.post("/api/auth/register", json=payload)
    assert r.status_code == 409
    assert r.json() == {"message": "Email already in use."}


def test_register_validation_error_shape(client):
    r = client.post("/api/auth/register", json={"name": "Jo", "email": "not-an-email", "password": "123"})
    assert r.status_code == 400
    body = r.json()
    assert body["message"] == "Invalid request"
    assert {e["loc"][-1] for e in body["error"]} == {"name", "email", "password"}


def test_register_rejects_unknown_role(client):
    r = client.post(
        "/api/auth/register",
        json={"name": "Julia Reis", "email": "julia@clinic.com.br", "password": "secret123", "role": "owner"},
    )
    assert r.status_code == 400


def test_login_with_wrong_password(client):
    client.post("/api/auth/register", json={"name": "Julia Reis", "email": "julia@clinic.com.br", "password": "secret123"})
    r = client.post("/api/auth/login", json={"email": "julia@clinic.com.br", "password": "wrong-pass"})
    assert r.status_code == 401
    assert r.json() == {"message": "Invalid credentials"}


def test_protected_routes_require_token(client):
    for method, path in [
        ("get", "/api/patients"),
        ("post", "/api/dentists"),
        ("get", "/api/appointments/1"),
        ("patch", "/api/appointments/1/status"),
        ("get", "/api/dashboard/stats"),
        ("post", "/api/notifications/send"),
    ]:
        r = getattr(client, method)(path)
        assert r.status_code == 401, path
        assert r.json() == {"message": "Unauthorized"}


def test_invalid_and_foreign_tokens_are_rejected(client, settings):
    r = client.get("/api/patients", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401

    foreign = Settings(jwt_secret="another-secret")
    token = create_access_token(foreign, subject="1")
    r = client.get("/api/patients", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401


def test_token_for_unknown_user_is_rejected(client, settings):
    token = create_access_token(settings, subject="999")
    r = client.get("/api/patients", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
    assert r.json() == {"message": "Invalid user"}


def test_health_is_public(client):
    assert client.get("/api/health").json() == {"ok": True}


@pytest.mark.parametrize("email", ["desk@clinic.test", "desk@localhost", "not-an-email", "desk@"])
def test_create_user_applies_the_login_email_rule(sessions, email):
    with db_session(sessions) as s:
        with pytest.raises(ValidationError):
            create_user(s, "Front Desk", email, "secret123", UserRole.FRONT_DESK)


def test_user_created_outside_the_api_can_log_in(client):
    with db_session(client.app.state.sessions) as s:
        create_user(s, "Front Desk", "  Desk@Clinic.com.br ", "secret123", UserRole.FRONT_DESK)

    r = client.post("/api/auth/login", json={"email": "desk@clinic.com.br", "password": "secret123"})
    assert r.status_code == 200
    assert r.json()["role"] == "front_desk"
