from __future__ import annotations

import pytest
import requests

from conftest import FakeResponse, create_patient


def test_send_free_text_normalizes_phone(auth_client, fake_http):
    r = auth_client.post(
        "/api/notifications/send", json={"phone_number": "(11) 98888-7777", "message": "Olá, Maria!"}
    )
    assert r.status_code == 200
    assert r.json() == {"success": True, "message_id": "wamid.TEST", "message": "Message sent"}

    sent = fake_http.calls[0]["json"]
    assert sent["to"] == "5511988887777"
    assert sent["text"]["body"] == "Olá, Maria!"


def test_send_rejects_short_phone(auth_client, fake_http):
    r = auth_client.post("/api/notifications/send", json={"phone_number": "12345", "message": "oi"})
    assert r.status_code == 400
    assert fake_http.calls == []


@pytest.mark.parametrize(
    "endpoint, fragment",
    [
        ("appointment-reminder", "lembrete"),
        ("appointment-confirmation", "confirmada"),
        ("appointment-cancellation", "cancelada"),
    ],
)
def test_appointment_notices(auth_client, booking, fake_http, endpoint, fragment):
    appointment_id = booking("2026-10-20T09:30:00", "2026-10-20T10:00:00").json()["appointment_id"]

    r = auth_client.post(f"/api/notifications/{endpoint}", json={"appointment_id": appointment_id})
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert r.json()["message_id"] == "wamid.TEST"

    sent = fake_http.calls[0]["json"]
    assert sent["to"] == "5511988887777"
    body = sent["text"]["body"]
    assert fragment in body
    assert "Maria Silva" in body
    assert "20/10/2026" in body and "09:30" in body


def test_notice_for_missing_appointment(auth_client, fake_http):
    r = auth_client.post("/api/notifications/appointment-reminder", json={"appointment_id": 999})
    assert r.status_code == 404
    assert r.json() == {"message": "Appointment not found"}
    assert fake_http.calls == []


def test_notice_for_patient_without_phone(auth_client, booking, fake_http):
    pid = create_patient(auth_client, name="Sem Telefone", phone=None, email=None)
    r = booking("2026-10-20T09:30:00", "2026-10-20T10:00:00", patient_id=pid)
    appointment_id = r.json()["appointment_id"]

    r = auth_client.post("/api/notifications/appointment-reminder", json={"appointment_id": appointment_id})
    assert r.status_code == 400
    assert r.json() == {"message": "Patient has no phone number on file"}
    assert fake_http.calls == []


def test_provider_failure_maps_to_bad_gateway(auth_client, booking, fake_http):
    appointment_id = booking("2026-10-20T09:30:00", "2026-10-20T10:00:00").json()["appointment_id"]
    error_body = {"error": {"message": "Recipient phone number not in allowed list", "code": 131030}}
    fake_http.response = FakeResponse(400, error_body)

    r = auth_client.post("/api/notifications/appointment-confirmation", json={"appointment_id": appointment_id})
    assert r.status_code == 502
    assert r.json() == {"message": "Failed to send WhatsApp confirmation", "error": error_body}


def test_transport_failure_maps_to_bad_gateway(auth_client, fake_http):
    fake_http.exc = requests.Timeout("read timed out")

    r = auth_client.post("/api/notifications/send", json={"phone_number": "11988887777", "message": "oi"})
    assert r.status_code == 502
    body = r.json()
    assert body["message"] == "Failed to send WhatsApp message"
    assert "read timed out" in body["error"]
