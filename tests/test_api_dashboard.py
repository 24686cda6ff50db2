from __future__ import annotations

from datetime import datetime, timedelta


def test_dashboard_endpoints(auth_client, booking, settings):
    today = datetime.combine(settings.local_today(), datetime.min.time())

    def iso(dt: datetime) -> str:
        return dt.isoformat()

    first = booking(iso(today.replace(hour=9)), iso(today.replace(hour=9, minute=30))).json()["appointment_id"]
    second = booking(iso(today.replace(hour=8)), iso(today.replace(hour=8, minute=30))).json()["appointment_id"]
    booking(iso(today + timedelta(days=2, hours=9)), iso(today + timedelta(days=2, hours=10)))
    auth_client.patch(f"/api/appointments/{first}/status", json={"status": "completed"})

    stats = auth_client.get("/api/dashboard/stats").json()
    assert stats == {
        "appointments_today": 2,
        "active_patients": 1,
        "waiting": 1,
        "completed_today": 1,
        "appointments_next_7_days": 3,
        "active_dentists": 1,
    }

    recent = auth_client.get("/api/dashboard/recent-appointments").json()
    assert [r["id"] for r in recent] == [second, first]
    assert recent[0]["patient"] == {"id": booking.patient_id, "name": "Maria Silva"}

    recent = auth_client.get("/api/dashboard/recent-appointments", params={"limit": 1}).json()
    assert [r["id"] for r in recent] == [second]

    r = auth_client.get("/api/dashboard/monthly", params={"year": today.year, "month": today.month})
    assert r.status_code == 200
    body = r.json()
    assert body["year"] == today.year and body["month"] == today.month
    assert body["appointments_by_day"][str(today.day)] == 2


def test_dashboard_monthly_validation(auth_client):
    assert auth_client.get("/api/dashboard/monthly", params={"year": 2026, "month": 13}).status_code == 400
    assert auth_client.get("/api/dashboard/monthly", params={"year": 2026}).status_code == 400
    assert auth_client.get("/api/dashboard/recent-appointments", params={"limit": 0}).status_code == 400


def test_dashboard_monthly_last_representable_month(auth_client):
    r = auth_client.get("/api/dashboard/monthly", params={"year": 9999, "month": 12})
    assert r.status_code == 200
    assert r.json() == {"year": 9999, "month": 12, "appointments_by_day": {}}
