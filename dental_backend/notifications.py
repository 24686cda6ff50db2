from __future__ import annotations

import enum

from sqlalchemy.orm import Session

from .errors import ValidationError
from .scheduling import get_appointment_row
from .whatsapp import SendResult, WhatsAppClient, format_date, format_phone_number, format_time


class AppointmentNotice(enum.Enum):
    REMINDER = "reminder"
    CONFIRMATION = "confirmation"
    CANCELLATION = "cancellation"


def send_appointment_notice(
    s: Session,
    client: WhatsAppClient,
    appointment_id: int,
    notice: AppointmentNotice,
    country_code: str = "55",
) -> SendResult:
    """
    Send one of the appointment messages to the patient's phone.
    Raises NotFoundError / ValidationError for bad input; provider failures
    come back in the SendResult.
    """
    app = get_appointment_row(s, appointment_id)
    patient = app.patient
    if not patient.phone:
        raise ValidationError("Patient has no phone number on file")

    phone = format_phone_number(patient.phone, country_code)
    date_str = format_date(app.start_time)
    time_str = format_time(app.start_time)

    if notice is AppointmentNotice.REMINDER:
        return client.send_appointment_reminder(phone, patient.name, app.dentist.name, date_str, time_str)
    if notice is AppointmentNotice.CONFIRMATION:
        return client.send_appointment_confirmation(phone, patient.name, app.dentist.name, date_str, time_str)
    return client.send_appointment_cancellation(phone, patient.name, date_str, time_str)
