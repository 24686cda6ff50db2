"""
WhatsApp notifications through the WhatsApp Business (Cloud) API.

Sending never raises: transport and provider errors are logged and returned
in a ``SendResult``.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import requests

from .config import Settings

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://graph.facebook.com/v21.0"


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: str | None = None
    error: Any = None
    # raw provider response (or error body), opaque to callers
    provider_payload: Any = None


# =========================
# Formatting helpers
# =========================
def format_phone_number(phone: str, country_code: str = "55") -> str:
    """Digits only, international form: the country code is added when missing."""
    cleaned = re.sub(r"\D", "", phone or "")
    if not cleaned.startswith(country_code):
        cleaned = country_code + cleaned
    return cleaned


def format_date(value: datetime) -> str:
    return value.strftime("%d/%m/%Y")


def format_time(value: datetime) -> str:
    return value.strftime("%H:%M")


def reminder_message(patient_name: str, dentist_name: str, date_str: str, time_str: str) -> str:
    return (
        f"Olá {patient_name}! 👋\n\n"
        "Este é um lembrete da sua consulta:\n\n"
        f"📅 Data: {date_str}\n"
        f"🕐 Horário: {time_str}\n"
        f"👨‍⚕️ Dentista: {dentist_name}\n\n"
        "Por favor, chegue com 10 minutos de antecedência.\n\n"
        "Em caso de imprevistos, entre em contato conosco."
    )


def confirmation_message(patient_name: str, dentist_name: str, date_str: str, time_str: str) -> str:
    return (
        "✅ Consulta agendada com sucesso!\n\n"
        f"Olá {patient_name},\n\n"
        "Sua consulta foi confirmada:\n\n"
        f"📅 Data: {date_str}\n"
        f"🕐 Horário: {time_str}\n"
        f"👨‍⚕️ Dentista: {dentist_name}\n\n"
        "Aguardamos você! 😊"
    )


def cancellation_message(patient_name: str, date_str: str, time_str: str) -> str:
    return (
        "❌ Consulta cancelada\n\n"
        f"Olá {patient_name},\n\n"
        "Sua consulta foi cancelada:\n\n"
        f"📅 Data: {date_str}\n"
        f"🕐 Horário: {time_str}\n\n"
        "Para reagendar, entre em contato conosco."
    )


# =========================
# Client
# =========================
class WhatsAppClient:
    """Client for the WhatsApp Cloud API "send message" endpoint."""

    def __init__(
        self,
        token: str,
        phone_number_id: str,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.token = token
        self.phone_number_id = phone_number_id
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()

        if not self.configured:
            logger.warning("WhatsApp credentials not configured (WHATSAPP_TOKEN / WHATSAPP_PHONE_NUMBER_ID)")

    @classmethod
    def from_settings(cls, settings: Settings) -> "WhatsAppClient":
        return cls(
            token=settings.whatsapp_token,
            phone_number_id=settings.whatsapp_phone_number_id,
            api_url=settings.whatsapp_api_url,
            timeout=settings.whatsapp_timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self.token and self.phone_number_id)

    @property
    def messages_url(self) -> str:
        return f"{self.api_url}/{self.phone_number_id}/messages"

    def _post(self, payload: dict[str, Any]) -> SendResult:
        if not self.configured:
            return SendResult(False, error="WhatsApp credentials not configured")

        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }
        try:
            response = self.http.post(self.messages_url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("WhatsApp request to %s failed: %s", payload.get("to"), e)
            return SendResult(False, error=str(e))

        try:
            data = response.json()
        except ValueError:
            data = response.text

        if response.status_code >= 400:
            logger.error("WhatsApp provider error %s: %s", response.status_code, data)
            return SendResult(False, error=data, provider_payload=data)

        try:
            message_id = data["messages"][0]["id"]
        except (KeyError, IndexError, TypeError):
            logger.error("Unexpected WhatsApp response: %s", data)
            return SendResult(False, error="Unexpected provider response", provider_payload=data)

        logger.info("WhatsApp message %s sent to %s", message_id, payload.get("to"))
        return SendResult(True, message_id=message_id, provider_payload=data)

    def send_text_message(self, to: str, message: str) -> SendResult:
        return self._post(
            {
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": to,
                "type": "text",
                "text": {"preview_url": False, "body": message},
            }
        )

    def send_template_message(
        self,
        to: str,
        template_name: str,
        language_code: str = "pt_BR",
        parameters: list[str] | None = None,
    ) -> SendResult:
        """Send a template approved on the WhatsApp Business account."""
        components = []
        if parameters:
            components.append(
                {"type": "body", "parameters": [{"type": "text", "text": p} for p in parameters]}
            )
        return self._post(
            {
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": to,
                "type": "template",
                "template": {
                    "name": template_name,
                    "language": {"code": language_code},
                    "components": components,
                },
            }
        )

    def send_appointment_reminder(
        self, phone: str, patient_name: str, dentist_name: str, date_str: str, time_str: str
    ) -> SendResult:
        return self.send_text_message(phone, reminder_message(patient_name, dentist_name, date_str, time_str))

    def send_appointment_confirmation(
        self, phone: str, patient_name: str, dentist_name: str, date_str: str, time_str: str
    ) -> SendResult:
        return self.send_text_message(phone, confirmation_message(patient_name, dentist_name, date_str, time_str))

    def send_appointment_cancellation(self, phone: str, patient_name: str, date_str: str, time_str: str) -> SendResult:
        return self.send_text_message(phone, cancellation_message(patient_name, date_str, time_str))
