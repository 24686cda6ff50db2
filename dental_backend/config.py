from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

# SQLite file in the project root when DATABASE_URL is not set
DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "dental_clinic.sqlite"


def _env_or(key: str, default: str) -> str:
    v = os.getenv(key)
    return v if v is not None else default


def _env_bool(key: str, default: bool = False) -> bool:
    v = os.getenv(key)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on", "t")


@dataclass(frozen=True)
class Settings:
    database_url: str = f"sqlite:///{DEFAULT_DB_PATH}"
    db_echo: bool = False

    jwt_secret: str = "CHANGE_ME_DEV_SECRET"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7

    clinic_timezone: str = "America/Sao_Paulo"

    whatsapp_api_url: str = "https://graph.facebook.com/v21.0"
    whatsapp_token: str = ""
    whatsapp_phone_number_id: str = ""
    whatsapp_timeout: float = 10.0
    default_country_code: str = "55"

    cors_origins: str = "*"
    log_level: str = "INFO"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.clinic_timezone)

    def local_today(self) -> date:
        return datetime.now(self.tz).date()

    def to_local_naive(self, value: datetime) -> datetime:
        """Aware datetimes become clinic wall-clock time; naive ones are kept as-is."""
        if value.tzinfo is None:
            return value
        return value.astimezone(self.tz).replace(tzinfo=None)


def load_settings() -> Settings:
    """Read configuration from environment variables (and .env, if present)."""
    load_dotenv()
    return Settings(
        database_url=_env_or("DATABASE_URL", f"sqlite:///{DEFAULT_DB_PATH}"),
        db_echo=_env_bool("DB_ECHO"),
        # In production JWT_SECRET must always be set
        jwt_secret=_env_or("JWT_SECRET", "CHANGE_ME_DEV_SECRET"),
        jwt_expire_minutes=int(_env_or("JWT_EXPIRE_MINUTES", str(60 * 24 * 7))),
        clinic_timezone=_env_or("CLINIC_TIMEZONE", "America/Sao_Paulo"),
        whatsapp_api_url=_env_or("WHATSAPP_API_URL", "https://graph.facebook.com/v21.0").rstrip("/"),
        whatsapp_token=_env_or("WHATSAPP_TOKEN", ""),
        whatsapp_phone_number_id=_env_or("WHATSAPP_PHONE_NUMBER_ID", ""),
        whatsapp_timeout=float(_env_or("WHATSAPP_TIMEOUT", "10")),
        default_country_code=_env_or("DEFAULT_COUNTRY_CODE", "55"),
        cors_origins=_env_or("CORS_ORIGINS", "*"),
        log_level=_env_or("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
