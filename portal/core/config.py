import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./portal.db")
CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:5173"])

PRACTICE_NAME = os.getenv("PRACTICE_NAME", "Ama Nacer Psicologia")
PRACTICE_TIMEZONE = os.getenv("PRACTICE_TIMEZONE", "America/Bogota")
PSYCHOLOGIST_EMAIL = os.getenv("PSYCHOLOGIST_EMAIL", "")
SITE_URL = os.getenv("SITE_URL", "http://localhost:5173")

DEFAULT_SLOT_DURATION_MINUTES = int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES", "60"))
AUTO_CONFIRM_BOOKINGS = _get_bool(os.getenv("AUTO_CONFIRM_BOOKINGS"), default=True)

GOOGLE_SERVICE_ACCOUNT_EMAIL = os.getenv("GOOGLE_SERVICE_ACCOUNT_EMAIL", "")
GOOGLE_PRIVATE_KEY = os.getenv("GOOGLE_PRIVATE_KEY", "")
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")
CALENDAR_REMINDER_MINUTES = int(os.getenv("CALENDAR_REMINDER_MINUTES", "60"))

RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "Ama Nacer <onboarding@resend.dev>")

INTEGRATION_TIMEOUT_SECONDS = float(os.getenv("INTEGRATION_TIMEOUT_SECONDS", "10"))
JOB_MAX_ATTEMPTS = int(os.getenv("JOB_MAX_ATTEMPTS", "5"))
JOB_RETRY_BASE_SECONDS = int(os.getenv("JOB_RETRY_BASE_SECONDS", "30"))
JOB_RETRY_MAX_SECONDS = int(os.getenv("JOB_RETRY_MAX_SECONDS", "3600"))
# A running job whose claim is older than this is treated as abandoned by a dead worker.
JOB_LEASE_SECONDS = int(os.getenv("JOB_LEASE_SECONDS", str(int(INTEGRATION_TIMEOUT_SECONDS * 3) + 60)))

WORKER_POLL_INTERVAL = int(os.getenv("WORKER_POLL_INTERVAL", "10"))
WORKER_BATCH_SIZE = int(os.getenv("WORKER_BATCH_SIZE", "10"))


class AppointmentPricing(BaseModel):
    """Per-modality price and session length shown to patients."""

    virtual: int = 120000
    in_person: int = 110000
    currency: str = "COP"
    duration_minutes: int = DEFAULT_SLOT_DURATION_MINUTES


APPOINTMENT_PRICING = AppointmentPricing(
    virtual=int(os.getenv("PRICE_VIRTUAL", "120000")),
    in_person=int(os.getenv("PRICE_IN_PERSON", "110000")),
    currency=os.getenv("PRICE_CURRENCY", "COP"),
)


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and not PSYCHOLOGIST_EMAIL:
        raise RuntimeError("PSYCHOLOGIST_EMAIL must be set in production.")
    if APP_ENV.lower() == "production" and DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point to Postgres in production.")
