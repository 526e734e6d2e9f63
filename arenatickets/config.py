from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone


def _env_bool(name: str, default: bool = False) -> bool:
    val = os.environ.get(name)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./signups.db")

PAYMENT_BACKEND = os.environ.get("PAYMENT_BACKEND", "mock").lower()
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_PUBLISHABLE_KEY = os.environ.get("STRIPE_PUBLISHABLE_KEY", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "").strip()
MOCK_SECRET = os.environ.get("MOCK_SECRET", "supersecret")
MOCK_WEBHOOK_URL = os.environ.get(
    "MOCK_WEBHOOK_URL",
    "http://localhost:8000/api/stripe/webhook"
)

MAIL_BACKEND = os.environ.get("MAIL_BACKEND", "smtp").lower()
EMAIL_HOST = os.environ.get("EMAIL_HOST", "")
EMAIL_PORT = int(os.environ.get("EMAIL_PORT", "587"))
EMAIL_SECURE = _env_bool("EMAIL_SECURE")
EMAIL_USER = os.environ.get("EMAIL_USER", "")
EMAIL_PASS = os.environ.get("EMAIL_PASS", "")
EMAIL_FROM = os.environ.get("EMAIL_FROM", EMAIL_USER or "tickets@amparena.com")
NOTIFY_EMAIL = os.environ.get("NOTIFY_EMAIL", "")

ADMIN_PASSCODE = os.environ.get("ADMIN_PASSCODE", "")
COMPETITOR_ADMIN_PASSCODE = os.environ.get("COMPETITOR_ADMIN_PASSCODE", "")
SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-secret-change-me")
SESSION_TTL_SECONDS = int(os.environ.get("SESSION_TTL_SECONDS", "3600"))

CODE_PREFIX = os.environ.get("CODE_PREFIX", "AMP")
CODE_RETRY_LIMIT = 10

PAYMENT_VERIFY_TIMEOUT = float(os.environ.get("PAYMENT_VERIFY_TIMEOUT", "10"))
MAIL_SEND_TIMEOUT = float(os.environ.get("MAIL_SEND_TIMEOUT", "20"))

UPLOAD_DIR = os.environ.get("UPLOAD_DIR", "uploads/competitors")
UPLOAD_MAX_FILES = 5
UPLOAD_MAX_BYTES = 10 * 1024 * 1024
UPLOAD_CHUNK_BYTES = 256 * 1024
UPLOAD_EXTENSIONS = {".pdf", ".zip", ".doc", ".docx", ".jpeg", ".jpg", ".png"}

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

TICKET_KINDS = {"general_admission": 2000, "vip": 5000}  # cents (USD)
DEFAULT_TICKET_KIND = "general_admission"
CURRENCY = "usd"


@dataclass(frozen=True)
class EventInfo:
    name: str
    tagline: str
    date_label: str
    time_label: str
    venue: str
    venue_address: str
    starts_at: datetime
    ends_at: datetime
    organizer_name: str
    organizer_email: str
    support_email: str
    domain: str
    file_prefix: str
    currency_symbol: str
    site_url: str

    @property
    def location(self) -> str:
        return f"{self.venue}, {self.venue_address}"


EVENT = EventInfo(
    name="Amp Arena",
    tagline="Build Olympics Final Battle",
    date_label="October 29th, 2025",
    time_label="TBD (Updates coming soon)",
    venue="The Midway SF",
    venue_address="900 Marin St, San Francisco, CA 94124",
    starts_at=datetime(2025, 10, 29, 18, 0, tzinfo=timezone.utc),
    ends_at=datetime(2025, 10, 29, 22, 0, tzinfo=timezone.utc),
    organizer_name="Amp Arena",
    organizer_email="info@ampcode.com",
    support_email="tickets@amparena.com",
    domain="build-olympics.com",
    file_prefix="amp-arena",
    currency_symbol="$",
    site_url=os.environ.get("SITE_URL", "https://build-olympics.onrender.com"),
)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=level or LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
