import hmac
import re
import time
from datetime import datetime, timezone
from typing import Optional

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MAX_EMAIL_LENGTH = 254


# ----------------------------
# Time
# ----------------------------
def now_ts() -> float:
    # epoch seconds, as stored in created_at columns
    return time.time()


def to_iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


# ----------------------------
# Input checks
# ----------------------------
def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    if len(email) > MAX_EMAIL_LENGTH:
        return False
    return EMAIL_RE.match(email) is not None


def ct_equal(a: Optional[str], b: Optional[str]) -> bool:
    return hmac.compare_digest((a or "").encode(), (b or "").encode())


# ----------------------------
# Display
# ----------------------------
def format_price(minor_units: int, symbol: str = "$") -> str:
    return f"{symbol}{minor_units / 100:.2f}"


def humanize_kind(kind: str) -> str:
    # general_admission -> General Admission
    return kind.replace("_", " ").title()
