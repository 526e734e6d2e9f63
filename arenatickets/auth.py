"""Dashboard sessions.

A correct passcode buys a signed, expiring token scoped to one role. The
passcode itself never leaves the server.
"""
from typing import Optional

from fastapi import Header
from itsdangerous import BadData, SignatureExpired, URLSafeTimedSerializer

from . import config
from .errors import AuthenticationError, NotConfiguredError
from .helpers import ct_equal

ROLE_ADMIN = "admin"
ROLE_COMPETITOR_ADMIN = "competitor-admin"

_PASSCODES = {
    ROLE_ADMIN: lambda: config.ADMIN_PASSCODE,
    ROLE_COMPETITOR_ADMIN: lambda: config.COMPETITOR_ADMIN_PASSCODE,
}


def _serializer(role: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(config.SESSION_SECRET, salt=f"arena-{role}")


def check_passcode(role: str, passcode: str) -> None:
    expected = _PASSCODES[role]()
    if not expected:
        raise NotConfiguredError(f"{role} passcode not configured")
    if not passcode or not ct_equal(passcode, expected):
        raise AuthenticationError("Invalid passcode")


def issue_token(role: str) -> str:
    return _serializer(role).dumps({"role": role})


def verify_token(role: str, token: str,
                 max_age: Optional[int] = None) -> dict:
    max_age = config.SESSION_TTL_SECONDS if max_age is None else max_age
    try:
        data = _serializer(role).loads(token, max_age=max_age)
    except SignatureExpired:
        raise AuthenticationError("Session expired")
    except BadData:
        raise AuthenticationError("Invalid session")
    if not isinstance(data, dict) or data.get("role") != role:
        raise AuthenticationError("Invalid session")
    return data


def bearer_token(authorization: Optional[str]) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Missing bearer token")
    return token.strip()


# ----------------------------
# FastAPI dependencies
# ----------------------------
async def require_admin(
    authorization: Optional[str] = Header(None),
) -> dict:
    return verify_token(ROLE_ADMIN, bearer_token(authorization))


async def require_competitor_admin(
    authorization: Optional[str] = Header(None),
) -> dict:
    return verify_token(ROLE_COMPETITOR_ADMIN, bearer_token(authorization))
