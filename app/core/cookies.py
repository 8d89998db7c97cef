"""Signed session cookie helpers."""
from __future__ import annotations

from itsdangerous import BadSignature, URLSafeSerializer

from app.core.config import settings
from app.core.errors import AuthError

SESSION_COOKIE_NAME = "user_session"
_serializer = URLSafeSerializer(settings.SECRET_KEY, salt="session-cookie")


def make_session_value(email: str) -> str:
    """Create a signed session payload containing the user email."""
    return _serializer.dumps({"email": email})


def parse_session_cookie(raw_value: str | None) -> str:
    """Parse and validate the signed session cookie, returning the user email."""
    if not raw_value:
        raise AuthError("Not authenticated")
    try:
        data = _serializer.loads(raw_value)
    except BadSignature:
        raise AuthError("Invalid session") from None
    email = data.get("email") if isinstance(data, dict) else None
    if not email:
        raise AuthError("Invalid session")
    return email
