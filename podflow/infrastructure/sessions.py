"""Session tokens for the single-operator login."""
from __future__ import annotations

import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from podflow.core.errors import AuthenticationError, ConfigurationError
from podflow.core.settings import Settings
from podflow.domain import new_token

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"
SESSION_TTL = timedelta(hours=24)
ALGORITHM = "HS256"


class SessionManager:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _secret(self) -> str:
        if not self._settings.jwt_secret:
            raise ConfigurationError("JWT_SECRET is not configured")
        return self._settings.jwt_secret

    def check_credentials(self, email: str, password: str) -> None:
        admin_email = self._settings.admin_email
        admin_password = self._settings.admin_password
        if not admin_email or not admin_password:
            raise ConfigurationError("ADMIN_EMAIL and ADMIN_PASS must be configured")
        email_ok = hmac.compare_digest(email.encode("utf-8"), admin_email.encode("utf-8"))
        password_ok = hmac.compare_digest(password.encode("utf-8"), admin_password.encode("utf-8"))
        if not (email_ok and password_ok):
            raise AuthenticationError("Invalid credentials")

    def issue(self, email: str) -> str:
        now = datetime.now(timezone.utc)
        claims = {"email": email, "sid": new_token(16), "iat": now, "exp": now + SESSION_TTL}
        return jwt.encode(claims, self._secret(), algorithm=ALGORITHM)

    def verify(self, token: str | None) -> dict[str, Any] | None:
        """Return the token claims, or ``None`` when the session is absent or invalid."""

        if not token:
            return None
        try:
            return jwt.decode(token, self._secret(), algorithms=[ALGORITHM])
        except JWTError as exc:
            logger.warning("Session verification failed: %s", exc)
            return None


def check_callback_secret(expected: str | None, provided: str | None) -> None:
    if not expected:
        raise ConfigurationError("CALLBACK_SECRET is not configured")
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise AuthenticationError("Invalid callback secret")
