from __future__ import annotations

from typing import Any

from fastapi import Header, HTTPException, Request

from podflow.core.errors import PodflowError
from podflow.infrastructure import SESSION_COOKIE, check_callback_secret
from podflow.routes.errors import raise_http


def require_session(request: Request) -> dict[str, Any]:
    """Return the session claims or answer 401."""

    token = request.cookies.get(SESSION_COOKIE)
    try:
        claims = request.app.state.sessions.verify(token)
    except PodflowError as exc:
        raise_http(exc)
    if not claims:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return claims


def require_callback_secret(
    request: Request,
    x_callback_secret: str | None = Header(default=None),
) -> None:
    try:
        check_callback_secret(request.app.state.settings.callback_secret, x_callback_secret)
    except PodflowError as exc:
        raise_http(exc)
