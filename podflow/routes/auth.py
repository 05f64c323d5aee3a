from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from podflow.core.errors import PodflowError
from podflow.infrastructure import SESSION_COOKIE
from podflow.infrastructure.sessions import SESSION_TTL
from podflow.routes.errors import raise_http

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login")
async def login(request: Request, payload: dict) -> JSONResponse:
    email = str(payload.get("email") or "")
    password = str(payload.get("password") or "")
    if not email or not password:
        raise HTTPException(status_code=400, detail="email and password are required")

    sessions = request.app.state.sessions
    try:
        sessions.check_credentials(email, password)
        token = sessions.issue(email)
    except PodflowError as exc:
        logger.warning("Login rejected for %s", email)
        raise_http(exc)

    response = JSONResponse({"success": True})
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=int(SESSION_TTL.total_seconds()),
        httponly=True,
        samesite="lax",
        secure=request.url.scheme == "https",
        path="/",
    )
    logger.info("Operator %s logged in", email)
    return response


@router.post("/logout")
async def logout(request: Request) -> JSONResponse:
    token = request.cookies.get(SESSION_COOKIE)
    try:
        claims = request.app.state.sessions.verify(token)
    except PodflowError:
        claims = None
    if claims and claims.get("sid"):
        request.app.state.pollers.cancel(claims["sid"])

    response = JSONResponse({"success": True})
    response.delete_cookie(SESSION_COOKIE, path="/")
    return response
