from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, NoReturn, TypeVar

from fastapi import HTTPException

from podflow.core.errors import (
    AuthenticationError,
    ConfigurationError,
    PodflowError,
    TransitionRejected,
    UpstreamError,
    ValidationError,
    WorkflowNotFound,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def raise_http(exc: PodflowError) -> NoReturn:
    """Translate a domain error into the matching HTTP response."""

    if isinstance(exc, ConfigurationError):
        logger.error("Configuration error: %s", exc)
        raise HTTPException(status_code=500, detail={"error": str(exc), "kind": "configuration"}) from exc
    if isinstance(exc, TransitionRejected):
        raise HTTPException(status_code=409, detail=exc.reason) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if isinstance(exc, WorkflowNotFound):
        raise HTTPException(status_code=404, detail="workflow not found") from exc
    if isinstance(exc, UpstreamError):
        raise HTTPException(status_code=502, detail={"error": exc.message, "service": exc.service}) from exc
    if isinstance(exc, AuthenticationError):
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    raise HTTPException(status_code=500, detail=str(exc)) from exc


async def call_service(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking service call off the event loop, translating its errors."""

    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except PodflowError as exc:
        raise_http(exc)
