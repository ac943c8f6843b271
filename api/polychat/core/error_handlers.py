"""
Error envelope handlers for the Polychat API.

Every failure that reaches an HTTP caller is rendered as

    {"error": {"code": ..., "message": ..., "status_code": ..., "context": {...}}}

``context`` is only present when the exception carries details. Translation
and delivery faults never get here; they degrade to the original text inside
the services.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

from polychat.core.exceptions import BaseAppException
from polychat.services.translation.errors import InvalidTranslationInput

logger = logging.getLogger(__name__)


def error_body(
    code: str,
    message: str,
    status_code: int,
    context: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    error: Dict[str, Any] = {
        "code": code,
        "message": message,
        "status_code": status_code,
    }
    if context:
        error["context"] = context
    return {"error": error}


async def base_exception_handler(
    request: Request, exc: BaseAppException
) -> JSONResponse:
    """Render application exceptions. 5xx logs at error level, 4xx at warning."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{request.method} {request.url.path} -> {exc.status_code} "
        f"{exc.error_code}: {exc.detail}",
        extra={"error_code": exc.error_code, "context": exc.context},
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.error_code, exc.detail, exc.status_code, exc.context),
        headers=exc.headers,
    )


async def translation_input_handler(
    request: Request, exc: InvalidTranslationInput
) -> JSONResponse:
    """Blank text or a missing target that slipped past route validation."""
    logger.warning(f"{request.method} {request.url.path} -> 422: {exc}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body(
            "VALIDATION_ERROR_TRANSLATION_INPUT",
            str(exc),
            status.HTTP_422_UNPROCESSABLE_ENTITY,
        ),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Generic 500 without internal details."""
    logger.exception(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}"
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(
            "INTERNAL_SERVER_ERROR",
            "An unexpected error occurred",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        ),
    )
