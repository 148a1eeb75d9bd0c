"""Render failures as ``{"error": {category, code, message}}`` responses.

Service errors carry their own category and status.  Request bodies and
query parameters FastAPI rejects before a route runs are rendered as
``invalid`` / ``invalid_input`` with the same envelope.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from joydrop.errors import InvalidInput, JoydropError

logger = logging.getLogger(__name__)


def _describe(errors: list[dict]) -> str:
    """``"body.latitude: Input should be a valid number"``, one per problem."""
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg', 'invalid value')}" if loc else err.get("msg", ""))
    return "; ".join(p for p in parts if p) or InvalidInput.message


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(JoydropError)
    async def joydrop_error_handler(request: Request, exc: JoydropError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        error = InvalidInput(_describe(exc.errors()))
        return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})
