"""Translate typed identity failures into the public error envelope."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..domain.errors import ErrorCategory, IdentityError

logger = logging.getLogger(__name__)


def error_body(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, "details": details or {}}}


async def handle_identity_error(request: Request, exc: IdentityError) -> JSONResponse:
    logger.info(
        "request failed method=%s path=%s code=%s status=%s",
        request.method,
        request.url.path,
        exc.category.value,
        exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.category.value, exc.message, exc.details),
    )


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(ErrorCategory.validation.value, "request validation failed", {"errors": errors}),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error method=%s path=%s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(ErrorCategory.internal.value, "internal server error"),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(IdentityError, handle_identity_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
