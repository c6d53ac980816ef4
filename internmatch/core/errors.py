"""
Error taxonomy and the JSON envelope handlers.

Every endpoint answers {success, data?, error?, message?}. Handlers raise the
AppError subclasses below; the exception handlers registered in main.py turn
them (and anything unexpected) into the envelope so no stack trace ever
reaches a client.
"""

import logging
from typing import Any, Optional

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

logger = logging.getLogger(__name__)


class AppError(Exception):
    code = "app_error"
    status_code = 500
    public_message: Optional[str] = None

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    @property
    def client_message(self) -> str:
        return self.public_message or self.message


class ValidationError(AppError):
    code = "validation_error"
    status_code = 400


class AuthenticationError(AppError):
    """Missing, malformed, forged or expired token. Always the same text."""
    code = "unauthenticated"
    status_code = 401
    public_message = "Authentication required"

    def __init__(self, message: str = "Authentication required", **kwargs):
        super().__init__(message, **kwargs)


class InvalidCredentialsError(AuthenticationError):
    code = "invalid_credentials"
    public_message = "Invalid email or password"

    def __init__(self, message: str = "Invalid email or password", **kwargs):
        super().__init__(message, **kwargs)


class AuthorizationError(AppError):
    code = "forbidden"
    status_code = 403


class QuotaExceededError(AuthorizationError):
    code = "quota_exceeded"


class NotFoundError(AppError):
    code = "not_found"
    status_code = 404


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class UpstreamError(AppError):
    """Payment / LLM / storage / mail provider failure. Details stay server-side."""
    code = "upstream_error"
    status_code = 500
    public_message = "An external service failed to process the request"


class UnexpectedError(AppError):
    code = "internal_error"
    status_code = 500
    public_message = "Internal server error"


def envelope(data: Any = None, message: Optional[str] = None) -> dict:
    """Success envelope."""
    body: dict = {"success": True}
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    return body


def error_response(status_code: int, error: str, message: Optional[str] = None, headers: Optional[dict] = None) -> JSONResponse:
    body: dict = {"success": False, "error": error}
    if message is not None:
        body["message"] = message
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
    else:
        logger.warning("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return error_response(exc.status_code, exc.client_message, headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    detail = f"{location}: {message}" if location else message
    logger.warning("%s %s -> 400 %s", request.method, request.url.path, detail)
    return error_response(400, detail)


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
    return error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return error_response(500, UnexpectedError.public_message)
