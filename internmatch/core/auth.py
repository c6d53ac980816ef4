"""
Request authentication.

Provides:
- RequestAuthenticator: middleware that verifies the bearer token once
  and forwards the identity as trusted x-user-* headers
- FastAPI dependencies for protected routes (read the trusted headers only)
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple
from urllib.parse import quote, unquote

from fastapi import Depends, Request
from sqlalchemy import select
from starlette.middleware.base import BaseHTTPMiddleware

from internmatch.core.errors import AuthenticationError, AuthorizationError, NotFoundError, error_response
from internmatch.core.security import InvalidOrExpiredToken, verify_token
from internmatch.db.models import Company, Student
from internmatch.db.postgres import get_db_session

logger = logging.getLogger(__name__)

# Prefix match, any method
PUBLIC_PREFIXES = (
    "/api/auth/login",
    "/api/auth/register",
    "/api/auth/verify-email",
    "/api/auth/forgot-password",
    "/api/auth/reset-password",
    "/api/payway/return",  # provider callback carries no bearer token
)

# Exact path, GET only
BROWSING_PATHS = ("/api/job", "/api/company", "/api/students")

HEADER_USER_ID = "x-user-id"
HEADER_USER_EMAIL = "x-user-email"
HEADER_USER_ROLE = "x-user-role"
HEADER_USER_VERIFIED = "x-user-verified"


def is_public_route(path: str, method: str) -> bool:
    if any(path.startswith(prefix) for prefix in PUBLIC_PREFIXES):
        return True
    return method.upper() == "GET" and path in BROWSING_PATHS


def _bearer_token(headers: Iterable[Tuple[bytes, bytes]]) -> Optional[str]:
    for key, value in headers:
        if key.lower() == b"authorization":
            raw = value.decode("latin-1")
            if raw.startswith("Bearer ") and raw[7:].strip():
                return raw[7:].strip()
            return None
    return None


class RequestAuthenticator(BaseHTTPMiddleware):
    """
    Guards every /api/ path that is not on the public allowlist.

    Missing header, malformed header and a token that fails verification all
    produce the same 401 body. Client-sent x-user-* headers are always dropped
    so the injected ones can be trusted downstream.
    """

    async def dispatch(self, request: Request, call_next):
        headers: List[Tuple[bytes, bytes]] = [
            (k, v) for k, v in request.scope["headers"] if not k.lower().startswith(b"x-user-")
        ]
        path = request.url.path

        if path.startswith("/api/") and not is_public_route(path, request.method):
            token = _bearer_token(headers)
            try:
                if token is None:
                    raise InvalidOrExpiredToken()
                claims = verify_token(token)
            except InvalidOrExpiredToken:
                return error_response(401, AuthenticationError.public_message, headers={"WWW-Authenticate": "Bearer"})

            headers += [
                (HEADER_USER_ID.encode(), claims.user_id.encode()),
                (HEADER_USER_EMAIL.encode(), quote(claims.email, safe="@+").encode()),
                (HEADER_USER_ROLE.encode(), claims.role.encode()),
                (HEADER_USER_VERIFIED.encode(), b"true" if claims.is_verified else b"false"),
            ]

        request.scope["headers"] = headers
        return await call_next(request)


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    email: str
    role: str
    is_verified: bool
    student_id: Optional[str] = None
    company_id: Optional[str] = None


async def get_current_user(request: Request) -> CurrentUser:
    """
    FastAPI dependency - identity injected by RequestAuthenticator.

    Usage:
        @router.get("/protected")
        async def route(user: CurrentUser = Depends(get_current_user)):
            ...
    """
    user_id = request.headers.get(HEADER_USER_ID)
    role = request.headers.get(HEADER_USER_ROLE)
    if not user_id or not role:
        raise AuthenticationError()
    return CurrentUser(
        user_id=user_id,
        email=unquote(request.headers.get(HEADER_USER_EMAIL, "")),
        role=role,
        is_verified=request.headers.get(HEADER_USER_VERIFIED) == "true",
    )


def require_role(*roles: str):
    """Dependency factory - allow only the given roles."""

    async def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise AuthorizationError("Insufficient permissions")
        return user

    return dependency


require_admin = require_role("admin")


async def get_current_student(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Dependency - Require student role and resolve student_id."""
    if user.role != "student":
        raise AuthorizationError("Students only")

    with get_db_session() as db:
        student_id = db.scalar(select(Student.id).where(Student.user_id == user.user_id))

    if not student_id:
        raise NotFoundError("Student profile not found")
    return dataclasses.replace(user, student_id=student_id)


async def get_current_company(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Dependency - Require company role and resolve company_id."""
    if user.role != "company":
        raise AuthorizationError("Companies only")

    with get_db_session() as db:
        company_id = db.scalar(select(Company.id).where(Company.user_id == user.user_id))

    if not company_id:
        raise NotFoundError("Company profile not found")
    return dataclasses.replace(user, company_id=company_id)
