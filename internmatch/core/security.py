"""
Security primitives - token codec and credential validation.

Provides:
- JWT issue/verify (python-jose, HS256, 7-day validity)
- Password hashing with bcrypt (passlib)
- Email / password-strength rules
- Verification and reset code generation
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from internmatch.core.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

ROLES = ("student", "company", "admin")

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

CODE_LETTERS = "ABCDEFGHJKLMNPQRSTUVWXYZ"
CODE_DIGITS = "23456789"


class InvalidOrExpiredToken(Exception):
    """Single failure kind for verify_token; the cause is never exposed."""


@dataclass(frozen=True)
class IdentityClaims:
    user_id: str
    email: str
    role: str
    is_verified: bool

    def to_claims(self) -> dict:
        return {
            "userId": self.user_id,
            "email": self.email,
            "role": self.role,
            "isVerified": self.is_verified,
        }


# ============================================================
# TOKEN CODEC
# ============================================================

def issue_token(user_id: str, email: str, role: str, is_verified: bool, *, now: Optional[datetime] = None) -> str:
    """Sign identity claims with the server secret. Valid for jwt_expire_days."""
    if role not in ROLES:
        raise ValueError(f"unknown role: {role}")
    issued = now or datetime.now(timezone.utc)
    expire = issued + timedelta(days=settings.jwt_expire_days)
    claims = IdentityClaims(str(user_id), email, role, bool(is_verified)).to_claims()
    claims.update({"iat": int(issued.timestamp()), "exp": int(expire.timestamp())})
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> IdentityClaims:
    """
    Verify signature and expiry and return the identity claims.

    Raises InvalidOrExpiredToken for every failure: bad signature, malformed
    payload, missing claims and expiry all look the same to the caller.
    """
    if not token:
        raise InvalidOrExpiredToken()
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.debug("Token rejected: %s", e)
        raise InvalidOrExpiredToken() from None

    user_id = payload.get("userId")
    email = payload.get("email")
    role = payload.get("role")
    is_verified = payload.get("isVerified")
    if (
        not isinstance(user_id, str) or not user_id
        or not isinstance(email, str)
        or role not in ROLES
        or not isinstance(is_verified, bool)
        or "exp" not in payload
    ):
        logger.debug("Token rejected: claim shape")
        raise InvalidOrExpiredToken()

    return IdentityClaims(user_id=user_id, email=email, role=role, is_verified=is_verified)


# ============================================================
# CREDENTIALS
# ============================================================

def hash_password(password: str) -> str:
    """Hash password with bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against hash."""
    if not plain_password or not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def validate_email(email: str) -> bool:
    return bool(email) and EMAIL_RE.match(email) is not None


def validate_password(password: str) -> Optional[str]:
    """Return the first failed strength rule, or None when the password is acceptable."""
    if len(password) < 8:
        return "Password must be at least 8 characters long"
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"\d", password):
        return "Password must contain at least one number"
    return None


def generate_verification_code(length: int = 6) -> str:
    """Uppercase code with at least one letter and one digit, shuffled."""
    alphabet = CODE_LETTERS + CODE_DIGITS
    chars = [secrets.choice(CODE_LETTERS), secrets.choice(CODE_DIGITS)]
    chars += [secrets.choice(alphabet) for _ in range(length - 2)]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def generate_reset_code() -> str:
    """Six-digit numeric password reset code."""
    return str(100000 + secrets.randbelow(900000))
