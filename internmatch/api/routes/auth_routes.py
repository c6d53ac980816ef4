"""
Authentication Routes

POST /auth/register        - Register a student or company (sends verification code)
POST /auth/login           - Login and get JWT token (verified accounts only)
POST /auth/verify-email    - Verify with a code, or resend the code when none is given
POST /auth/forgot-password - Send a password reset code
PUT  /auth/reset-password  - Reset the password with the code
GET  /auth/me              - Current user and profile
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from starlette.concurrency import run_in_threadpool

from internmatch.api.serializers import profile_for_user, user_to_dict
from internmatch.core.auth import CurrentUser, get_current_user
from internmatch.core.errors import (
    AuthorizationError, ConflictError, InvalidCredentialsError, NotFoundError, ValidationError, envelope,
)
from internmatch.core.security import (
    generate_reset_code, generate_verification_code, hash_password, issue_token,
    validate_password, verify_password,
)
from internmatch.db.models import Company, Student, User, utcnow
from internmatch.db.postgres import get_db_session
from internmatch.schemas.schemas import (
    ForgotPasswordRequest, LoginRequest, RegisterRequest, ResetPasswordRequest, VerifyEmailRequest,
)
from internmatch.services.analytics import fire_and_forget, track_event
from internmatch.services.email import Mailer, get_mailer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

CODE_TTL = timedelta(minutes=15)
RESEND_MESSAGE = "If an account with that email exists, a verification code has been sent."
FORGOT_MESSAGE = "If an account with that email exists, a password reset code has been sent."


def _display_name(db, user: User) -> str:
    if user.role == "student":
        student = db.scalar(select(Student).where(Student.user_id == user.id))
        return student.first_name if student else user.email
    company = db.scalar(select(Company).where(Company.user_id == user.id))
    return company.company_name if company else user.email

@router.post("/register", status_code=201)
async def register(request: RegisterRequest, mailer: Mailer = Depends(get_mailer)):
    """
    Register a new student or company account.

    The account starts unverified; a 6-character code is emailed and must be
    confirmed through /auth/verify-email before login.
    """
    password_error = validate_password(request.password)
    if password_error:
        raise ValidationError(password_error)
    if request.role == "student" and not (request.first_name and request.last_name):
        raise ValidationError("First name and last name are required for students")
    if request.role == "company" and not request.company_name:
        raise ValidationError("Company name is required for companies")

    password_hash = await run_in_threadpool(hash_password, request.password)
    code = generate_verification_code()

    try:
        with get_db_session() as db:
            if db.scalar(select(User.id).where(User.email == request.email)):
                raise ConflictError("User with this email already exists")

            user = User(
                email=request.email,
                password_hash=password_hash,
                role=request.role,
                is_verified=False,
                verification_code=code,
                verification_expires=utcnow() + CODE_TTL,
            )
            if request.role == "student":
                user.student = Student(
                    first_name=request.first_name.strip(),
                    last_name=request.last_name.strip(),
                    phone_number=request.phone_number,
                    university=request.university,
                    major=request.major,
                )
            else:
                user.company = Company(
                    company_name=request.company_name.strip(),
                    industry=request.industry,
                    website=request.website,
                )
            db.add(user)
    except IntegrityError as e:
        raise ConflictError("User with this email already exists") from e

    # Failure surfaces as 500; the user can ask for a new code via verify-email
    await run_in_threadpool(mailer.send_verification_email, user.email, code)

    track_event(user.id, "user.registered", {"role": user.role, "registration_source": "web"})
    token = issue_token(user.id, user.email, user.role, False)
    return envelope(
        {"token": token, "user": user_to_dict(user)},
        message="Registration successful. Please check your email for verification code.",
    )

@router.post("/login")
async def login(request: LoginRequest):
    """
    Login and receive JWT access token.

    Include token in requests: Authorization: Bearer <token>
    """
    with get_db_session() as db:
        user = db.scalar(select(User).where(User.email == request.email))
        if user is None:
            raise InvalidCredentialsError()

        if not await run_in_threadpool(verify_password, request.password, user.password_hash):
            raise InvalidCredentialsError()

        if not user.is_verified:
            raise AuthorizationError("Please verify your email before logging in", code="email_not_verified")

        profile = profile_for_user(user)

    track_event(user.id, "user.login", {"role": user.role})
    token = issue_token(user.id, user.email, user.role, user.is_verified)
    return envelope({"token": token, "user": {**user_to_dict(user), "profile": profile}}, message="Login successful")

@router.post("/verify-email")
async def verify_email(request: VerifyEmailRequest, mailer: Mailer = Depends(get_mailer)):
    """
    With `code`: confirm the address and return a fresh token (is_verified=true).
    Without `code`: resend a code. The answer is the same whether or not the
    account exists or is already verified.
    """
    if not request.code:
        new_code = generate_verification_code()
        with get_db_session() as db:
            user = db.scalar(select(User).where(User.email == request.email))
            should_send = user is not None and not user.is_verified
            if should_send:
                user.verification_code = new_code
                user.verification_expires = utcnow() + CODE_TTL
        if should_send:
            await run_in_threadpool(fire_and_forget, "verification email", mailer.send_verification_email, request.email, new_code)
        return envelope(message=RESEND_MESSAGE)

    with get_db_session() as db:
        user = db.scalar(select(User).where(User.email == request.email))
        if user is None or not user.verification_code or user.verification_code != request.code.strip().upper():
            raise ValidationError("Invalid verification code")
        if user.verification_expires and utcnow() > user.verification_expires:
            raise ValidationError("Verification code has expired")

        user.is_verified = True
        user.verification_code = None
        user.verification_expires = None
        name = _display_name(db, user)

    # Welcome email must never fail the verification itself
    await run_in_threadpool(fire_and_forget, "welcome email", mailer.send_welcome_email, user.email, name)
    track_event(user.id, "user.verified", {"role": user.role})

    token = issue_token(user.id, user.email, user.role, True)
    return envelope({"token": token, "user": user_to_dict(user)}, message="Email verified successfully")

@router.post("/forgot-password")
async def forgot_password(request: ForgotPasswordRequest, mailer: Mailer = Depends(get_mailer)):
    """Always answers the same way, so account existence is not revealed."""
    code = generate_reset_code()
    with get_db_session() as db:
        user = db.scalar(select(User).where(User.email == request.email))
        if user is not None:
            user.verification_code = code
            user.verification_expires = utcnow() + CODE_TTL

    if user is not None:
        await run_in_threadpool(fire_and_forget, "password reset email", mailer.send_password_reset_email, request.email, code)
    else:
        logger.info("Password reset requested for unknown email")
    return envelope(message=FORGOT_MESSAGE)

@router.put("/reset-password")
async def reset_password(request: ResetPasswordRequest):
    password_error = validate_password(request.new_password)
    if password_error:
        raise ValidationError(password_error)

    new_hash = await run_in_threadpool(hash_password, request.new_password)
    with get_db_session() as db:
        user = db.scalar(select(User).where(User.email == request.email))
        if user is None or not user.verification_code or user.verification_code != request.code.strip():
            raise ValidationError("Invalid reset code")
        if user.verification_expires and utcnow() > user.verification_expires:
            raise ValidationError("Reset code has expired")

        user.password_hash = new_hash
        user.verification_code = None
        user.verification_expires = None

    return envelope(message="Password reset successfully")

@router.get("/me")
async def get_me(current: CurrentUser = Depends(get_current_user)):
    """Get current logged-in user info with role profile."""
    with get_db_session() as db:
        user = db.get(User, current.user_id)
        if user is None:
            raise NotFoundError("User not found")
        data = {**user_to_dict(user), "profile": profile_for_user(user)}
    return envelope(data)
