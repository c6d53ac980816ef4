"""
Pydantic Schemas - Request Validation

All API request schemas in one file for simplicity. Responses use the
{success, data?, error?, message?} envelope built in core/errors.py.
"""

from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List, Literal
from enum import Enum


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, Enum):
    student = "student"
    company = "company"
    admin = "admin"


class JobType(str, Enum):
    full_time = "full-time"
    part_time = "part-time"
    internship = "internship"
    contract = "contract"


class JobStatus(str, Enum):
    draft = "draft"
    open = "open"
    closed = "closed"


class ExperienceLevel(str, Enum):
    entry = "entry"
    mid = "mid"
    senior = "senior"
    executive = "executive"


class ApplicationStatus(str, Enum):
    applied = "applied"
    shortlisted = "shortlisted"
    rejected = "rejected"
    interviewed = "interviewed"
    hired = "hired"


# ============================================================
# AUTH SCHEMAS
# ============================================================

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    role: Literal["student", "company"]
    # Student profile
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone_number: Optional[str] = None
    university: Optional[str] = None
    major: Optional[str] = None
    # Company profile
    company_name: Optional[str] = Field(None, max_length=200)
    industry: Optional[str] = None
    website: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class LoginRequest(BaseModel):
    email: EmailStr
    password: str

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class VerifyEmailRequest(BaseModel):
    """Without a code, a fresh code is sent instead."""
    email: EmailStr
    code: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class ForgotPasswordRequest(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=1)
    new_password: str

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


# ============================================================
# STUDENT SCHEMAS
# ============================================================

class StudentUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone_number: Optional[str] = None
    location: Optional[str] = None
    university: Optional[str] = None
    degree: Optional[str] = None
    major: Optional[str] = None
    graduation_year: Optional[int] = Field(None, ge=1950, le=2100)
    gpa: Optional[float] = Field(None, ge=0, le=4.0)
    career_interest: Optional[str] = None
    about_me: Optional[str] = None
    skills: Optional[List[str]] = None  # replaces the full skill list


# ============================================================
# COMPANY SCHEMAS
# ============================================================

class CompanyUpdate(BaseModel):
    company_name: Optional[str] = Field(None, min_length=1, max_length=200)
    industry: Optional[str] = None
    company_size: Optional[str] = None
    website: Optional[str] = None
    location: Optional[str] = None
    headquarters: Optional[str] = None
    description: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = None
    has_internship_program: Optional[bool] = None


# ============================================================
# JOB SCHEMAS
# ============================================================

class JobCreate(BaseModel):
    job_title: str = Field(..., min_length=3, max_length=200)
    job_description: str = Field(..., min_length=10)
    status: JobStatus = JobStatus.draft
    requirements: List[str] = []
    benefits: List[str] = []
    salary_range: Optional[str] = None
    location: Optional[str] = None
    job_type: Optional[JobType] = None
    experience_level: Optional[ExperienceLevel] = None


class JobUpdate(BaseModel):
    job_title: Optional[str] = Field(None, min_length=3, max_length=200)
    job_description: Optional[str] = Field(None, min_length=10)
    status: Optional[JobStatus] = None
    requirements: Optional[List[str]] = None
    benefits: Optional[List[str]] = None
    salary_range: Optional[str] = None
    location: Optional[str] = None
    job_type: Optional[JobType] = None
    experience_level: Optional[ExperienceLevel] = None


# ============================================================
# APPLICATION SCHEMAS
# ============================================================

class ApplicationCreate(BaseModel):
    cover_letter: Optional[str] = Field(None, max_length=5000)


class ApplicationStatusUpdate(BaseModel):
    status: ApplicationStatus


# ============================================================
# PAYMENT & SUBSCRIPTION SCHEMAS
# ============================================================

class CheckoutRequest(BaseModel):
    plan: Optional[str] = None
    amount: Optional[float] = Field(None, gt=0)
    continue_success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class TransactionRequest(BaseModel):
    tran_id: str = Field(..., min_length=1)


# ============================================================
# AI SCHEMAS
# ============================================================

class AtsRequest(BaseModel):
    resume_id: Optional[str] = None
    resume_text: Optional[str] = None
    job_id: Optional[str] = None


class ResumeBuildRequest(BaseModel):
    title: Optional[str] = None
    sections: dict = Field(..., description="summary, education, experience, projects, skills")


class RoleSuggestionRequest(BaseModel):
    resume_id: Optional[str] = None


class InterviewPrepRequest(BaseModel):
    application_id: str
    type: Literal["questions", "tips"]


class ApplicationAIRequest(BaseModel):
    application_id: str


class InterviewQuestionsRequest(BaseModel):
    application_id: str
    count: int = Field(5, ge=1, le=20)


# ============================================================
# ADMIN SCHEMAS
# ============================================================

class AdminUserUpdate(BaseModel):
    user_id: str
    role: Optional[UserRole] = None
    is_verified: Optional[bool] = None
