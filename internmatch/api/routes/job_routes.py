"""
Job Routes

GET    /job            - Browse jobs with filters (public)
POST   /job            - Create job posting (company only)
GET    /job/{id}       - Get job details
PUT    /job/{id}       - Update job (owning company only)
DELETE /job/{id}       - Delete job (owning company only)
POST   /job/{id}/apply - Apply to job (student only)
GET    /job/{id}/apply - Has the current student applied?
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from starlette.concurrency import run_in_threadpool

from internmatch.api.serializers import application_to_dict, job_to_dict
from internmatch.core.auth import CurrentUser, get_current_company, get_current_student, get_current_user
from internmatch.core.errors import ConflictError, NotFoundError, ValidationError, envelope
from internmatch.core.results import parse_enum, parse_int
from internmatch.db.models import Application, Company, JobPosting, Student, User
from internmatch.db.postgres import get_db_session
from internmatch.schemas.schemas import (
    ApplicationCreate, ExperienceLevel, JobCreate, JobStatus, JobType, JobUpdate,
)
from internmatch.services.analytics import fire_and_forget, track_event
from internmatch.services.email import Mailer, get_mailer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/job", tags=["Jobs"])


def load_owned_job(db, job_id: str, company_id: str) -> JobPosting:
    job = db.get(JobPosting, job_id)
    if job is None or job.company_id != company_id:
        raise NotFoundError("Job not found or access denied")
    return job


def build_posting(company_id: str, job: JobCreate) -> JobPosting:
    return JobPosting(
        company_id=company_id,
        job_title=job.job_title.strip(),
        job_description=job.job_description,
        status=job.status.value,
        requirements=job.requirements,
        benefits=job.benefits,
        salary_range=job.salary_range,
        location=job.location,
        job_type=job.job_type.value if job.job_type else None,
        experience_level=job.experience_level.value if job.experience_level else None,
    )


def apply_job_changes(job: JobPosting, update: JobUpdate) -> None:
    """Copy the fields set on the request onto the posting. Raises if nothing was sent."""
    changes = update.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")
    for field, value in changes.items():
        if hasattr(value, "value"):
            value = value.value
        setattr(job, field, value)


@router.get("")
async def list_jobs(
    status: Optional[str] = Query(None, description="open (default) or closed"),
    job_type: Optional[str] = Query(None),
    experience_level: Optional[str] = Query(None),
    location: Optional[str] = Query(None),
    company_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Search in title"),
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
):
    """List job postings with filters and pagination, newest first.

    Drafts never appear here; a company sees its own through /company/{id}/job.
    """
    status_filter = parse_enum(status, JobStatus, "status").unwrap() or JobStatus.open
    if status_filter == JobStatus.draft:
        raise ValidationError("Draft jobs are not listed publicly")
    job_type_filter = parse_enum(job_type, JobType, "job_type").unwrap()
    level_filter = parse_enum(experience_level, ExperienceLevel, "experience_level").unwrap()
    page_size = parse_int(limit, "limit", default=20, maximum=100).unwrap()
    skip = parse_int(offset, "offset", default=0, minimum=0).unwrap()

    conditions = [JobPosting.status == status_filter.value]
    if job_type_filter:
        conditions.append(JobPosting.job_type == job_type_filter.value)
    if level_filter:
        conditions.append(JobPosting.experience_level == level_filter.value)
    if location:
        conditions.append(JobPosting.location.ilike(f"%{location}%"))
    if company_id:
        conditions.append(JobPosting.company_id == company_id)
    if search:
        conditions.append(JobPosting.job_title.ilike(f"%{search}%"))

    with get_db_session() as db:
        total = db.scalar(select(func.count()).select_from(JobPosting).where(*conditions))
        rows = db.execute(
            select(JobPosting, Company)
            .join(Company, JobPosting.company_id == Company.id)
            .where(*conditions)
            .order_by(JobPosting.created_at.desc())
            .limit(page_size)
            .offset(skip)
        ).all()
        jobs = [job_to_dict(job, company) for job, company in rows]

    return envelope({"jobs": jobs, "pagination": {"total": total, "limit": page_size, "offset": skip}})


@router.post("", status_code=201)
async def create_job(job: JobCreate, company: CurrentUser = Depends(get_current_company)):
    """Create a new job posting. Only companies can create jobs."""
    with get_db_session() as db:
        posting = build_posting(company.company_id, job)
        db.add(posting)
        db.flush()
        data = job_to_dict(posting)

    track_event(company.user_id, "job.created", {"job_id": data["id"], "status": data["status"]})
    return envelope(data, message="Job created")


@router.get("/{job_id}")
async def get_job(job_id: str, user: CurrentUser = Depends(get_current_user)):
    """Get job details. Drafts are only visible to the company that owns them."""
    with get_db_session() as db:
        row = db.execute(
            select(JobPosting, Company).join(Company, JobPosting.company_id == Company.id).where(JobPosting.id == job_id)
        ).first()
        if row is None:
            raise NotFoundError("Job not found")
        job, company = row
        if job.status == JobStatus.draft.value and company.user_id != user.user_id and user.role != "admin":
            raise NotFoundError("Job not found")
        data = job_to_dict(job, company)
        data["application_count"] = db.scalar(
            select(func.count()).select_from(Application).where(Application.job_id == job.id)
        )
    return envelope(data)


@router.put("/{job_id}")
async def update_job(job_id: str, update: JobUpdate, company: CurrentUser = Depends(get_current_company)):
    """Update a job posting. Only the owning company can update."""
    with get_db_session() as db:
        job = load_owned_job(db, job_id, company.company_id)
        apply_job_changes(job, update)
        db.flush()
        data = job_to_dict(job)

    return envelope(data, message="Job updated successfully")


@router.delete("/{job_id}")
async def delete_job(job_id: str, company: CurrentUser = Depends(get_current_company)):
    """Delete a job posting and its applications. Only the owning company can delete."""
    with get_db_session() as db:
        job = load_owned_job(db, job_id, company.company_id)
        db.delete(job)

    track_event(company.user_id, "job.deleted", {"job_id": job_id})
    return envelope(message="Job deleted successfully")


@router.post("/{job_id}/apply", status_code=201)
async def apply_to_job(
    job_id: str,
    application: ApplicationCreate,
    student: CurrentUser = Depends(get_current_student),
    mailer: Mailer = Depends(get_mailer),
):
    """Apply to a job. Only students can apply, once per job, to open jobs."""
    try:
        with get_db_session() as db:
            job = db.get(JobPosting, job_id)
            if job is None:
                raise NotFoundError("Job not found")
            if job.status != JobStatus.open.value:
                raise ValidationError("Job is not accepting applications")

            existing = db.scalar(
                select(Application.id).where(Application.job_id == job_id, Application.student_id == student.student_id)
            )
            if existing:
                raise ConflictError("Already applied to this job")

            record = Application(student_id=student.student_id, job_id=job_id, cover_letter=application.cover_letter)
            db.add(record)
            db.flush()
            data = application_to_dict(record)

            profile = db.get(Student, student.student_id)
            company = db.get(Company, job.company_id)
            company_email = company.contact_email or db.scalar(select(User.email).where(User.id == company.user_id))
            notify = (company_email, company.company_name, f"{profile.first_name} {profile.last_name}", job.job_title)
    except IntegrityError as e:
        raise ConflictError("Already applied to this job") from e

    await run_in_threadpool(fire_and_forget, "application notification", mailer.send_application_notification, *notify)
    track_event(student.user_id, "application.submitted", {"job_id": job_id, "application_id": data["id"]})
    return envelope(data, message="Application submitted successfully")


@router.get("/{job_id}/apply")
async def get_my_application(job_id: str, student: CurrentUser = Depends(get_current_student)):
    with get_db_session() as db:
        record = db.scalar(
            select(Application).where(Application.job_id == job_id, Application.student_id == student.student_id)
        )
        data = {"has_applied": record is not None, "application": application_to_dict(record) if record else None}
    return envelope(data)
