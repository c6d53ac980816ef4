"""
Company Routes

GET    /company                                   - Browse companies (public)
GET    /company/profile                           - Own profile
PUT    /company/profile                           - Update own profile
POST   /company/logo                              - Upload logo (JPEG/PNG/WebP, 5MB)
GET    /company/{id}                              - Company detail with its open jobs
GET    /company/{id}/job                          - All of the company's jobs, drafts included
POST   /company/{id}/job                          - Create a job for the company
GET    /company/{id}/job/{job_id}                 - One of the company's jobs
PUT    /company/{id}/job/{job_id}                 - Update one of the company's jobs
DELETE /company/{id}/job/{job_id}                 - Delete one of the company's jobs
GET    /company/{id}/applications                 - Applications to the company's jobs
PUT    /company/{id}/applications/{application_id} - Move an application along the pipeline
GET    /company/{id}/stats                        - Job and application counts
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy import func, select
from starlette.concurrency import run_in_threadpool

from internmatch.api.routes.job_routes import apply_job_changes, build_posting, load_owned_job
from internmatch.api.serializers import application_to_dict, company_to_dict, job_to_dict
from internmatch.core.auth import CurrentUser, get_current_company, get_current_user
from internmatch.core.errors import AuthorizationError, NotFoundError, ValidationError, envelope
from internmatch.core.results import parse_enum, parse_int
from internmatch.db.models import Application, Company, JobPosting, Student, User
from internmatch.db.postgres import get_db_session
from internmatch.schemas.schemas import (
    ApplicationStatus, ApplicationStatusUpdate, CompanyUpdate, JobCreate, JobStatus, JobUpdate,
)
from internmatch.services.analytics import fire_and_forget, track_event
from internmatch.services.email import Mailer, get_mailer
from internmatch.services.storage import CloudinaryStorage, get_storage
from internmatch.utils.file_upload import read_image_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/company", tags=["Companies"])


def _require_own_company(company: CurrentUser, company_id: str) -> None:
    if company.company_id != company_id:
        raise AuthorizationError("Access denied to this company")


@router.get("")
async def list_companies(
    industry: Optional[str] = Query(None),
    company_size: Optional[str] = Query(None),
    location: Optional[str] = Query(None),
    keyword: Optional[str] = Query(None, description="Search in name and description"),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
):
    page_no = parse_int(page, "page", default=1).unwrap()
    page_size = parse_int(limit, "limit", default=10, maximum=50).unwrap()

    conditions = []
    if industry:
        conditions.append(Company.industry.ilike(f"%{industry}%"))
    if company_size:
        conditions.append(Company.company_size == company_size)
    if location:
        conditions.append(Company.location.ilike(f"%{location}%"))
    if keyword:
        conditions.append(Company.company_name.ilike(f"%{keyword}%") | Company.description.ilike(f"%{keyword}%"))

    with get_db_session() as db:
        total = db.scalar(select(func.count()).select_from(Company).where(*conditions))
        companies = db.scalars(
            select(Company).where(*conditions).order_by(Company.company_name)
            .limit(page_size).offset((page_no - 1) * page_size)
        ).all()
        data = [company_to_dict(c) for c in companies]

    return envelope({
        "companies": data,
        "pagination": {"page": page_no, "limit": page_size, "total": total, "total_pages": -(-total // page_size)},
    })


@router.get("/profile")
async def get_company_profile(company: CurrentUser = Depends(get_current_company)):
    with get_db_session() as db:
        data = company_to_dict(db.get(Company, company.company_id))
    return envelope(data)


@router.put("/profile")
async def update_company_profile(update: CompanyUpdate, company: CurrentUser = Depends(get_current_company)):
    changes = update.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")

    with get_db_session() as db:
        record = db.get(Company, company.company_id)
        for field, value in changes.items():
            setattr(record, field, value)
        db.flush()
        data = company_to_dict(record)

    return envelope(data, message="Profile updated successfully")


@router.post("/logo")
async def upload_company_logo(
    file: UploadFile = File(...),
    company: CurrentUser = Depends(get_current_company),
    storage: CloudinaryStorage = Depends(get_storage),
):
    content, filename = await read_image_upload(file)
    stored = await storage.upload_image(content, filename, folder=f"company-logos/{company.company_id}")

    with get_db_session() as db:
        db.get(Company, company.company_id).company_logo = stored.url

    return envelope({"company_logo": stored.url}, message="Logo uploaded successfully")


@router.get("/{company_id}")
async def get_company(company_id: str, user: CurrentUser = Depends(get_current_user)):
    """Company detail with its open jobs, newest first."""
    with get_db_session() as db:
        record = db.get(Company, company_id)
        if record is None:
            raise NotFoundError("Company not found")
        jobs = db.scalars(
            select(JobPosting)
            .where(JobPosting.company_id == company_id, JobPosting.status == JobStatus.open.value)
            .order_by(JobPosting.created_at.desc())
        ).all()
        data = {**company_to_dict(record), "jobs": [job_to_dict(job) for job in jobs]}
    return envelope(data)


@router.get("/{company_id}/job")
async def list_own_jobs(
    company_id: str,
    status: Optional[str] = Query(None, description="open, closed or draft; all when omitted"),
    company: CurrentUser = Depends(get_current_company),
):
    """Every job the company has posted, drafts included, with application counts."""
    _require_own_company(company, company_id)
    status_filter = parse_enum(status, JobStatus, "status").unwrap()

    conditions = [JobPosting.company_id == company_id]
    if status_filter:
        conditions.append(JobPosting.status == status_filter.value)

    with get_db_session() as db:
        rows = db.execute(
            select(JobPosting, func.count(Application.id))
            .outerjoin(Application, Application.job_id == JobPosting.id)
            .where(*conditions)
            .group_by(JobPosting.id)
            .order_by(JobPosting.created_at.desc())
        ).all()
        data = [{**job_to_dict(job), "application_count": count} for job, count in rows]

    return envelope({"jobs": data})


@router.post("/{company_id}/job", status_code=201)
async def create_own_job(company_id: str, job: JobCreate, company: CurrentUser = Depends(get_current_company)):
    _require_own_company(company, company_id)

    with get_db_session() as db:
        posting = build_posting(company_id, job)
        db.add(posting)
        db.flush()
        data = job_to_dict(posting)

    track_event(company.user_id, "job.created", {"job_id": data["id"], "status": data["status"]})
    return envelope(data, message="Job created")


@router.get("/{company_id}/job/{job_id}")
async def get_own_job(company_id: str, job_id: str, company: CurrentUser = Depends(get_current_company)):
    _require_own_company(company, company_id)

    with get_db_session() as db:
        job = load_owned_job(db, job_id, company_id)
        data = job_to_dict(job)
        data["application_count"] = db.scalar(
            select(func.count()).select_from(Application).where(Application.job_id == job_id)
        )
    return envelope(data)


@router.put("/{company_id}/job/{job_id}")
async def update_own_job(
    company_id: str, job_id: str, update: JobUpdate, company: CurrentUser = Depends(get_current_company),
):
    _require_own_company(company, company_id)

    with get_db_session() as db:
        job = load_owned_job(db, job_id, company_id)
        apply_job_changes(job, update)
        db.flush()
        data = job_to_dict(job)

    return envelope(data, message="Job updated successfully")


@router.delete("/{company_id}/job/{job_id}")
async def delete_own_job(company_id: str, job_id: str, company: CurrentUser = Depends(get_current_company)):
    _require_own_company(company, company_id)

    with get_db_session() as db:
        db.delete(load_owned_job(db, job_id, company_id))

    track_event(company.user_id, "job.deleted", {"job_id": job_id})
    return envelope(message="Job deleted successfully")


@router.get("/{company_id}/applications")
async def list_company_applications(
    company_id: str,
    job_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    company: CurrentUser = Depends(get_current_company),
):
    """All applications to this company's jobs, with student and job summary."""
    _require_own_company(company, company_id)
    status_filter = parse_enum(status, ApplicationStatus, "status").unwrap()
    page_size = parse_int(limit, "limit", default=50, maximum=200).unwrap()
    skip = parse_int(offset, "offset", default=0, minimum=0).unwrap()

    conditions = [JobPosting.company_id == company_id]
    if job_id:
        conditions.append(Application.job_id == job_id)
    if status_filter:
        conditions.append(Application.status == status_filter.value)

    with get_db_session() as db:
        rows = db.execute(
            select(Application, Student, JobPosting)
            .join(JobPosting, Application.job_id == JobPosting.id)
            .join(Student, Application.student_id == Student.id)
            .where(*conditions)
            .order_by(Application.applied_at.desc())
            .limit(page_size)
            .offset(skip)
        ).all()
        data = [
            {
                **application_to_dict(app),
                "job_title": job.job_title,
                "student": {
                    "id": student.id,
                    "first_name": student.first_name,
                    "last_name": student.last_name,
                    "university": student.university,
                    "major": student.major,
                    "profile_image_url": student.profile_image_url,
                },
            }
            for app, student, job in rows
        ]

    return envelope({"applications": data, "pagination": {"limit": page_size, "offset": skip, "count": len(data)}})


@router.put("/{company_id}/applications/{application_id}")
async def update_application_status(
    company_id: str,
    application_id: str,
    update: ApplicationStatusUpdate,
    company: CurrentUser = Depends(get_current_company),
    mailer: Mailer = Depends(get_mailer),
):
    _require_own_company(company, company_id)

    with get_db_session() as db:
        row = db.execute(
            select(Application, JobPosting)
            .join(JobPosting, Application.job_id == JobPosting.id)
            .where(Application.id == application_id, JobPosting.company_id == company_id)
        ).first()
        if row is None:
            raise NotFoundError("Application not found")
        application, job = row
        previous = application.status
        application.status = update.status.value
        db.flush()
        data = application_to_dict(application)

        student = db.get(Student, application.student_id)
        student_email = db.scalar(select(User.email).where(User.id == student.user_id))
        company_name = db.scalar(select(Company.company_name).where(Company.id == company_id))

    if previous != update.status.value:
        await run_in_threadpool(
            fire_and_forget, "application status email", mailer.send_application_status_email,
            student_email, student.first_name, job.job_title, company_name, update.status.value,
        )
        track_event(company.user_id, "application.status_changed", {
            "application_id": application_id, "from": previous, "to": update.status.value,
        })
    return envelope(data, message="Application status updated")


@router.get("/{company_id}/stats")
async def get_company_stats(company_id: str, company: CurrentUser = Depends(get_current_company)):
    _require_own_company(company, company_id)

    with get_db_session() as db:
        jobs_by_status = dict(db.execute(
            select(JobPosting.status, func.count()).where(JobPosting.company_id == company_id).group_by(JobPosting.status)
        ).all())
        apps_by_status = dict(db.execute(
            select(Application.status, func.count())
            .join(JobPosting, Application.job_id == JobPosting.id)
            .where(JobPosting.company_id == company_id)
            .group_by(Application.status)
        ).all())

    return envelope({
        "total_jobs": sum(jobs_by_status.values()),
        "active_jobs": jobs_by_status.get("open", 0),
        "jobs_by_status": jobs_by_status,
        "total_applications": sum(apps_by_status.values()),
        "applications_by_status": apps_by_status,
    })
