"""
Student Routes

GET  /students                        - Browse students (public)
POST /students/resume/upload          - Upload resume PDF (student only)
GET  /students/resume                 - Own resumes
PUT  /students/resume/{id}/primary    - Mark a resume as primary
GET  /students/{id}                   - Student profile
PUT  /students/{id}                   - Update own profile (or admin)
GET  /student/applications            - Own applications with job details
POST /student/profile-image           - Upload profile picture
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy import func, select, update
from starlette.concurrency import run_in_threadpool

from internmatch.api.serializers import application_to_dict, resume_to_dict, student_to_dict
from internmatch.core.auth import CurrentUser, get_current_student, get_current_user
from internmatch.core.errors import AuthorizationError, NotFoundError, ValidationError, envelope
from internmatch.core.results import parse_enum, parse_int
from internmatch.db.models import Application, Company, JobPosting, Resume, Skill, Student, StudentSkill
from internmatch.db.postgres import get_db_session
from internmatch.schemas.schemas import ApplicationStatus, StudentUpdate
from internmatch.services.analytics import track_event
from internmatch.services.storage import CloudinaryStorage, get_storage
from internmatch.utils.file_upload import extract_from_pdf, read_image_upload, read_resume_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/students", tags=["Students"])
me_router = APIRouter(prefix="/student", tags=["Students"])


def _set_skills(db, student: Student, names: list) -> None:
    """Replace the student's skills; unknown skill names are created."""
    wanted = {}
    for name in names:
        if name and name.strip():
            wanted.setdefault(name.strip().lower(), name.strip())
    existing = {s.name.lower(): s for s in db.scalars(select(Skill).where(func.lower(Skill.name).in_(list(wanted))))}
    student.skills.clear()
    db.flush()
    for key in sorted(wanted):
        skill = existing.get(key)
        if skill is None:
            skill = Skill(name=wanted[key])
            db.add(skill)
        student.skills.append(StudentSkill(skill=skill))


# ============================================================
# BROWSE
# ============================================================

@router.get("")
async def list_students(
    university: Optional[str] = Query(None),
    major: Optional[str] = Query(None),
    skills: Optional[str] = Query(None, description="Comma-separated skill names (any match)"),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
):
    page_no = parse_int(page, "page", default=1).unwrap()
    page_size = parse_int(limit, "limit", default=10, maximum=50).unwrap()

    stmt = select(Student)
    if university:
        stmt = stmt.where(Student.university.ilike(f"%{university}%"))
    if major:
        stmt = stmt.where(Student.major.ilike(f"%{major}%"))
    if skills:
        wanted = [s.strip().lower() for s in skills.split(",") if s.strip()]
        stmt = stmt.where(Student.id.in_(
            select(StudentSkill.student_id).join(Skill, StudentSkill.skill_id == Skill.id)
            .where(func.lower(Skill.name).in_(wanted))
        ))

    with get_db_session() as db:
        total = db.scalar(select(func.count()).select_from(stmt.subquery()))
        students = db.scalars(
            stmt.order_by(Student.created_at.desc()).limit(page_size).offset((page_no - 1) * page_size)
        ).all()
        data = [student_to_dict(s) for s in students]

    return envelope({
        "students": data,
        "pagination": {"page": page_no, "limit": page_size, "total": total, "total_pages": -(-total // page_size)},
    })


# ============================================================
# RESUMES
# ============================================================

@router.post("/resume/upload", status_code=201)
async def upload_resume(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    make_primary: bool = Form(False),
    student: CurrentUser = Depends(get_current_student),
    storage: CloudinaryStorage = Depends(get_storage),
):
    """
    Upload a resume PDF (max 10MB).
    Text is extracted for the AI features; the file itself goes to Cloudinary.
    """
    content, filename = await read_resume_upload(file)
    text = await run_in_threadpool(extract_from_pdf, content)
    stored = await storage.upload_resume(content, filename, student.student_id)

    with get_db_session() as db:
        has_any = db.scalar(select(Resume.id).where(Resume.student_id == student.student_id).limit(1))
        primary = make_primary or not has_any
        if primary:
            # Non-atomic: clear-then-set can interleave with a concurrent upload by the same student
            db.execute(update(Resume).where(Resume.student_id == student.student_id).values(is_primary=False))
        resume = Resume(
            student_id=student.student_id,
            title=title or filename.rsplit(".", 1)[0],
            file_url=stored.url,
            public_id=stored.public_id,
            content_text=text,
            is_primary=primary,
        )
        db.add(resume)
        db.flush()
        data = resume_to_dict(resume)

    track_event(student.user_id, "resume.uploaded", {"resume_id": data["id"]})
    return envelope(data, message="Resume uploaded successfully")


@router.get("/resume")
async def list_my_resumes(student: CurrentUser = Depends(get_current_student)):
    with get_db_session() as db:
        resumes = db.scalars(
            select(Resume).where(Resume.student_id == student.student_id)
            .order_by(Resume.is_primary.desc(), Resume.created_at.desc())
        ).all()
        data = [resume_to_dict(r) for r in resumes]
    return envelope(data)


@router.put("/resume/{resume_id}/primary")
async def set_primary_resume(resume_id: str, student: CurrentUser = Depends(get_current_student)):
    with get_db_session() as db:
        resume = db.get(Resume, resume_id)
        if resume is None or resume.student_id != student.student_id:
            raise NotFoundError("Resume not found")
        # Non-atomic multi-step mutation: unset all, then set one
        db.execute(update(Resume).where(Resume.student_id == student.student_id).values(is_primary=False))
        db.execute(update(Resume).where(Resume.id == resume_id).values(is_primary=True))
    return envelope({"id": resume_id, "is_primary": True}, message="Primary resume updated")


# ============================================================
# PROFILES
# ============================================================

@router.get("/{student_id}")
async def get_student(student_id: str, user: CurrentUser = Depends(get_current_user)):
    with get_db_session() as db:
        student = db.get(Student, student_id)
        if student is None:
            raise NotFoundError("Student not found")
        data = student_to_dict(student, include_private=user.role == "admin" or student.user_id == user.user_id)
    return envelope(data)


@router.put("/{student_id}")
async def update_student(student_id: str, update_req: StudentUpdate, user: CurrentUser = Depends(get_current_user)):
    changes = update_req.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")
    skills = changes.pop("skills", None)

    with get_db_session() as db:
        student = db.get(Student, student_id)
        if student is None:
            raise NotFoundError("Student not found")
        if student.user_id != user.user_id and user.role != "admin":
            raise AuthorizationError("You can only update your own profile")
        for field, value in changes.items():
            setattr(student, field, value)
        if skills is not None:
            _set_skills(db, student, skills)
        db.flush()
        data = student_to_dict(student, include_private=True)

    return envelope(data, message="Profile updated successfully")


# ============================================================
# CURRENT STUDENT
# ============================================================

@me_router.get("/applications")
async def list_my_applications(
    status: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    student: CurrentUser = Depends(get_current_student),
):
    status_filter = parse_enum(status, ApplicationStatus, "status").unwrap()
    page_size = parse_int(limit, "limit", default=50, maximum=200).unwrap()
    skip = parse_int(offset, "offset", default=0, minimum=0).unwrap()

    conditions = [Application.student_id == student.student_id]
    if status_filter:
        conditions.append(Application.status == status_filter.value)

    with get_db_session() as db:
        rows = db.execute(
            select(Application, JobPosting, Company)
            .join(JobPosting, Application.job_id == JobPosting.id)
            .join(Company, JobPosting.company_id == Company.id)
            .where(*conditions)
            .order_by(Application.applied_at.desc())
            .limit(page_size)
            .offset(skip)
        ).all()
        data = [
            {
                **application_to_dict(app),
                "job": {
                    "id": job.id,
                    "job_title": job.job_title,
                    "location": job.location,
                    "job_type": job.job_type,
                    "status": job.status,
                },
                "company": {"id": company.id, "company_name": company.company_name, "company_logo": company.company_logo},
            }
            for app, job, company in rows
        ]

    return envelope({"applications": data, "pagination": {"limit": page_size, "offset": skip, "count": len(data)}})


@me_router.post("/profile-image")
async def upload_profile_image(
    file: UploadFile = File(...),
    student: CurrentUser = Depends(get_current_student),
    storage: CloudinaryStorage = Depends(get_storage),
):
    content, filename = await read_image_upload(file)
    stored = await storage.upload_image(content, filename, folder=f"profile-images/{student.student_id}")

    with get_db_session() as db:
        db.get(Student, student.student_id).profile_image_url = stored.url

    return envelope({"profile_image_url": stored.url}, message="Profile image uploaded successfully")
