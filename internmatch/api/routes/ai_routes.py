"""
AI Routes

Students:
POST /ai/ats                     - ATS score for a resume (optionally against a job)
POST /ai/resume                  - Build an improved resume from raw sections
POST /ai/role-suggestions        - Career roles that fit the student's profile
POST /ai/student-interview-prep  - Practice questions or tips for one of their applications

GET on /ai/ats, /ai/resume, /ai/role-suggestions and /ai/student-interview-prep
lists the student's stored results, newest first. DELETE
/ai/student-interview-prep/{application_id} clears the prep for an application.

Companies:
POST /ai/review                  - Match review of an application
POST /ai/alternative-roles       - Other open jobs at the company that fit the applicant
POST /ai/interview               - Interview questions for an applicant

GET on /ai/review, /ai/alternative-roles and /ai/interview lists the stored
results for one application (application_id is required). DELETE
/ai/interview/{application_id} clears all three for that application.

Every generation is gated by the monthly quota of its feature. Inputs are validated
before the quota is consumed; the result is stored in MongoDB best-effort.
Reading or clearing stored results is free.
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from starlette.concurrency import run_in_threadpool

from internmatch.api.serializers import job_to_dict, student_profile_for_ai
from internmatch.core.auth import CurrentUser, get_current_company, get_current_student
from internmatch.core.errors import NotFoundError, ValidationError, envelope
from internmatch.core.results import parse_int
from internmatch.db.models import Application, Company, JobPosting, Resume, Student
from internmatch.db.postgres import get_db_session
from internmatch.schemas.schemas import (
    ApplicationAIRequest, AtsRequest, InterviewPrepRequest, InterviewQuestionsRequest,
    JobStatus, ResumeBuildRequest, RoleSuggestionRequest,
)
from internmatch.services.ai_client import (
    AIClient, delete_ai_outputs, get_ai_client, list_ai_outputs, save_ai_output,
)
from internmatch.services.analytics import track_event
from internmatch.services.usage import UsageCheck, check_and_increment_usage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["AI"])


def _consume(user: CurrentUser, feature: str) -> UsageCheck:
    with get_db_session() as db:
        return check_and_increment_usage(db, user.user_id, feature, user.role)


def _usage(check: UsageCheck) -> dict:
    return {"current": check.current, "limit": check.limit}


def _load_resume(db, student_id: str, resume_id: Optional[str]) -> Optional[Resume]:
    """The given resume (must be the student's), else their primary one."""
    if resume_id:
        resume = db.get(Resume, resume_id)
        if resume is None or resume.student_id != student_id:
            raise NotFoundError("Resume not found")
        return resume
    return db.scalar(
        select(Resume).where(Resume.student_id == student_id)
        .order_by(Resume.is_primary.desc(), Resume.created_at.desc())
        .limit(1)
    )


def _company_application(db, application_id: str, company_id: str):
    row = db.execute(
        select(Application, JobPosting)
        .join(JobPosting, Application.job_id == JobPosting.id)
        .where(Application.id == application_id, JobPosting.company_id == company_id)
    ).first()
    if row is None:
        raise NotFoundError("Application not found")
    return row


def _open_jobs(db, company_id: str) -> list:
    jobs = db.scalars(
        select(JobPosting).where(JobPosting.company_id == company_id, JobPosting.status == JobStatus.open.value)
    ).all()
    return [
        {"job_id": j.id, "job_title": j.job_title, "job_description": j.job_description, "requirements": j.requirements or []}
        for j in jobs
    ]


async def _history(key: str, user: CurrentUser, filters: dict, limit: Optional[str], offset: Optional[str]) -> dict:
    page_size = parse_int(limit, "limit", default=50, maximum=100).unwrap()
    skip = parse_int(offset, "offset", default=0, minimum=0).unwrap()
    items = await run_in_threadpool(list_ai_outputs, key, user.user_id, filters, page_size, skip)
    return {"items": items, "pagination": {"limit": page_size, "offset": skip, "count": len(items)}}


# ============================================================
# STUDENT FEATURES
# ============================================================

@router.post("/ats")
async def ats_analysis(
    request: AtsRequest,
    student: CurrentUser = Depends(get_current_student),
    ai: AIClient = Depends(get_ai_client),
):
    with get_db_session() as db:
        if request.resume_text and not request.resume_id:
            resume_text = request.resume_text
        else:
            resume = _load_resume(db, student.student_id, request.resume_id)
            resume_text = resume.content_text if resume else None
        job = None
        if request.job_id:
            posting = db.get(JobPosting, request.job_id)
            if posting is None:
                raise NotFoundError("Job not found")
            job = job_to_dict(posting)

    if not resume_text:
        raise ValidationError("Provide resume_text or upload a resume first")

    check = _consume(student, "ats_analyze")
    result = await run_in_threadpool(ai.analyze_ats, resume_text[:8000], job)

    save_ai_output("ats_analyses", student.user_id, {"job_id": request.job_id, "resume_id": request.resume_id, "result": result})
    track_event(student.user_id, "ai.ats_analyze", {"job_id": request.job_id})
    return envelope({"analysis": result, "usage": _usage(check)})


@router.post("/resume")
async def build_resume(
    request: ResumeBuildRequest,
    student: CurrentUser = Depends(get_current_student),
    ai: AIClient = Depends(get_ai_client),
):
    if not request.sections:
        raise ValidationError("Resume sections are required")

    check = _consume(student, "resume_generate")
    result = await run_in_threadpool(ai.improve_resume, {"title": request.title, **request.sections})

    save_ai_output("generated_resumes", student.user_id, {"title": request.title, "input": request.sections, "result": result})
    track_event(student.user_id, "ai.resume_generate")
    return envelope({"resume": result, "usage": _usage(check)})


@router.post("/role-suggestions")
async def role_suggestions(
    request: RoleSuggestionRequest,
    student: CurrentUser = Depends(get_current_student),
    ai: AIClient = Depends(get_ai_client),
):
    with get_db_session() as db:
        profile = db.get(Student, student.student_id)
        resume = _load_resume(db, student.student_id, request.resume_id)
        context = student_profile_for_ai(profile, resume)

    check = _consume(student, "role_suggestion")
    result = await run_in_threadpool(ai.suggest_roles, context)

    save_ai_output("role_suggestions", student.user_id, {"resume_id": request.resume_id, "result": result})
    track_event(student.user_id, "ai.role_suggestion")
    return envelope({**result, "usage": _usage(check)})


@router.post("/student-interview-prep")
async def student_interview_prep(
    request: InterviewPrepRequest,
    student: CurrentUser = Depends(get_current_student),
    ai: AIClient = Depends(get_ai_client),
):
    with get_db_session() as db:
        row = db.execute(
            select(Application, JobPosting, Company)
            .join(JobPosting, Application.job_id == JobPosting.id)
            .join(Company, JobPosting.company_id == Company.id)
            .where(Application.id == request.application_id, Application.student_id == student.student_id)
        ).first()
        if row is None:
            raise NotFoundError("Application not found")
        _, job, company = row
        context = student_profile_for_ai(db.get(Student, student.student_id), _load_resume(db, student.student_id, None))
        job_data = job_to_dict(job, company)

    check = _consume(student, "interview_prep")
    result = await run_in_threadpool(ai.interview_prep, context, job_data, request.type)

    save_ai_output("interview_prep", student.user_id, {
        "application_id": request.application_id, "type": request.type, "result": result,
    })
    track_event(student.user_id, "ai.interview_prep", {"type": request.type})
    return envelope({"type": request.type, "prep": result, "usage": _usage(check)})


# ============================================================
# STUDENT HISTORY
# ============================================================

@router.get("/ats")
async def list_ats_analyses(
    resume_id: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    student: CurrentUser = Depends(get_current_student),
):
    filters = {"resume_id": resume_id} if resume_id else {}
    return envelope(await _history("ats_analyses", student, filters, limit, offset))


@router.get("/resume")
async def list_generated_resumes(
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    student: CurrentUser = Depends(get_current_student),
):
    return envelope(await _history("generated_resumes", student, {}, limit, offset))


@router.get("/role-suggestions")
async def list_role_suggestions(
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    student: CurrentUser = Depends(get_current_student),
):
    return envelope(await _history("role_suggestions", student, {}, limit, offset))


@router.get("/student-interview-prep")
async def list_interview_prep(
    application_id: Optional[str] = Query(None),
    type: Optional[Literal["questions", "tips"]] = Query(None),
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    student: CurrentUser = Depends(get_current_student),
):
    filters = {}
    if application_id:
        filters["application_id"] = application_id
    if type:
        filters["type"] = type
    return envelope(await _history("interview_prep", student, filters, limit, offset))


@router.delete("/student-interview-prep/{application_id}")
async def delete_interview_prep(
    application_id: str,
    type: Optional[Literal["questions", "tips"]] = Query(None),
    student: CurrentUser = Depends(get_current_student),
):
    """Clear stored prep for one application, or only one type of it."""
    filters = {"application_id": application_id}
    if type:
        filters["type"] = type
    deleted = await run_in_threadpool(delete_ai_outputs, "interview_prep", student.user_id, filters)
    return envelope({"deleted": deleted}, message="Interview prep deleted")


# ============================================================
# COMPANY FEATURES
# ============================================================

@router.post("/review")
async def review_application(
    request: ApplicationAIRequest,
    company: CurrentUser = Depends(get_current_company),
    ai: AIClient = Depends(get_ai_client),
):
    with get_db_session() as db:
        application, job = _company_application(db, request.application_id, company.company_id)
        context = student_profile_for_ai(db.get(Student, application.student_id), _load_resume(db, application.student_id, None))
        job_data = job_to_dict(job)
        company_jobs = [j for j in _open_jobs(db, company.company_id) if j["job_id"] != job.id]

    check = _consume(company, "job_prediction")
    result = await run_in_threadpool(ai.review_application, context, job_data, company_jobs)

    save_ai_output("application_reviews", company.user_id, {"application_id": request.application_id, "result": result})
    track_event(company.user_id, "ai.job_prediction", {"application_id": request.application_id})
    return envelope({"review": result, "usage": _usage(check)})


@router.post("/alternative-roles")
async def alternative_roles(
    request: ApplicationAIRequest,
    company: CurrentUser = Depends(get_current_company),
    ai: AIClient = Depends(get_ai_client),
):
    with get_db_session() as db:
        application, _ = _company_application(db, request.application_id, company.company_id)
        context = student_profile_for_ai(db.get(Student, application.student_id), _load_resume(db, application.student_id, None))
        company_jobs = _open_jobs(db, company.company_id)

    if not company_jobs:
        raise ValidationError("No open jobs to compare against")

    check = _consume(company, "alternative_role")
    result = await run_in_threadpool(ai.alternative_roles, context, company_jobs)

    save_ai_output("alternative_roles", company.user_id, {"application_id": request.application_id, "result": result})
    track_event(company.user_id, "ai.alternative_role", {"application_id": request.application_id})
    return envelope({**result, "usage": _usage(check)})


@router.post("/interview")
async def interview_questions(
    request: InterviewQuestionsRequest,
    company: CurrentUser = Depends(get_current_company),
    ai: AIClient = Depends(get_ai_client),
):
    with get_db_session() as db:
        application, job = _company_application(db, request.application_id, company.company_id)
        context = student_profile_for_ai(db.get(Student, application.student_id), _load_resume(db, application.student_id, None))
        job_data = job_to_dict(job)

    check = _consume(company, "interview_questions")
    result = await run_in_threadpool(ai.interview_questions, context, job_data, request.count)

    save_ai_output("interview_questions", company.user_id, {
        "application_id": request.application_id, "count": request.count, "result": result,
    })
    track_event(company.user_id, "ai.interview_questions", {"application_id": request.application_id})
    return envelope({**result, "usage": _usage(check)})


# ============================================================
# COMPANY HISTORY
# ============================================================

async def _application_history(key: str, company: CurrentUser, application_id: str,
                               limit: Optional[str], offset: Optional[str]) -> dict:
    with get_db_session() as db:
        _company_application(db, application_id, company.company_id)
    return await _history(key, company, {"application_id": application_id}, limit, offset)


@router.get("/review")
async def list_application_reviews(
    application_id: str = Query(...),
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    company: CurrentUser = Depends(get_current_company),
):
    return envelope(await _application_history("application_reviews", company, application_id, limit, offset))


@router.get("/alternative-roles")
async def list_alternative_roles(
    application_id: str = Query(...),
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    company: CurrentUser = Depends(get_current_company),
):
    return envelope(await _application_history("alternative_roles", company, application_id, limit, offset))


@router.get("/interview")
async def list_interview_questions(
    application_id: str = Query(...),
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    company: CurrentUser = Depends(get_current_company),
):
    return envelope(await _application_history("interview_questions", company, application_id, limit, offset))


@router.delete("/interview/{application_id}")
async def delete_application_ai_outputs(application_id: str, company: CurrentUser = Depends(get_current_company)):
    """Clear every stored AI result the company holds for one application."""
    with get_db_session() as db:
        _company_application(db, application_id, company.company_id)

    deleted = {}
    for key in ("interview_questions", "application_reviews", "alternative_roles"):
        deleted[key] = await run_in_threadpool(delete_ai_outputs, key, company.user_id, {"application_id": application_id})
    return envelope({"deleted": deleted}, message="AI results deleted")
