"""
ORM row -> JSON-ready dict helpers shared by the route modules.
"""

from typing import Optional

from internmatch.db.models import Application, Company, JobPosting, Resume, Student, User


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "is_verified": user.is_verified,
        "created_at": user.created_at,
    }


def student_to_dict(student: Student, include_private: bool = False) -> dict:
    data = {
        "id": student.id,
        "user_id": student.user_id,
        "first_name": student.first_name,
        "last_name": student.last_name,
        "location": student.location,
        "university": student.university,
        "degree": student.degree,
        "major": student.major,
        "graduation_year": student.graduation_year,
        "gpa": student.gpa,
        "profile_image_url": student.profile_image_url,
        "career_interest": student.career_interest,
        "about_me": student.about_me,
        "skills": sorted(link.skill.name for link in student.skills),
        "created_at": student.created_at,
    }
    if include_private:
        data["phone_number"] = student.phone_number
    return data


def company_to_dict(company: Company) -> dict:
    return {
        "id": company.id,
        "user_id": company.user_id,
        "company_name": company.company_name,
        "industry": company.industry,
        "company_size": company.company_size,
        "website": company.website,
        "company_logo": company.company_logo,
        "location": company.location,
        "headquarters": company.headquarters,
        "description": company.description,
        "contact_name": company.contact_name,
        "contact_email": company.contact_email,
        "contact_phone": company.contact_phone,
        "has_internship_program": company.has_internship_program,
        "created_at": company.created_at,
    }


def job_to_dict(job: JobPosting, company: Optional[Company] = None) -> dict:
    data = {
        "id": job.id,
        "company_id": job.company_id,
        "job_title": job.job_title,
        "job_description": job.job_description,
        "status": job.status,
        "requirements": job.requirements or [],
        "benefits": job.benefits or [],
        "salary_range": job.salary_range,
        "location": job.location,
        "job_type": job.job_type,
        "experience_level": job.experience_level,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
    }
    if company is not None:
        data["company_name"] = company.company_name
        data["company_logo"] = company.company_logo
    return data


def application_to_dict(application: Application) -> dict:
    return {
        "id": application.id,
        "student_id": application.student_id,
        "job_id": application.job_id,
        "status": application.status,
        "cover_letter": application.cover_letter,
        "applied_at": application.applied_at,
        "updated_at": application.updated_at,
    }


def resume_to_dict(resume: Resume) -> dict:
    return {
        "id": resume.id,
        "student_id": resume.student_id,
        "title": resume.title,
        "file_url": resume.file_url,
        "is_primary": resume.is_primary,
        "created_at": resume.created_at,
        "updated_at": resume.updated_at,
    }


def student_profile_for_ai(student: Student, resume: Optional[Resume] = None) -> dict:
    """Profile summary handed to the LLM prompts."""
    return {
        "name": f"{student.first_name} {student.last_name}".strip(),
        "university": student.university,
        "degree": student.degree,
        "major": student.major,
        "graduation_year": student.graduation_year,
        "gpa": student.gpa,
        "location": student.location,
        "career_interest": student.career_interest,
        "about_me": student.about_me,
        "skills": sorted(link.skill.name for link in student.skills),
        "resume_text": (resume.content_text or "")[:8000] if resume else "",
    }


def profile_for_user(user: User) -> Optional[dict]:
    """Role profile of a user, loaded through the relationship."""
    if user.role == "student" and user.student is not None:
        return student_to_dict(user.student, include_private=True)
    if user.role == "company" and user.company is not None:
        return company_to_dict(user.company)
    return None
