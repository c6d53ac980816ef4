"""
Fake providers and seed helpers shared by the test modules.
"""
from collections import defaultdict
from types import SimpleNamespace
from typing import Optional

from sqlalchemy import select

from internmatch.core.security import hash_password, issue_token
from internmatch.db.models import Company, JobPosting, Student, Transaction, User
from internmatch.db.postgres import get_db_session
from internmatch.services.payway import PurchaseResult
from internmatch.services.storage import StoredFile

PASSWORD = "Passw0rdA"


# ============================================================
# FAKE PROVIDERS
# ============================================================

class FakeMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    def _record(self, kind, *args):
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append((kind,) + args)

    def send_verification_email(self, to_email, code):
        self._record("verification", to_email, code)

    def send_welcome_email(self, to_email, name):
        self._record("welcome", to_email, name)

    def send_password_reset_email(self, to_email, code):
        self._record("reset", to_email, code)

    def send_application_notification(self, to_email, company_name, student_name, job_title):
        self._record("application", to_email, company_name, student_name, job_title)

    def send_application_status_email(self, to_email, student_name, job_title, company_name, status):
        self._record("status", to_email, status)

    def last_code(self, kind, to_email):
        for entry in reversed(self.sent):
            if entry[0] == kind and entry[1] == to_email:
                return entry[2]
        return None


class FakePayWay:
    def __init__(self):
        self.report = {"status": {"code": "00"}}
        self.checked = []
        self.purchases = []

    async def check_transaction(self, tran_id, now=None):
        self.checked.append(tran_id)
        return self.report

    async def create_purchase(self, fields):
        self.purchases.append(dict(fields))
        return PurchaseResult(checkout_url=f"https://checkout.example.com/{fields['tran_id']}")


class FakeAI:
    def __init__(self):
        self.calls = []

    def _answer(self, name, payload):
        self.calls.append(name)
        return payload

    def analyze_ats(self, resume, job=None):
        return self._answer("ats", {"ats_score": 72, "missing_keywords": ["docker"]})

    def improve_resume(self, resume):
        return self._answer("resume", {"title": resume.get("title"), "structured_content": {"summary": "ok"}})

    def suggest_roles(self, profile):
        return self._answer("roles", {"suggestions": [{"role": "Data Analyst", "percentage": 100}], "summary": "fit"})

    def interview_prep(self, profile, job, prep_type):
        return self._answer("prep", {"general": ["Be on time"]})

    def review_application(self, profile, job, company_jobs):
        return self._answer("review", {"match_score": 80, "recommendation": "yes"})

    def alternative_roles(self, profile, company_jobs):
        return self._answer("alternatives", {"alternatives": [], "summary": "none"})

    def interview_questions(self, profile, job, count=5):
        return self._answer("questions", {"questions": [{"question": f"Q{i}"} for i in range(count)]})


class FakeStorage:
    def __init__(self):
        self.uploads = []

    async def upload_resume(self, content, filename, student_id):
        self.uploads.append(("resume", filename))
        return StoredFile(url=f"https://cdn.example.com/resumes/{filename}", public_id=f"resumes/{filename}")

    async def upload_image(self, content, filename, folder):
        self.uploads.append(("image", filename))
        return StoredFile(url=f"https://cdn.example.com/{folder}/{filename}", public_id=f"{folder}/{filename}")


class FakeCursor:
    def __init__(self, documents):
        self.documents = documents

    def sort(self, field, direction):
        self.documents = sorted(self.documents, key=lambda d: d[field], reverse=direction < 0)
        return self

    def skip(self, count):
        self.documents = self.documents[count:]
        return self

    def limit(self, count):
        if count:
            self.documents = self.documents[:count]
        return self

    def __iter__(self):
        return iter(self.documents)


class FakeCollection:
    """Just enough of a pymongo collection for equality queries."""

    def __init__(self):
        self.documents = []

    @staticmethod
    def _matches(document, query):
        return all(document.get(field) == value for field, value in query.items())

    def insert_one(self, document):
        self.documents.append(dict(document, _id=len(self.documents) + 1))

    def find(self, query, projection=None):
        hidden = {"_id"} if projection and projection.get("_id") == 0 else set()
        return FakeCursor([
            {k: v for k, v in doc.items() if k not in hidden}
            for doc in self.documents if self._matches(doc, query)
        ])

    def delete_many(self, query):
        kept = [doc for doc in self.documents if not self._matches(doc, query)]
        deleted = len(self.documents) - len(kept)
        self.documents = kept
        return SimpleNamespace(deleted_count=deleted)


class FakeMongo:
    def __init__(self):
        self.collections = defaultdict(FakeCollection)

    def get_collection(self, key):
        return self.collections[key]


# ============================================================
# SEED HELPERS
# ============================================================

def create_user(role: str = "student", email: Optional[str] = None, verified: bool = True) -> dict:
    """Insert a user with its role profile. Returns ids plus ready-made auth headers."""
    email = email or f"{role}@example.com"
    with get_db_session() as db:
        user = User(email=email, password_hash=hash_password(PASSWORD), role=role, is_verified=verified)
        if role == "student":
            user.student = Student(first_name="Dara", last_name="Sok", university="RUPP", major="CS")
        elif role == "company":
            user.company = Company(company_name="Acme", industry="Software", contact_email="hr@acme.example.com")
        db.add(user)
        db.flush()
        info = {
            "user_id": user.id,
            "email": email,
            "role": role,
            "student_id": user.student.id if user.student else None,
            "company_id": user.company.id if user.company else None,
        }
    info["headers"] = {"Authorization": f"Bearer {issue_token(info['user_id'], email, role, verified)}"}
    return info


def create_job(company_id: str, status: str = "open", title: str = "Backend Intern") -> str:
    with get_db_session() as db:
        job = JobPosting(company_id=company_id, job_title=title, job_description="Build APIs", status=status)
        db.add(job)
        db.flush()
        return job.id


def create_transaction(user_id: str, **fields) -> Transaction:
    values = {"tran_id": "T-1", "amount": 5.0, "currency": "USD", "status": "pending", "auto_renew": True}
    values.update(fields)
    with get_db_session() as db:
        txn = Transaction(user_id=user_id, **values)
        db.add(txn)
    return txn


def load_transaction(tran_id: str) -> Optional[Transaction]:
    with get_db_session() as db:
        return db.scalar(select(Transaction).where(Transaction.tran_id == tran_id))
