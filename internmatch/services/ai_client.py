"""
LLM Client

Any OpenAI-compatible endpoint works (OpenAI, DeepSeek, ...), so we use the
openai library with a configurable base URL.

COST OPTIMIZATION:
- One cheap chat model (LLM_MODEL)
- Short, structured prompts with JSON-only answers
- Low temperature for consistent structured output
- Outputs are stored in MongoDB so the dashboard never re-asks the model

Every feature here is quota-gated by the caller (see services/usage.py).
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Optional

from openai import OpenAI, OpenAIError
from pymongo.errors import PyMongoError

from internmatch.core.config import get_settings
from internmatch.core.errors import UpstreamError
from internmatch.db.mongodb import get_collection
from internmatch.services.analytics import fire_and_forget

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful AI assistant that always returns valid JSON. "
    "Do not include any markdown formatting, code blocks, or explanation text."
)


def _dump(value: Any) -> str:
    return json.dumps(value or {}, indent=2, default=str)


class AIClient:
    """
    Wrapper for the chat-completions API with one method per product feature.
    """

    def __init__(self, api_key: str, base_url: str, model: str, client: Optional[OpenAI] = None):
        self.client = client or OpenAI(api_key=api_key, base_url=base_url)
        self.model = model

    def _call_api(self, user_content: str, max_tokens: int = 1500) -> str:
        """
        Internal method to call the model.
        Returns raw text response.
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_content}
                ],
                max_tokens=max_tokens,
                temperature=0.2,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            raise UpstreamError(f"LLM request failed: {e}") from e
        return response.choices[0].message.content or "{}"

    def _extract_json(self, text: str) -> dict:
        """
        Extract JSON from API response.
        Handles cases where model wraps JSON in markdown code blocks or prose.
        """
        text = text.strip()
        if text.startswith("```json"):
            text = text[7:]
        if text.startswith("```"):
            text = text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()

        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            start, end = text.find("{"), text.rfind("}")
            if start < 0 or end <= start:
                raise UpstreamError(f"LLM returned non-JSON content: {text[:200]}")
            try:
                parsed = json.loads(text[start:end + 1])
            except json.JSONDecodeError as e:
                raise UpstreamError(f"LLM returned malformed JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise UpstreamError("LLM returned JSON that is not an object")
        return parsed

    def generate_json(self, prompt: str, max_tokens: int = 1500) -> dict:
        return self._extract_json(self._call_api(prompt, max_tokens=max_tokens))

    # ============================================================
    # STUDENT FEATURES
    # ============================================================

    def analyze_ats(self, resume: Any, job: Optional[dict] = None) -> dict:
        """Score a resume against a job (or in general when no job is given)."""
        prompt = f"""
You are an ATS evaluator. Score the resume against the job (if provided).
Return JSON: {{ "ats_score" (0-100), "keyword_match" (0-100), "readability" (0-100), "structure_score" (0-100),
"length" (integer), "missing_keywords": string[], "suggestions": [{{"field", "advice"}}], "summary": string }}.

Resume:
{_dump(resume)}

Job:
{_dump(job)}
"""
        return self.generate_json(prompt)

    def improve_resume(self, resume: dict) -> dict:
        prompt = f"""
You are a resume builder. Improve and normalize the following resume data for an internship application.
Ensure concise, bullet-driven achievements with metrics where possible.
Return JSON with keys: "title", "structured_content" {{"summary", "education", "experience", "projects", "skills"}}.

Input:
{_dump(resume)}
"""
        return self.generate_json(prompt, max_tokens=2000)

    def suggest_roles(self, profile: dict) -> dict:
        prompt = f"""
You are an AI career counselor. Suggest 8-12 alternative career roles for this student based on skills,
education, experience and interests. Percentages must add up to 100.
Return JSON: {{ "suggestions": [{{"role", "percentage", "reason", "matching_skills": string[], "skills_to_develop": string[]}}],
"summary": string }}.

Student Profile:
{_dump(profile)}
"""
        return self.generate_json(prompt, max_tokens=2000)

    def interview_prep(self, profile: dict, job: dict, prep_type: str) -> dict:
        """prep_type: "questions" (practice questions) or "tips"."""
        if prep_type == "questions":
            shape = ('{ "questions": [{"question", "category", "difficulty" (Easy|Medium|Hard), '
                     '"tips": string[], "sample_answer"}] } with 5-8 questions')
        else:
            shape = '{ "general": string[], "behavioral": string[], "technical": string[], "company_specific": string[] }'
        prompt = f"""
You are an interview coach helping a student prepare for an interview.
Return JSON: {shape}.

Student Profile:
{_dump(profile)}

Job:
{_dump(job)}
"""
        return self.generate_json(prompt, max_tokens=2000)

    # ============================================================
    # COMPANY FEATURES
    # ============================================================

    def review_application(self, profile: dict, job: dict, company_jobs: list) -> dict:
        prompt = f"""
You are an AI recruiter analyzing a student application. Evaluate how well the student matches the job.
Return JSON: {{ "match_score" (0-100), "matched_skills": string[], "missing_skills": string[],
"strengths": string[], "concerns": string[], "recommendation" (strong_yes|yes|maybe|no), "summary": string }}.

Student Profile:
{_dump(profile)}

Job Applied For:
{_dump(job)}

Other Open Jobs at This Company:
{_dump(company_jobs)}
"""
        return self.generate_json(prompt, max_tokens=1500)

    def alternative_roles(self, profile: dict, company_jobs: list) -> dict:
        prompt = f"""
You are an AI recruiter. Given this student and the company's open jobs, rank which jobs fit the student best.
Return JSON: {{ "alternatives": [{{"job_id", "job_title", "match_score" (0-100), "reason"}}], "summary": string }}.

Student Profile:
{_dump(profile)}

Company Jobs:
{_dump(company_jobs)}
"""
        return self.generate_json(prompt, max_tokens=1500)

    def interview_questions(self, profile: dict, job: dict, count: int = 5) -> dict:
        prompt = f"""
You are an experienced interviewer preparing questions for a student interview. Generate exactly {count}
targeted questions based on the student's profile and the job description, mixing technical and behavioral
questions of varying difficulty.
Return JSON: {{ "questions": [{{"question", "category", "difficulty" (easy|medium|hard), "what_to_look_for"}}] }}.

Student Profile:
{_dump(profile)}

Job Description:
{_dump(job)}
"""
        return self.generate_json(prompt, max_tokens=2000)


@lru_cache()
def get_ai_client() -> AIClient:
    """FastAPI dependency - process-wide LLM client."""
    settings = get_settings()
    return AIClient(settings.llm_api_key, settings.llm_base_url, settings.llm_model)


# ============================================================
# STORED OUTPUTS
# ============================================================

def _insert_ai_output(key: str, user_id: str, document: dict) -> None:
    get_collection(key).insert_one({
        **document,
        "id": uuid.uuid4().hex,
        "user_id": user_id,
        "created_at": datetime.now(timezone.utc),
    })


def save_ai_output(key: str, user_id: str, document: dict) -> None:
    """Persist an AI result to MongoDB. Best-effort: the caller already has the result."""
    fire_and_forget(f"store {key}", _insert_ai_output, key, user_id, dict(document))


def list_ai_outputs(key: str, user_id: str, filters: Optional[dict] = None, limit: int = 50, offset: int = 0) -> list:
    """
    Stored outputs owned by user_id, newest first.

    Unlike saving, reading is not best-effort: a MongoDB failure is an UpstreamError.
    """
    query = {**(filters or {}), "user_id": user_id}
    try:
        cursor = get_collection(key).find(query, {"_id": 0}).sort("created_at", -1).skip(offset).limit(limit)
        documents = list(cursor)
    except PyMongoError as e:
        raise UpstreamError(f"Reading {key} failed: {e}") from e

    for doc in documents:
        if isinstance(doc.get("created_at"), datetime):
            doc["created_at"] = doc["created_at"].isoformat()
    return documents


def delete_ai_outputs(key: str, user_id: str, filters: dict) -> int:
    """Delete the owner's outputs matching filters. Returns how many went."""
    try:
        result = get_collection(key).delete_many({**filters, "user_id": user_id})
    except PyMongoError as e:
        raise UpstreamError(f"Deleting {key} failed: {e}") from e
    logger.info("Deleted %d %s for user %s", result.deleted_count, key, user_id)
    return result.deleted_count
