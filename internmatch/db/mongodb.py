"""
MongoDB Connection Utility

MongoDB stores the AI outputs:
- ATS analyses of resumes
- Generated resumes and improvement suggestions
- Interview questions / practice questions
- Role suggestions and application reviews

WHY MongoDB for these?
- Schema-flexible: LLM outputs vary in structure
- Document-oriented: each output is self-contained
- The relational store stays the source of truth for accounts and billing
"""
import logging
from typing import Optional

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

from internmatch.core.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# Global client (connection pooling handled internally by pymongo)
_client: Optional[MongoClient] = None


def get_mongo_client() -> MongoClient:
    """Get or create MongoDB client (singleton pattern)"""
    global _client
    if _client is None:
        _client = MongoClient(settings.mongodb_uri, serverSelectionTimeoutMS=settings.mongodb_timeout_ms)
    return _client


def get_mongo_db() -> Database:
    return get_mongo_client()[settings.mongodb_db]


# Collection name constants (avoid typos)
COLLECTIONS = {
    "ats_analyses": "ats_analyses",
    "generated_resumes": "generated_resumes",
    "role_suggestions": "role_suggestions",
    "interview_prep": "student_interview_prep",
    "interview_questions": "interview_questions",
    "application_reviews": "application_ai_reviews",
    "alternative_roles": "alternative_roles",
}


def get_collection(key: str) -> Collection:
    return get_mongo_db()[COLLECTIONS[key]]


def test_mongo_connection() -> bool:
    """
    Test if MongoDB is reachable.
    Returns True if connection successful, False otherwise.
    """
    try:
        get_mongo_client().admin.command("ping")
        return True
    except Exception as e:
        logger.warning("MongoDB connection failed: %s", e)
        return False


def init_mongo_indexes() -> None:
    """
    Create indexes for owner lookups.
    Call this once during app startup.
    """
    db = get_mongo_db()
    for name in COLLECTIONS.values():
        db[name].create_index([("user_id", 1), ("created_at", -1)])
    logger.info("MongoDB indexes created")
