"""
Usage Limits Service

Monthly, count-based quotas for the AI features, keyed by plan and role.

Counters live in `usage_tracking`, one row per (user, feature, YYYY-MM).

KNOWN RACE: check_usage_limit() followed by increment_usage() is an
unsynchronized check-then-act. Two concurrent requests at count=limit-1 can
both pass the check and both increment, overshooting the quota by up to
(concurrency - 1). Set USAGE_ATOMIC_INCREMENT=true to route
check_and_increment_usage() through consume_usage(), a single conditional
UPDATE that closes the race.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from internmatch.core.config import get_settings
from internmatch.core.errors import AuthorizationError, QuotaExceededError, ValidationError
from internmatch.db.models import UsageCounter, utcnow
from internmatch.services.billing import FREE_PLAN, resolve_current_plan

logger = logging.getLogger(__name__)

STUDENT_FEATURES = ("role_suggestion", "interview_prep", "ats_analyze", "resume_generate")
COMPANY_FEATURES = ("job_prediction", "alternative_role", "interview_questions")

FEATURE_DISPLAY_NAMES = {
    "role_suggestion": "Role Suggestion",
    "interview_prep": "Interview Preps",
    "ats_analyze": "ATS Analyze",
    "resume_generate": "Resume",
    "job_prediction": "Job Prediction",
    "alternative_role": "Alternative Role",
    "interview_questions": "Interview Questions",
}

# Times per month
STUDENT_PLAN_LIMITS: Dict[str, Dict[str, int]] = {
    "free": {"role_suggestion": 1, "interview_prep": 5, "ats_analyze": 1, "resume_generate": 1},
    "basic": {"role_suggestion": 3, "interview_prep": 15, "ats_analyze": 5, "resume_generate": 5},
    "pro": {"role_suggestion": 5, "interview_prep": 45, "ats_analyze": 15, "resume_generate": 15},
}

COMPANY_PLAN_LIMITS: Dict[str, Dict[str, int]] = {
    "free": {"job_prediction": 5, "alternative_role": 5, "interview_questions": 5},
    "growth": {"job_prediction": 10, "alternative_role": 10, "interview_questions": 10},
    "enterprise": {"job_prediction": 20, "alternative_role": 20, "interview_questions": 20},
}


@dataclass(frozen=True)
class UsageCheck:
    allowed: bool
    current: int
    limit: Optional[int]  # None = unbounded
    message: Optional[str] = None


def features_for_role(role: str) -> Tuple[str, ...]:
    if role == "student":
        return STUDENT_FEATURES
    if role == "company":
        return COMPANY_FEATURES
    return STUDENT_FEATURES + COMPANY_FEATURES


def get_usage_limit(plan: str, feature: str, role: str) -> Optional[int]:
    """
    Monthly limit for a feature. A plan from the other audience gets that
    audience's free limits; admins are unbounded.
    """
    if role == "admin":
        return None
    table = STUDENT_PLAN_LIMITS if role == "student" else COMPANY_PLAN_LIMITS
    limits = table.get(plan, table[FREE_PLAN])
    return limits.get(feature, 0)


def current_month(now: Optional[datetime] = None) -> str:
    """Counter period, YYYY-MM in UTC."""
    return (now or utcnow()).strftime("%Y-%m")


def _require_feature(feature: str) -> None:
    if feature not in FEATURE_DISPLAY_NAMES:
        raise ValidationError(f"Unknown feature '{feature}'")


def _counter_filter(user_id: str, feature: str, month: str):
    return (
        UsageCounter.user_id == user_id,
        UsageCounter.feature == feature,
        UsageCounter.month == month,
    )


def _get_counter(db: Session, user_id: str, feature: str, month: str) -> Optional[UsageCounter]:
    return db.scalar(select(UsageCounter).where(*_counter_filter(user_id, feature, month)))


def _ensure_counter(db: Session, user_id: str, feature: str, month: str, limit: Optional[int]) -> None:
    """Create the period's counter row at 0 unless it already exists."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        if _get_counter(db, user_id, feature, month) is None:
            db.add(UsageCounter(user_id=user_id, feature=feature, month=month, count=0, limit=limit))
            db.flush()
        return

    stmt = (
        insert(UsageCounter)
        .values(user_id=user_id, feature=feature, month=month, count=0, limit=limit)
        .on_conflict_do_nothing(index_elements=["user_id", "feature", "month"])
    )
    db.execute(stmt)


def _plan_and_limit(db: Session, user_id: str, feature: str, role: str,
                    now: Optional[datetime] = None) -> Tuple[str, Optional[int]]:
    if role == "admin":
        return "admin", None
    status, _ = resolve_current_plan(db, user_id, now)
    plan = status.effective_plan
    return plan, get_usage_limit(plan, feature, role)


def _upgrade_message(plan: str) -> str:
    return (
        f"This feature is not available for your current plan ({plan}). "
        "Please upgrade to access this feature."
    )


def _limit_reached_message(limit: int) -> str:
    return (
        f"You have reached your monthly limit of {limit} for this feature. "
        "Your limit will reset next month, or upgrade your plan for higher limits."
    )


def check_usage_limit(db: Session, user_id: str, feature: str, role: str, now: Optional[datetime] = None) -> UsageCheck:
    """Read-only quota check for the current month."""
    _require_feature(feature)
    plan, limit = _plan_and_limit(db, user_id, feature, role, now)

    if limit == 0:
        return UsageCheck(allowed=False, current=0, limit=0, message=_upgrade_message(plan))

    counter = _get_counter(db, user_id, feature, current_month(now))
    current = counter.count if counter else 0
    allowed = limit is None or current < limit
    logger.debug("usage %s/%s plan=%s current=%s limit=%s allowed=%s", user_id, feature, plan, current, limit, allowed)
    return UsageCheck(
        allowed=allowed,
        current=current,
        limit=limit,
        message=None if allowed else _limit_reached_message(limit),
    )


def increment_usage(db: Session, user_id: str, feature: str, role: str, now: Optional[datetime] = None) -> int:
    """
    Add one to this month's counter, unconditionally (read-then-write).
    Returns the new count. Features unavailable on the plan are not tracked.
    """
    _require_feature(feature)
    plan, limit = _plan_and_limit(db, user_id, feature, role, now)
    if limit == 0:
        return 0

    month = current_month(now)
    _ensure_counter(db, user_id, feature, month, limit)
    counter = _get_counter(db, user_id, feature, month)
    db.refresh(counter)
    counter.count = counter.count + 1
    counter.limit = limit
    counter.updated_at = now or utcnow()
    db.flush()
    return counter.count


def consume_usage(db: Session, user_id: str, feature: str, role: str, now: Optional[datetime] = None) -> UsageCheck:
    """
    Check and increment in one conditional UPDATE.
    The row is only bumped while count < limit, so concurrent callers cannot overshoot.
    """
    _require_feature(feature)
    plan, limit = _plan_and_limit(db, user_id, feature, role, now)
    if limit == 0:
        return UsageCheck(allowed=False, current=0, limit=0, message=_upgrade_message(plan))

    month = current_month(now)
    _ensure_counter(db, user_id, feature, month, limit)

    conditions = list(_counter_filter(user_id, feature, month))
    if limit is not None:
        conditions.append(UsageCounter.count < limit)
    result = db.execute(
        update(UsageCounter)
        .where(*conditions)
        .values(count=UsageCounter.count + 1, limit=limit, updated_at=now or utcnow())
        .execution_options(synchronize_session=False)
    )
    allowed = result.rowcount == 1
    current = db.scalar(select(UsageCounter.count).where(*_counter_filter(user_id, feature, month))) or 0
    return UsageCheck(
        allowed=allowed,
        current=current,
        limit=limit,
        message=None if allowed else _limit_reached_message(limit),
    )


def check_and_increment_usage(db: Session, user_id: str, feature: str, role: str, now: Optional[datetime] = None) -> UsageCheck:
    """
    Gate a chargeable action. Raises QuotaExceededError when over quota,
    AuthorizationError when the feature belongs to the other audience.
    """
    _require_feature(feature)
    if role != "admin" and feature not in features_for_role(role):
        raise AuthorizationError("This feature is not available for your role.")

    if get_settings().usage_atomic_increment:
        check = consume_usage(db, user_id, feature, role, now)
        if not check.allowed:
            raise QuotaExceededError(check.message)
        return check

    check = check_usage_limit(db, user_id, feature, role, now)
    if not check.allowed:
        raise QuotaExceededError(check.message)
    count = increment_usage(db, user_id, feature, role, now)
    return UsageCheck(allowed=True, current=count, limit=check.limit)


def get_all_usage(db: Session, user_id: str, role: str, now: Optional[datetime] = None) -> dict:
    """Dashboard view: every feature of the role with current count and limit."""
    if role == "admin":
        plan = "admin"
    else:
        status, _ = resolve_current_plan(db, user_id, now)
        plan = status.effective_plan

    counts = {
        row.feature: row.count
        for row in db.scalars(
            select(UsageCounter).where(UsageCounter.user_id == user_id, UsageCounter.month == current_month(now))
        )
    }

    usage: List[dict] = []
    for feature in features_for_role(role):
        limit = get_usage_limit(plan, feature, role)
        current = counts.get(feature, 0)
        usage.append({
            "feature": feature,
            "display_name": FEATURE_DISPLAY_NAMES[feature],
            "current": current,
            "limit": limit,
            "percentage": round(current / limit * 100) if limit else 0,
        })
    return {"plan": plan, "month": current_month(now), "usage": usage}
