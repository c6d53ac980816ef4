"""
Admin Routes (admin role only)

GET    /admin/users        - Search users
GET    /admin/users/{id}   - User with profile and current plan
PUT    /admin/users        - Change role / verification flag
DELETE /admin/users/{id}   - Delete a user and everything they own
GET    /admin/analytics    - Platform overview
GET    /admin/audit        - Admin action log

Every mutation is written to the audit trail.
"""

import logging
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, select

from internmatch.api.serializers import profile_for_user, user_to_dict
from internmatch.core.auth import CurrentUser, require_admin
from internmatch.core.errors import NotFoundError, ValidationError, envelope
from internmatch.core.results import parse_bool, parse_enum, parse_int
from internmatch.db.models import AdminAction, AnalyticsEvent, Application, JobPosting, Transaction, User
from internmatch.db.postgres import get_db_session
from internmatch.schemas.schemas import AdminUserUpdate, UserRole
from internmatch.services import billing
from internmatch.services.analytics import track_admin_action

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


class UserSort(str, Enum):
    newest = "newest"
    oldest = "oldest"
    email = "email"


USER_ORDER = {
    UserSort.newest: User.created_at.desc(),
    UserSort.oldest: User.created_at.asc(),
    UserSort.email: User.email.asc(),
}


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.get("/users")
async def list_users(
    role: Optional[str] = Query(None),
    is_verified: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Search in email"),
    sort: Optional[str] = Query(None, description="newest (default), oldest or email"),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
):
    role_filter = parse_enum(role, UserRole, "role").unwrap()
    verified_filter = parse_bool(is_verified, "is_verified").unwrap() if is_verified else None
    order = parse_enum(sort, UserSort, "sort").unwrap() or UserSort.newest
    page_no = parse_int(page, "page", default=1).unwrap()
    page_size = parse_int(limit, "limit", default=20, maximum=100).unwrap()

    conditions = []
    if role_filter:
        conditions.append(User.role == role_filter.value)
    if verified_filter is not None:
        conditions.append(User.is_verified.is_(verified_filter))
    if search:
        conditions.append(User.email.ilike(f"%{search.strip().lower()}%"))

    with get_db_session() as db:
        total = db.scalar(select(func.count()).select_from(User).where(*conditions))
        users = db.scalars(
            select(User).where(*conditions).order_by(USER_ORDER[order])
            .limit(page_size).offset((page_no - 1) * page_size)
        ).all()
        data = [user_to_dict(u) for u in users]

    return envelope({
        "users": data,
        "pagination": {"page": page_no, "limit": page_size, "total": total, "total_pages": -(-total // page_size)},
    })


@router.get("/users/{user_id}")
async def get_user(user_id: str):
    with get_db_session() as db:
        user = db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        status, txn = billing.resolve_current_plan(db, user.id)
        data = {
            **user_to_dict(user),
            "profile": profile_for_user(user),
            "plan": status.to_dict(),
            "transaction": billing.serialize_transaction(txn),
        }
    return envelope(data)


@router.put("/users")
async def update_user(update: AdminUserUpdate, request: Request, admin: CurrentUser = Depends(require_admin)):
    changes = update.model_dump(exclude_unset=True, exclude={"user_id"})
    if not changes:
        raise ValidationError("No fields to update")
    if update.user_id == admin.user_id and "role" in changes:
        raise ValidationError("You cannot change your own role")

    with get_db_session() as db:
        user = db.get(User, update.user_id)
        if user is None:
            raise NotFoundError("User not found")
        before = {"role": user.role, "is_verified": user.is_verified}
        if update.role is not None:
            user.role = update.role.value
        if update.is_verified is not None:
            user.is_verified = update.is_verified
        db.flush()
        data = user_to_dict(user)

    track_admin_action(
        admin.user_id, "user.update",
        target_type="user", target_id=update.user_id,
        details={"before": before, "after": {"role": data["role"], "is_verified": data["is_verified"]}},
        ip_address=_client_ip(request),
    )
    return envelope(data, message="User updated successfully")


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, request: Request, admin: CurrentUser = Depends(require_admin)):
    if user_id == admin.user_id:
        raise ValidationError("You cannot delete your own account")

    with get_db_session() as db:
        user = db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        details = {"email": user.email, "role": user.role}
        db.delete(user)

    track_admin_action(
        admin.user_id, "user.delete",
        target_type="user", target_id=user_id, details=details,
        ip_address=_client_ip(request),
    )
    return envelope(message="User deleted successfully")


@router.get("/analytics")
async def get_analytics():
    """Counts for the dashboard overview."""
    with get_db_session() as db:
        users_by_role = dict(db.execute(select(User.role, func.count()).group_by(User.role)).all())
        unverified = db.scalar(select(func.count()).select_from(User).where(User.is_verified.is_(False)))
        jobs_by_status = dict(db.execute(select(JobPosting.status, func.count()).group_by(JobPosting.status)).all())
        applications_by_status = dict(
            db.execute(select(Application.status, func.count()).group_by(Application.status)).all()
        )
        revenue = db.scalar(
            select(func.coalesce(func.sum(Transaction.amount), 0)).where(Transaction.status == "completed")
        )
        transactions_by_status = dict(
            db.execute(select(Transaction.status, func.count()).group_by(Transaction.status)).all()
        )
        events_by_type = dict(
            db.execute(
                select(AnalyticsEvent.event_type, func.count())
                .group_by(AnalyticsEvent.event_type)
                .order_by(func.count().desc())
                .limit(20)
            ).all()
        )

    return envelope({
        "users": {"total": sum(users_by_role.values()), "by_role": users_by_role, "unverified": unverified},
        "jobs": {"total": sum(jobs_by_status.values()), "by_status": jobs_by_status},
        "applications": {"total": sum(applications_by_status.values()), "by_status": applications_by_status},
        "revenue": {"total": float(revenue or 0), "currency": "USD", "transactions_by_status": transactions_by_status},
        "events": events_by_type,
    })


@router.get("/audit")
async def get_audit_log(
    admin_id: Optional[str] = Query(None),
    action_type: Optional[str] = Query(None),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
):
    page_no = parse_int(page, "page", default=1).unwrap()
    page_size = parse_int(limit, "limit", default=50, maximum=200).unwrap()

    conditions = []
    if admin_id:
        conditions.append(AdminAction.admin_id == admin_id)
    if action_type:
        conditions.append(AdminAction.action_type == action_type)

    with get_db_session() as db:
        total = db.scalar(select(func.count()).select_from(AdminAction).where(*conditions))
        rows = db.scalars(
            select(AdminAction).where(*conditions).order_by(AdminAction.created_at.desc())
            .limit(page_size).offset((page_no - 1) * page_size)
        ).all()
        data = [
            {
                "id": a.id,
                "admin_id": a.admin_id,
                "action_type": a.action_type,
                "target_type": a.target_type,
                "target_id": a.target_id,
                "details": a.details or {},
                "ip_address": a.ip_address,
                "created_at": a.created_at,
            }
            for a in rows
        ]

    return envelope({"actions": data, "pagination": {"page": page_no, "limit": page_size, "total": total}})
