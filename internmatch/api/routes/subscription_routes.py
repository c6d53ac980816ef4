"""
Subscription Routes

POST /subscriptions/cancel-auto-renew  - Stop renewal, keep the current period
POST /subscriptions/downgrade-to-free  - End the subscription immediately
POST /subscriptions/auto-renew         - Queue renewals for expired subscriptions (admin)
"""

import logging

from fastapi import APIRouter, Depends, Request

from internmatch.core.auth import CurrentUser, get_current_user, require_admin
from internmatch.core.errors import envelope
from internmatch.db.postgres import get_db_session
from internmatch.schemas.schemas import TransactionRequest
from internmatch.services import billing
from internmatch.services.analytics import track_admin_action, track_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


@router.post("/cancel-auto-renew")
async def cancel_auto_renew(request: TransactionRequest, user: CurrentUser = Depends(get_current_user)):
    with get_db_session() as db:
        txn = billing.cancel_auto_renew(db, user.user_id, request.tran_id)
        data = billing.serialize_transaction(txn)

    track_event(user.user_id, "subscription.auto_renew_cancelled", {"tran_id": request.tran_id, "plan": data["plan"]})
    return envelope(
        {"transaction": data},
        message="Auto-renewal cancelled. Your plan stays active until it expires.",
    )


@router.post("/downgrade-to-free")
async def downgrade_to_free(request: TransactionRequest, user: CurrentUser = Depends(get_current_user)):
    with get_db_session() as db:
        txn = billing.downgrade_to_free(db, user.user_id, request.tran_id)
        data = billing.serialize_transaction(txn)

    track_event(user.user_id, "subscription.downgraded", {"tran_id": request.tran_id, "from_plan": data["plan"]})
    return envelope({"transaction": data, "plan": billing.FREE_PLAN}, message="Downgraded to the free plan")


@router.post("/auto-renew")
async def run_auto_renewals(request: Request, admin: CurrentUser = Depends(require_admin)):
    """
    Queue pending renewal transactions for every expired subscription that
    still has auto-renew on. Meant for a scheduler running as an admin.
    """
    with get_db_session() as db:
        renewals = billing.process_auto_renewals(db)

    track_admin_action(
        admin.user_id, "subscription.auto_renew",
        target_type="transaction",
        details={"renewed": len(renewals)},
        ip_address=request.client.host if request.client else None,
    )
    return envelope({"renewed": len(renewals), "renewals": renewals})
