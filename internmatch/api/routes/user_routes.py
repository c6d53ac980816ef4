"""
User Routes

GET  /user/plan      - Current plan and the transaction it comes from
POST /user/fix-plan  - Infer missing plans on completed transactions from their amount
GET  /user/usage     - This month's usage per feature
"""

from fastapi import APIRouter, Depends

from internmatch.core.auth import CurrentUser, get_current_user
from internmatch.core.errors import envelope
from internmatch.db.postgres import get_db_session
from internmatch.services import billing
from internmatch.services.usage import get_all_usage

router = APIRouter(prefix="/user", tags=["User"])


@router.get("/plan")
async def get_plan(user: CurrentUser = Depends(get_current_user)):
    with get_db_session() as db:
        status, txn = billing.resolve_current_plan(db, user.user_id)
        data = {**status.to_dict(), "transaction": billing.serialize_transaction(txn)}
    return envelope(data)


@router.post("/fix-plan")
async def fix_plan(user: CurrentUser = Depends(get_current_user)):
    """Repair transactions that were completed before the plan was recorded."""
    with get_db_session() as db:
        fixed = billing.fix_plan(db, user.user_id, user.role)
        data = {
            "fixed": len(fixed),
            "transactions": [billing.serialize_transaction(t) for t in fixed],
        }
    message = f"Fixed {data['fixed']} transaction(s)" if fixed else "No transactions needed fixing"
    return envelope(data, message=message)


@router.get("/usage")
async def get_usage(user: CurrentUser = Depends(get_current_user)):
    with get_db_session() as db:
        data = get_all_usage(db, user.user_id, user.role)
    return envelope(data)
