"""
PayWay Routes

POST /payway/create              - Start a hosted checkout (pending transaction)
POST /payway/check-transaction   - Raw provider status for one of your transactions
POST /payway/update-transaction  - Re-check with PayWay and reconcile the stored record
POST /payway/return              - Provider callback (no bearer token); re-checks before reconciling

The stored status only ever changes from what PayWay itself reports through
check-transaction; client- or callback-supplied status fields are ignored.
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select

from internmatch.core.auth import CurrentUser, get_current_user
from internmatch.core.errors import NotFoundError, ValidationError, envelope
from internmatch.db.models import Transaction
from internmatch.db.postgres import get_db_session
from internmatch.schemas.schemas import CheckoutRequest, TransactionRequest
from internmatch.services import billing
from internmatch.services.analytics import track_event
from internmatch.services.payway import PayWayClient, get_payway_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payway", tags=["Payments"])


async def _reconcile_from_provider(client: PayWayClient, tran_id: str, user_id=None) -> dict:
    """Poll PayWay, then apply the report in one unit of work."""
    report = await client.check_transaction(tran_id)

    with get_db_session() as db:
        if user_id is not None:
            txn = billing.load_owned_transaction(db, tran_id, user_id)
        else:
            txn = db.scalar(select(Transaction).where(Transaction.tran_id == tran_id))
            if txn is None:
                raise NotFoundError("Transaction not found")
        moved = billing.reconcile(report, txn)
        data = billing.serialize_transaction(txn)
        owner = txn.user_id

    if moved:
        track_event(owner, f"payment.{moved}", {"tran_id": tran_id, "plan": data["plan"], "amount": data["amount"]})
    return data


@router.post("/create")
async def create_payment(
    request: CheckoutRequest,
    user: CurrentUser = Depends(get_current_user),
    client: PayWayClient = Depends(get_payway_client),
):
    """
    Create a pending transaction and submit the purchase to PayWay.

    Returns the hosted checkout URL when PayWay redirects, otherwise the
    checkout HTML to render.
    """
    txn, result = await billing.create_checkout(
        client,
        user,
        plan=request.plan,
        amount=request.amount,
        continue_success_url=request.continue_success_url,
        cancel_url=request.cancel_url,
    )
    track_event(user.user_id, "payment.initiated", {"tran_id": txn.tran_id, "plan": txn.plan, "amount": txn.amount})
    return envelope({
        "tran_id": txn.tran_id,
        "transaction": billing.serialize_transaction(txn),
        "checkout_url": result.checkout_url,
        "html": result.html,
    })


@router.post("/check-transaction")
async def check_transaction(
    request: TransactionRequest,
    user: CurrentUser = Depends(get_current_user),
    client: PayWayClient = Depends(get_payway_client),
):
    """Provider's view of a transaction. Read-only."""
    with get_db_session() as db:
        billing.load_owned_transaction(db, request.tran_id, user.user_id)
    report = await client.check_transaction(request.tran_id)
    return envelope(report)


@router.post("/update-transaction")
async def update_transaction(
    request: TransactionRequest,
    user: CurrentUser = Depends(get_current_user),
    client: PayWayClient = Depends(get_payway_client),
):
    # Ownership before any provider call
    with get_db_session() as db:
        billing.load_owned_transaction(db, request.tran_id, user.user_id)

    data = await _reconcile_from_provider(client, request.tran_id, user.user_id)
    return envelope({"transaction": data})


@router.post("/return")
async def payway_return(request: Request, client: PayWayClient = Depends(get_payway_client)):
    """PayWay's server-to-server notification after a payment attempt."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError as e:
            raise ValidationError("Malformed JSON body") from e
    else:
        body = dict(await request.form())
    tran_id = str((body if isinstance(body, dict) else {}).get("tran_id") or "").strip()
    if not tran_id:
        raise ValidationError("Missing tran_id")

    with get_db_session() as db:
        if db.scalar(select(Transaction.id).where(Transaction.tran_id == tran_id)) is None:
            logger.warning("PayWay return callback for unknown transaction %s", tran_id)
            raise NotFoundError("Transaction not found")

    logger.info("PayWay return callback for %s", tran_id)
    data = await _reconcile_from_provider(client, tran_id)
    return envelope({"tran_id": tran_id, "status": data["status"]})
