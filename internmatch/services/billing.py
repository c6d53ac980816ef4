"""
Subscription Billing Service

Maps PayWay's authoritative report onto our Transaction rows and derives the
user's current plan from them.

Lifecycle:
    pending -> completed | failed | cancelled   (reconciliation / checkout)
    refunded                                    (set outside this service only)

A transaction that has left `pending` is never moved again by reconcile(), so
re-running check-transaction for the same tran_id is safe.
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from internmatch.core.auth import CurrentUser
from internmatch.core.config import get_settings
from internmatch.core.errors import AuthorizationError, NotFoundError, UpstreamError, ValidationError
from internmatch.db.models import Company, Student, Transaction, utcnow
from internmatch.db.postgres import get_db_session
from internmatch.services.payway import PayWayClient, PurchaseResult, encode_items, format_req_time, generate_tran_id

logger = logging.getLogger(__name__)

FREE_PLAN = "free"

# Paid plans and their monthly price (USD) per audience
PLAN_PRICES = {
    "student": {"basic": 5, "pro": 15},
    "company": {"growth": 15, "enterprise": 25},
}

SUCCESS_PAYMENT_STATUSES = ("success", "completed")


# ============================================================
# DATE HELPERS
# ============================================================

def add_one_month(value: datetime) -> datetime:
    """Same day next month, clamped to that month's last day (Jan 31 -> Feb 28/29)."""
    year, month = (value.year + 1, 1) if value.month == 12 else (value.year, value.month + 1)
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _parse_provider_datetime(raw: Any) -> Optional[datetime]:
    if not raw or not isinstance(raw, str):
        return None
    try:
        parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable PayWay transaction_date: %r", raw)
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _parse_status_code(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip().lstrip("-").isdigit():
        return int(raw.strip())
    return None


def _parse_amount(raw: Any) -> Optional[float]:
    if raw is None or raw == "" or isinstance(raw, bool):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


# ============================================================
# RECONCILIATION
# ============================================================

def interpret_provider_status(response: dict) -> Optional[str]:
    """
    Decide the internal status a PayWay check-transaction response implies.
    Returns None when nothing interpretable is present.
    """
    status = response.get("status")
    if isinstance(status, int) and not isinstance(status, bool) and status == 0:
        return "completed"
    if isinstance(status, dict) and str(status.get("code")) == "00":
        return "completed"

    data = response.get("data")
    if isinstance(data, dict):
        code = _parse_status_code(data.get("payment_status_code"))
        payment_status = str(data.get("payment_status") or "").strip().lower()
        if code == 0 or payment_status in SUCCESS_PAYMENT_STATUSES:
            return "completed"
        if code is not None:
            return "failed"
    return None


def reconcile(response: dict, txn: Transaction, now: Optional[datetime] = None) -> Optional[str]:
    """
    Apply a PayWay report to `txn` in place (caller commits).

    Returns the new status when the transaction moved, else None.
    All field updates are computed first and applied together.
    """
    now = now or utcnow()
    updates: dict = {"metadata_json": response}

    data = response.get("data") if isinstance(response.get("data"), dict) else {}
    if data:
        if data.get("payment_status") is not None:
            updates["payment_status"] = str(data["payment_status"])
            updates["payment_status_message"] = str(data["payment_status"])
        amount = _parse_amount(data.get("payment_amount"))
        if amount is not None:
            updates["payment_amount"] = amount
        if data.get("payment_currency"):
            updates["payment_currency"] = str(data["payment_currency"])
        transaction_date = _parse_provider_datetime(data.get("transaction_date"))
        if transaction_date is not None:
            updates["transaction_date"] = transaction_date

    new_status = interpret_provider_status(response)
    moved = None
    if new_status and txn.status == "pending":
        updates["status"] = new_status
        moved = new_status
        if new_status == "completed" and txn.expires_at is None:
            start = updates.get("transaction_date") or txn.transaction_date or now
            expires_at = add_one_month(start)
            updates["expires_at"] = expires_at
            updates["next_billing_date"] = expires_at
            updates["auto_renew"] = txn.auto_renew if txn.auto_renew is not None else True
    elif new_status and new_status != txn.status:
        logger.warning(
            "Ignoring PayWay status %s for %s transaction %s", new_status, txn.status, txn.tran_id
        )

    for field, value in updates.items():
        setattr(txn, field, value)
    txn.updated_at = now

    if moved:
        logger.info("Transaction %s: pending -> %s", txn.tran_id, moved)
    return moved


def load_owned_transaction(db: Session, tran_id: str, user_id: str) -> Transaction:
    """Fetch a transaction by provider id, enforcing ownership. No mutation on failure."""
    if not tran_id:
        raise ValidationError("Missing tran_id")
    txn = db.scalar(select(Transaction).where(Transaction.tran_id == tran_id))
    if txn is None:
        raise NotFoundError("Transaction not found")
    if txn.user_id != user_id:
        raise AuthorizationError("Transaction does not belong to this user")
    return txn


def cancel_auto_renew(db: Session, user_id: str, tran_id: str, now: Optional[datetime] = None) -> Transaction:
    """Stop renewal; the current period still runs out naturally."""
    txn = load_owned_transaction(db, tran_id, user_id)
    if txn.status != "completed":
        raise ValidationError("Only completed subscriptions can be cancelled")
    txn.auto_renew = False
    txn.next_billing_date = None
    txn.updated_at = now or utcnow()
    logger.info("Auto-renew cancelled for %s (user %s)", tran_id, user_id)
    return txn


def downgrade_to_free(db: Session, user_id: str, tran_id: str, now: Optional[datetime] = None) -> Transaction:
    """Immediate downgrade: the subscription expires now."""
    now = now or utcnow()
    txn = load_owned_transaction(db, tran_id, user_id)
    if txn.status != "completed":
        raise ValidationError("Only completed subscriptions can be downgraded")
    txn.auto_renew = False
    txn.next_billing_date = None
    txn.expires_at = now
    txn.updated_at = now
    logger.info("Downgraded %s to free (user %s)", tran_id, user_id)
    return txn


# ============================================================
# PLAN RESOLUTION
# ============================================================

@dataclass(frozen=True)
class PlanStatus:
    plan: str
    is_active: bool
    is_expired: bool
    expires_at: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    auto_renew: bool = False

    @property
    def pending_renewal(self) -> bool:
        return self.is_expired and self.plan != FREE_PLAN

    @property
    def effective_plan(self) -> str:
        """The plan whose limits apply right now."""
        return self.plan if self.is_active else FREE_PLAN

    def to_dict(self) -> dict:
        return {
            "plan": self.plan,
            "is_active": self.is_active,
            "is_expired": self.is_expired,
            "pending_renewal": self.pending_renewal,
            "expires_at": self.expires_at,
            "next_billing_date": self.next_billing_date,
            "auto_renew": self.auto_renew,
        }


def resolve_plan(txn: Optional[Transaction], now: Optional[datetime] = None) -> PlanStatus:
    """
    Plan implied by the user's latest completed transaction.

    - none                          -> free
    - no plan recorded              -> free (until fix_plan infers it)
    - no expires_at (legacy row)    -> active
    - expires_at in the future      -> active
    - expired, auto_renew on        -> stored plan, inactive + expired (pending renewal)
    - expired, auto_renew off       -> free, expired
    """
    if txn is None:
        return PlanStatus(plan=FREE_PLAN, is_active=False, is_expired=False)

    now = now or utcnow()
    auto_renew = bool(txn.auto_renew)
    details = dict(expires_at=txn.expires_at, next_billing_date=txn.next_billing_date, auto_renew=auto_renew)
    plan = (txn.plan or "").strip()

    if not plan:
        return PlanStatus(plan=FREE_PLAN, is_active=False, is_expired=False, **details)
    if txn.expires_at is None or now <= txn.expires_at:
        return PlanStatus(plan=plan, is_active=True, is_expired=False, **details)
    if auto_renew:
        return PlanStatus(plan=plan, is_active=False, is_expired=True, **details)
    return PlanStatus(plan=FREE_PLAN, is_active=False, is_expired=True, **details)


def latest_completed_transaction(db: Session, user_id: str) -> Optional[Transaction]:
    # A row with no provider date sorts by its creation time
    return db.scalar(
        select(Transaction)
        .where(Transaction.user_id == user_id, Transaction.status == "completed")
        .order_by(func.coalesce(Transaction.transaction_date, Transaction.created_at).desc(), Transaction.created_at.desc())
        .limit(1)
    )


def resolve_current_plan(db: Session, user_id: str, now: Optional[datetime] = None) -> Tuple[PlanStatus, Optional[Transaction]]:
    txn = latest_completed_transaction(db, user_id)
    status = resolve_plan(txn, now)
    logger.debug("Plan for %s: %s (active=%s expired=%s)", user_id, status.plan, status.is_active, status.is_expired)
    return status, txn


def infer_plan(amount: float, role: str) -> Optional[str]:
    """Paid plan matching an amount for a role, if any."""
    for plan, price in PLAN_PRICES.get(role, {}).items():
        if float(amount) == float(price):
            return plan
    return None


def fix_plan(db: Session, user_id: str, role: str) -> List[Transaction]:
    """Fill in the plan of completed transactions that were recorded without one."""
    candidates = db.scalars(
        select(Transaction)
        .where(
            Transaction.user_id == user_id,
            Transaction.status == "completed",
            or_(Transaction.plan.is_(None), Transaction.plan == ""),
        )
        .order_by(Transaction.created_at.desc())
    ).all()

    fixed = []
    for txn in candidates:
        plan = infer_plan(txn.amount, role)
        if plan:
            txn.plan = plan
            txn.updated_at = utcnow()
            fixed.append(txn)
    logger.info("fix-plan for %s: %d of %d transaction(s) fixed", user_id, len(fixed), len(candidates))
    return fixed


# ============================================================
# CHECKOUT & RENEWALS
# ============================================================

def _payer_details(db: Session, user: CurrentUser) -> Tuple[str, str, str]:
    first_name, last_name, phone = "User", "", "012345678"
    if user.role == "student":
        student = db.scalar(select(Student).where(Student.user_id == user.user_id))
        if student:
            first_name = student.first_name or first_name
            last_name = student.last_name or ""
            phone = student.phone_number or phone
    elif user.role == "company":
        company = db.scalar(select(Company).where(Company.user_id == user.user_id))
        if company:
            contact = (company.contact_name or "").split()
            first_name = (contact[0] if contact else company.company_name) or first_name
            last_name = " ".join(contact[1:])
            phone = company.contact_phone or phone
    return first_name, last_name, phone


def _with_query_param(url: str, key: str, value: str) -> str:
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query))
    query[key] = value
    return urlunsplit(parts._replace(query=urlencode(query)))


def checkout_amount(role: str, plan: Optional[str], amount: Optional[float]) -> float:
    """Validate plan/amount for a role and return the amount to charge."""
    if plan:
        prices = PLAN_PRICES.get(role, {})
        if plan not in prices:
            allowed = ", ".join(prices) or "none"
            raise ValidationError(f"Invalid plan '{plan}' for role {role}. Allowed: {allowed}")
        if amount is not None and float(amount) != float(prices[plan]):
            raise ValidationError(f"Amount for the {plan} plan must be {prices[plan]}")
        return float(prices[plan])
    if amount is None:
        raise ValidationError("Either plan or amount is required")
    if amount <= 0:
        raise ValidationError("Amount must be greater than 0")
    return float(amount)


async def create_checkout(
    client: PayWayClient,
    user: CurrentUser,
    *,
    plan: Optional[str] = None,
    amount: Optional[float] = None,
    continue_success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[Transaction, PurchaseResult]:
    """
    Record a pending transaction, then hand the payer to PayWay's hosted checkout.
    A gateway failure marks the transaction failed before re-raising.
    """
    settings = get_settings()
    now_utc = now or datetime.now(timezone.utc)
    charge = checkout_amount(user.role, plan, amount)
    tran_id = generate_tran_id(now_utc)

    with get_db_session() as db:
        first_name, last_name, phone = _payer_details(db, user)
        txn = Transaction(
            user_id=user.user_id,
            tran_id=tran_id,
            amount=charge,
            currency="USD",
            plan=plan or None,
            status="pending",
            auto_renew=bool(plan),
        )
        db.add(txn)

    host = settings.public_host.rstrip("/")
    success_url = continue_success_url or f"{host}/dashboard/settings?success=true"
    product = f"{plan.capitalize()} Plan Subscription" if plan else "Subscription Payment"
    fields = {
        "req_time": format_req_time(now_utc),
        "tran_id": tran_id,
        "amount": f"{charge:g}",
        "items": encode_items(product, charge),
        "firstname": first_name,
        "lastname": last_name,
        "email": user.email,
        "phone": phone,
        "type": "purchase",
        "payment_option": "cards",
        "return_url": f"{host}/api/payway/return",
        "cancel_url": cancel_url or f"{host}/dashboard/settings?canceled=true",
        "continue_success_url": _with_query_param(success_url, "tran_id", tran_id),
        "currency": "USD",
        "payment_gate": "0",
        "view_type": "hosted_view",
    }

    try:
        result = await client.create_purchase(fields)
    except UpstreamError:
        with get_db_session() as db:
            failed = db.scalar(select(Transaction).where(Transaction.tran_id == tran_id))
            if failed is not None and failed.status == "pending":
                failed.status = "failed"
        raise

    logger.info("Checkout %s created for user %s (plan=%s, amount=%s)", tran_id, user.user_id, plan, charge)
    return txn, result


def process_auto_renewals(db: Session, now: Optional[datetime] = None) -> List[dict]:
    """
    Queue a pending renewal for every expired, auto-renewing subscription.

    The charge itself is not taken here; the renewal waits for a manual
    PayWay payment. A subscription that already has a queued renewal is skipped.
    """
    now = now or utcnow()
    expired = db.scalars(
        select(Transaction).where(
            Transaction.status == "completed",
            Transaction.auto_renew.is_(True),
            Transaction.expires_at <= now,
            Transaction.plan.is_not(None),
            Transaction.plan != "",
        )
    ).all()
    logger.info("[Auto-Renew] Found %d subscriptions to renew", len(expired))

    results = []
    for subscription in expired:
        queued = db.scalar(
            select(Transaction.id).where(
                Transaction.user_id == subscription.user_id,
                Transaction.status == "pending",
                Transaction.plan == subscription.plan,
                Transaction.created_at >= subscription.expires_at,
            ).limit(1)
        )
        if queued:
            continue

        renewal = Transaction(
            user_id=subscription.user_id,
            tran_id=generate_tran_id(now),
            amount=subscription.amount,
            currency=subscription.currency,
            plan=subscription.plan,
            status="pending",
            auto_renew=True,
            metadata_json={"renewal_of": subscription.tran_id},
            created_at=now,
        )
        db.add(renewal)
        db.flush()
        logger.info(
            "[Auto-Renew] Created renewal %s for user %s, plan %s",
            renewal.tran_id, subscription.user_id, subscription.plan,
        )
        results.append({
            "user_id": subscription.user_id,
            "old_tran_id": subscription.tran_id,
            "new_tran_id": renewal.tran_id,
            "plan": subscription.plan,
            "amount": subscription.amount,
            "status": "pending_manual_payment",
        })
    return results


def serialize_transaction(txn: Optional[Transaction]) -> Optional[dict]:
    if txn is None:
        return None
    return {
        "id": txn.id,
        "user_id": txn.user_id,
        "tran_id": txn.tran_id,
        "amount": txn.amount,
        "currency": txn.currency,
        "plan": txn.plan,
        "status": txn.status,
        "payment_status": txn.payment_status,
        "payment_amount": txn.payment_amount,
        "payment_currency": txn.payment_currency,
        "transaction_date": txn.transaction_date,
        "expires_at": txn.expires_at,
        "next_billing_date": txn.next_billing_date,
        "auto_renew": txn.auto_renew,
        "created_at": txn.created_at,
        "updated_at": txn.updated_at,
    }
