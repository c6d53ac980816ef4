"""
Reconciliation, subscription changes and plan resolution.
"""
from datetime import datetime, timedelta

import pytest

from factories import create_transaction, create_user, load_transaction
from internmatch.core.errors import AuthorizationError, NotFoundError, ValidationError
from internmatch.db.models import Transaction
from internmatch.db.postgres import get_db_session
from internmatch.services import billing

NOW = datetime(2025, 1, 15, 10, 0, 0)


def _pending(**fields) -> Transaction:
    values = {"tran_id": "T-1", "amount": 5.0, "currency": "USD", "status": "pending", "auto_renew": None}
    values.update(fields)
    return Transaction(user_id="user-1", **values)


class TestProviderStatus:
    @pytest.mark.parametrize("response, expected", [
        ({"status": 0}, "completed"),
        ({"status": {"code": "00"}}, "completed"),
        ({"data": {"payment_status_code": 0}}, "completed"),
        ({"data": {"payment_status_code": "0"}}, "completed"),
        ({"data": {"payment_status": "SUCCESS"}}, "completed"),
        ({"data": {"payment_status": "completed"}}, "completed"),
        ({"data": {"payment_status_code": 3}}, "failed"),
        ({"data": {"payment_status_code": "7", "payment_status": "DECLINED"}}, "failed"),
        ({"status": {"code": "11"}}, None),
        ({"data": {"payment_status": "PENDING"}}, None),
        ({}, None),
    ])
    def test_decision_table(self, response, expected):
        assert billing.interpret_provider_status(response) == expected

    def test_boolean_status_is_not_zero(self):
        assert billing.interpret_provider_status({"status": False}) is None


class TestReconcile:
    def test_completion_sets_period_from_transaction_date(self):
        txn = _pending()
        report = {"status": 0, "data": {"transaction_date": "2025-01-31 09:00:00", "payment_amount": "5.00"}}

        moved = billing.reconcile(report, txn, now=NOW)

        assert moved == "completed"
        assert txn.status == "completed"
        assert txn.transaction_date == datetime(2025, 1, 31, 9, 0, 0)
        assert txn.expires_at == datetime(2025, 2, 28, 9, 0, 0)
        assert txn.next_billing_date == txn.expires_at
        assert txn.auto_renew is True
        assert txn.payment_amount == 5.0
        assert txn.metadata_json == report

    def test_completion_without_date_uses_now(self):
        txn = _pending()
        billing.reconcile({"status": {"code": "00"}}, txn, now=NOW)
        assert txn.expires_at == datetime(2025, 2, 15, 10, 0, 0)

    def test_keeps_prior_auto_renew(self):
        txn = _pending(auto_renew=False)
        billing.reconcile({"status": 0}, txn, now=NOW)
        assert txn.auto_renew is False

    def test_idempotent(self):
        """Replaying the same completed report never moves expires_at again."""
        txn = _pending()
        report = {"status": 0}
        billing.reconcile(report, txn, now=NOW)
        first_expiry = txn.expires_at

        assert billing.reconcile(report, txn, now=NOW + timedelta(days=3)) is None
        assert txn.expires_at == first_expiry
        assert txn.status == "completed"

    def test_uninterpretable_leaves_status(self):
        txn = _pending()
        assert billing.reconcile({"status": {"code": "11", "message": "pending"}}, txn, now=NOW) is None
        assert txn.status == "pending"
        assert txn.expires_at is None

    def test_terminal_state_never_reopened(self):
        txn = _pending(status="failed")
        assert billing.reconcile({"status": 0}, txn, now=NOW) is None
        assert txn.status == "failed"

    def test_failure_code(self):
        txn = _pending()
        assert billing.reconcile({"data": {"payment_status_code": 2, "payment_status": "DECLINED"}}, txn, now=NOW) == "failed"
        assert txn.payment_status == "DECLINED"
        assert txn.expires_at is None


class TestAddOneMonth:
    @pytest.mark.parametrize("start, expected", [
        (datetime(2025, 1, 31), datetime(2025, 2, 28)),
        (datetime(2024, 1, 31), datetime(2024, 2, 29)),
        (datetime(2025, 12, 15, 8), datetime(2026, 1, 15, 8)),
        (datetime(2025, 3, 31), datetime(2025, 4, 30)),
    ])
    def test_clamps_to_month_end(self, start, expected):
        assert billing.add_one_month(start) == expected


class TestSubscriptionChanges:
    def test_cancel_auto_renew_keeps_expiry(self):
        user = create_user()
        expires = NOW + timedelta(days=10)
        create_transaction(user["user_id"], status="completed", plan="basic", expires_at=expires, next_billing_date=expires)

        with get_db_session() as db:
            txn = billing.cancel_auto_renew(db, user["user_id"], "T-1", now=NOW)

        stored = load_transaction("T-1")
        assert stored.auto_renew is False
        assert stored.next_billing_date is None
        assert stored.expires_at == expires
        assert txn.status == "completed"

    def test_downgrade_expires_now(self):
        user = create_user()
        expires = NOW + timedelta(days=10)
        create_transaction(user["user_id"], status="completed", plan="pro", amount=15.0, expires_at=expires, next_billing_date=expires)

        with get_db_session() as db:
            billing.downgrade_to_free(db, user["user_id"], "T-1", now=NOW)

        stored = load_transaction("T-1")
        assert stored.expires_at <= NOW
        assert stored.auto_renew is False
        assert stored.next_billing_date is None

    @pytest.mark.parametrize("change", [billing.cancel_auto_renew, billing.downgrade_to_free])
    def test_only_completed(self, change):
        user = create_user()
        create_transaction(user["user_id"], status="pending")
        with pytest.raises(ValidationError):
            with get_db_session() as db:
                change(db, user["user_id"], "T-1", now=NOW)
        assert load_transaction("T-1").auto_renew is True

    def test_foreign_transaction_rejected_without_mutation(self):
        owner = create_user(email="owner@example.com")
        intruder = create_user(email="intruder@example.com")
        create_transaction(owner["user_id"], status="completed", plan="basic", expires_at=NOW)

        with pytest.raises(AuthorizationError):
            with get_db_session() as db:
                billing.downgrade_to_free(db, intruder["user_id"], "T-1", now=NOW)
        assert load_transaction("T-1").auto_renew is True

    def test_unknown_transaction(self):
        user = create_user()
        with pytest.raises(NotFoundError):
            with get_db_session() as db:
                billing.cancel_auto_renew(db, user["user_id"], "missing")


class TestResolvePlan:
    def _completed(self, **fields) -> Transaction:
        values = {"plan": "pro", "status": "completed", "auto_renew": True}
        values.update(fields)
        return _pending(**values)

    def test_no_transaction_is_free(self):
        status = billing.resolve_plan(None, NOW)
        assert (status.plan, status.is_active, status.is_expired) == ("free", False, False)

    def test_legacy_row_without_expiry_is_active(self):
        status = billing.resolve_plan(self._completed(expires_at=None), NOW)
        assert (status.plan, status.is_active) == ("pro", True)

    def test_future_expiry_is_active(self):
        status = billing.resolve_plan(self._completed(expires_at=NOW + timedelta(days=1)), NOW)
        assert status.is_active and not status.is_expired
        assert status.effective_plan == "pro"

    def test_expired_with_auto_renew_keeps_plan_label(self):
        status = billing.resolve_plan(self._completed(expires_at=NOW - timedelta(days=1)), NOW)
        assert status.plan == "pro"
        assert status.is_expired is True
        assert status.is_active is False
        assert status.pending_renewal is True
        assert status.effective_plan == "free"

    def test_expired_without_auto_renew_is_free(self):
        status = billing.resolve_plan(self._completed(expires_at=NOW - timedelta(days=1), auto_renew=False), NOW)
        assert (status.plan, status.is_expired, status.is_active) == ("free", True, False)

    def test_blank_plan_is_free(self):
        status = billing.resolve_plan(self._completed(plan=None), NOW)
        assert (status.plan, status.is_active, status.is_expired) == ("free", False, False)

    def test_latest_completed_wins(self):
        user = create_user()
        create_transaction(user["user_id"], tran_id="OLD", status="completed", plan="basic",
                           transaction_date=NOW - timedelta(days=40), created_at=NOW - timedelta(days=40))
        create_transaction(user["user_id"], tran_id="NEW", status="completed", plan="pro", amount=15.0,
                           transaction_date=NOW - timedelta(days=2), created_at=NOW - timedelta(days=2))
        create_transaction(user["user_id"], tran_id="PENDING", status="pending", plan="basic", created_at=NOW)

        with get_db_session() as db:
            status, txn = billing.resolve_current_plan(db, user["user_id"], NOW)
        assert txn.tran_id == "NEW"
        assert status.plan == "pro"


class TestCheckoutAmount:
    def test_plan_price(self):
        assert billing.checkout_amount("student", "basic", None) == 5.0
        assert billing.checkout_amount("company", "enterprise", 25) == 25.0

    def test_plan_for_other_audience_rejected(self):
        with pytest.raises(ValidationError, match="Invalid plan"):
            billing.checkout_amount("student", "growth", None)

    def test_amount_mismatch_rejected(self):
        with pytest.raises(ValidationError):
            billing.checkout_amount("student", "pro", 5)

    def test_plain_amount(self):
        assert billing.checkout_amount("student", None, 5) == 5.0
        with pytest.raises(ValidationError):
            billing.checkout_amount("student", None, 0)
        with pytest.raises(ValidationError):
            billing.checkout_amount("student", None, None)


class TestFixPlan:
    def test_five_dollar_student_scenario(self):
        """Pay $5 without a plan -> provider confirms -> still free -> fix-plan infers basic."""
        user = create_user()
        create_transaction(user["user_id"], amount=5.0, plan=None, status="pending", auto_renew=True)

        with get_db_session() as db:
            txn = db.get(Transaction, load_transaction("T-1").id)
            assert billing.reconcile({"status": 0}, txn, now=NOW) == "completed"

        stored = load_transaction("T-1")
        assert stored.status == "completed"
        assert stored.expires_at == datetime(2025, 2, 15, 10, 0, 0)
        assert stored.plan is None

        with get_db_session() as db:
            status, _ = billing.resolve_current_plan(db, user["user_id"], NOW)
        assert status.plan == "free"

        with get_db_session() as db:
            fixed = billing.fix_plan(db, user["user_id"], "student")
        assert [t.tran_id for t in fixed] == ["T-1"]

        with get_db_session() as db:
            status, _ = billing.resolve_current_plan(db, user["user_id"], NOW)
        assert status.plan == "basic" and status.is_active

    def test_unknown_amount_left_alone(self):
        user = create_user(role="company")
        create_transaction(user["user_id"], amount=7.0, plan=None, status="completed")
        with get_db_session() as db:
            assert billing.fix_plan(db, user["user_id"], "company") == []

    @pytest.mark.parametrize("amount, role, plan", [
        (5, "student", "basic"), (15, "student", "pro"), (15, "company", "growth"), (25, "company", "enterprise"),
    ])
    def test_infer_plan(self, amount, role, plan):
        assert billing.infer_plan(amount, role) == plan


class TestAutoRenew:
    def test_queues_one_renewal_per_expired_subscription(self):
        user = create_user()
        create_transaction(user["user_id"], tran_id="SUB", status="completed", plan="basic",
                           expires_at=NOW - timedelta(days=1), created_at=NOW - timedelta(days=32))
        create_transaction(user["user_id"], tran_id="OFF", status="completed", plan="basic", auto_renew=False,
                           expires_at=NOW - timedelta(days=1))

        with get_db_session() as db:
            first = billing.process_auto_renewals(db, NOW)
        with get_db_session() as db:
            second = billing.process_auto_renewals(db, NOW + timedelta(hours=1))

        assert len(first) == 1
        assert first[0]["old_tran_id"] == "SUB"
        assert first[0]["status"] == "pending_manual_payment"
        assert second == []

        renewal = load_transaction(first[0]["new_tran_id"])
        assert renewal.status == "pending"
        assert renewal.plan == "basic"
        assert renewal.metadata_json == {"renewal_of": "SUB"}
