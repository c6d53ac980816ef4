"""
PayWay wire contract: signature recipe, timestamps and the HTTP calls.
"""
import base64
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from internmatch.core.errors import UpstreamError
from internmatch.services.payway import (
    CHECK_TRANSACTION_KEYS,
    PayWayClient,
    compute_request_signature,
    encode_items,
    format_req_time,
    generate_tran_id,
)

SECRET = "merchant-secret"
BASE_URL = "https://payway.test/api/payment-gateway/v1/payments"


def _expected(concatenated: str) -> str:
    digest = hmac.new(SECRET.encode(), concatenated.encode(), hashlib.sha512).digest()
    return base64.b64encode(digest).decode()


def _client(handler) -> PayWayClient:
    return PayWayClient("merchant-1", SECRET, BASE_URL, transport=httpx.MockTransport(handler))


class TestSignature:
    def test_provider_order_not_insertion_order(self):
        """Fields are concatenated in the provider's fixed order whatever the dict order."""
        fields = {"currency": "USD", "amount": "5", "tran_id": "T1", "merchant_id": "M1", "req_time": "20250101000000"}
        assert compute_request_signature(fields, SECRET) == _expected("20250101000000M1T15USD")

    def test_deterministic(self):
        fields = {"req_time": "20250101000000", "merchant_id": "M1", "tran_id": "T1", "amount": "15"}
        assert compute_request_signature(fields, SECRET) == compute_request_signature(dict(fields), SECRET)

    @pytest.mark.parametrize("empty", ["", None])
    def test_empty_field_same_as_absent(self, empty):
        base = {"req_time": "20250101000000", "merchant_id": "M1", "tran_id": "T1"}
        assert compute_request_signature({**base, "shipping": empty}, SECRET) == compute_request_signature(base, SECRET)

    def test_unknown_fields_ignored(self):
        base = {"req_time": "20250101000000", "merchant_id": "M1", "tran_id": "T1"}
        assert compute_request_signature({**base, "view_type": "hosted_view"}, SECRET) == compute_request_signature(base, SECRET)

    def test_reduced_key_set_for_check_transaction(self):
        fields = {"req_time": "20250101000000", "merchant_id": "M1", "tran_id": "T1", "amount": "5"}
        assert compute_request_signature(fields, SECRET, CHECK_TRANSACTION_KEYS) == _expected("20250101000000M1T1")


class TestFormatting:
    def test_req_time_is_utc_without_separators(self):
        assert format_req_time(datetime(2025, 3, 4, 5, 6, 7)) == "20250304050607"

    def test_req_time_converts_aware_datetimes(self):
        ict = datetime(2025, 3, 4, 12, 0, 0, tzinfo=timezone.utc).astimezone(
            timezone(timedelta(hours=7))
        )
        assert format_req_time(ict) == "20250304120000"

    def test_tran_id_is_numeric(self):
        tran_id = generate_tran_id(datetime(2025, 3, 4, 5, 6, 7))
        assert tran_id.isdigit()
        assert tran_id.startswith("20250304050607") and len(tran_id) == 17

    def test_items_are_base64_json(self):
        decoded = json.loads(base64.b64decode(encode_items("Pro Plan Subscription", 15)))
        assert decoded == [{"name": "Pro Plan Subscription", "quantity": 1, "price": 15}]


class TestCheckTransaction:
    @pytest.mark.asyncio
    async def test_posts_signed_form(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["content_type"] = request.headers["content-type"]
            seen["form"] = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            return httpx.Response(200, json={"status": {"code": "00"}, "data": {"payment_status": "APPROVED"}})

        now = datetime(2025, 1, 1, 8, 30, 0)
        report = await _client(handler).check_transaction("T42", now=now)

        assert report["status"]["code"] == "00"
        assert seen["url"] == f"{BASE_URL}/check-transaction"
        assert seen["content_type"].startswith("application/x-www-form-urlencoded")
        assert seen["form"]["req_time"] == "20250101083000"
        assert seen["form"]["merchant_id"] == "merchant-1"
        assert seen["form"]["hash"] == _expected("20250101083000merchant-1T42")

    @pytest.mark.asyncio
    async def test_http_error_becomes_upstream_error(self):
        client = _client(lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(UpstreamError):
            await client.check_transaction("T42")

    @pytest.mark.asyncio
    async def test_non_json_becomes_upstream_error(self):
        client = _client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(UpstreamError):
            await client.check_transaction("T42")


class TestCreatePurchase:
    @pytest.mark.asyncio
    async def test_redirect_yields_checkout_url(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/purchase"):
                return httpx.Response(302, headers={"Location": "https://checkout.payway.test/session/abc"})
            return httpx.Response(200, text="checkout page")

        result = await _client(handler).create_purchase({"tran_id": "T1", "amount": "5", "shipping": ""})
        assert result.checkout_url == "https://checkout.payway.test/session/abc"
        assert result.html is None

    @pytest.mark.asyncio
    async def test_inline_html_when_no_redirect(self):
        result = await _client(lambda request: httpx.Response(200, text="<form>pay</form>")).create_purchase({"tran_id": "T1"})
        assert result.html == "<form>pay</form>"

    def test_sign_purchase_drops_empty_fields(self):
        client = PayWayClient("merchant-1", SECRET, BASE_URL)
        payload = client.sign_purchase({"req_time": "20250101000000", "tran_id": "T1", "shipping": "", "lifetime": None})
        assert "shipping" not in payload and "lifetime" not in payload
        assert payload["hash"] == _expected("20250101000000merchant-1T1")

    @pytest.mark.asyncio
    async def test_rejection_raises(self):
        client = _client(lambda request: httpx.Response(400, json={"status": {"code": "1", "message": "Wrong hash"}}))
        with pytest.raises(UpstreamError):
            await client.create_purchase({"tran_id": "T1"})
