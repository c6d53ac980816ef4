"""
ABA PayWay gateway client.

Wire contract (must match the provider bit for bit):
- every request carries `hash`: HMAC-SHA512 over the concatenated values of
  PAYWAY_KEYS in that exact order, skipping absent / None / "" values, keyed
  with the merchant API key, base64 encoded
- `req_time` is UTC formatted YYYYMMDDHHmmss
- bodies are form-encoded POSTs
"""

import base64
import hashlib
import hmac
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Mapping, Optional

import httpx

from internmatch.core.config import get_settings
from internmatch.core.errors import UnexpectedError, UpstreamError

logger = logging.getLogger(__name__)

# The exact order of parameters for hashing as per PayWay documentation
PAYWAY_KEYS = (
    "req_time",
    "merchant_id",
    "tran_id",
    "amount",
    "items",
    "shipping",
    "firstname",
    "lastname",
    "email",
    "phone",
    "type",
    "payment_option",
    "return_url",
    "cancel_url",
    "continue_success_url",
    "return_deeplink",
    "currency",
    "custom_fields",
    "return_params",
    "payout",
    "lifetime",
    "additional_params",
    "google_pay_token",
    "skip_success_page",
)

CHECK_TRANSACTION_KEYS = ("req_time", "merchant_id", "tran_id")

REQUEST_TIMEOUT_SECONDS = 30.0


def _is_present(value: Any) -> bool:
    return value is not None and value != ""


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def compute_request_signature(fields: Mapping[str, Any], secret: str, keys=PAYWAY_KEYS) -> str:
    """HMAC-SHA512 over the present fields in provider order, base64 encoded."""
    b4hash = "".join(_stringify(fields[key]) for key in keys if key in fields and _is_present(fields[key]))
    digest = hmac.new(secret.encode("utf-8"), b4hash.encode("utf-8"), hashlib.sha512).digest()
    return base64.b64encode(digest).decode("ascii")


def format_req_time(now: Optional[datetime] = None) -> str:
    """UTC timestamp without separators, to the second."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime("%Y%m%d%H%M%S")


def generate_tran_id(now: Optional[datetime] = None) -> str:
    """Purely numeric id: req_time plus three random digits."""
    return format_req_time(now) + f"{secrets.randbelow(1000):03d}"


def encode_items(name: str, price: float, quantity: int = 1) -> str:
    """Base64 JSON item list as the purchase form expects."""
    raw = json.dumps([{"name": name, "quantity": quantity, "price": price}], separators=(",", ":"))
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


@dataclass(frozen=True)
class PurchaseResult:
    checkout_url: Optional[str] = None
    html: Optional[str] = None


class PayWayClient:
    """
    Thin async wrapper around the PayWay HTTP API.
    Immutable after construction; one instance is shared per process.
    """

    def __init__(self, merchant_id: str, api_key: str, base_url: str,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.merchant_id = merchant_id
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=REQUEST_TIMEOUT_SECONDS, follow_redirects=True)

    def build_check_request(self, tran_id: str, now: Optional[datetime] = None) -> dict:
        fields = {
            "req_time": format_req_time(now),
            "merchant_id": self.merchant_id,
            "tran_id": tran_id,
        }
        fields["hash"] = compute_request_signature(fields, self.api_key, CHECK_TRANSACTION_KEYS)
        return fields

    def sign_purchase(self, fields: Mapping[str, Any]) -> dict:
        """Drop empty fields, stamp merchant id and hash."""
        payload = {k: _stringify(v) for k, v in fields.items() if _is_present(v)}
        payload["merchant_id"] = self.merchant_id
        payload["hash"] = compute_request_signature(payload, self.api_key)
        return payload

    async def check_transaction(self, tran_id: str, now: Optional[datetime] = None) -> dict:
        """Ask PayWay for the authoritative status of a transaction."""
        form = self.build_check_request(tran_id, now)
        url = f"{self.base_url}/check-transaction"
        try:
            async with self._client() as client:
                response = await client.post(url, data=form)
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamError(f"PayWay check-transaction failed for {tran_id}: {e}") from e
        logger.info("PayWay check-transaction %s -> %s", tran_id, body.get("status") if isinstance(body, dict) else body)
        if not isinstance(body, dict):
            raise UpstreamError(f"PayWay check-transaction returned non-object for {tran_id}")
        return body

    async def create_purchase(self, fields: Mapping[str, Any]) -> PurchaseResult:
        """Submit the hosted-checkout purchase form."""
        form = self.sign_purchase(fields)
        url = f"{self.base_url}/purchase"
        try:
            async with self._client() as client:
                response = await client.post(url, data=form)
        except httpx.HTTPError as e:
            raise UpstreamError(f"PayWay purchase request failed: {e}") from e

        if response.is_error:
            raise UpstreamError(f"PayWay purchase rejected ({response.status_code}): {response.text[:500]}")
        if response.history:
            return PurchaseResult(checkout_url=str(response.url))
        return PurchaseResult(html=response.text)


@lru_cache()
def get_payway_client() -> PayWayClient:
    """FastAPI dependency - process-wide PayWay client."""
    settings = get_settings()
    if not settings.payway_merchant_id or not settings.payway_api_key:
        raise UnexpectedError("PAYWAY_MERCHANT_ID / PAYWAY_API_KEY not configured")
    return PayWayClient(settings.payway_merchant_id, settings.payway_api_key, settings.payway_base_url)
