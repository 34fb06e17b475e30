"""Thin client for a Razorpay-compatible payment gateway.

Only the calls the order ledger needs: create a gateway order, read an
order back with its payments, and verify the two kinds of signatures the
gateway produces (checkout callback and webhook).
"""
import hashlib
import hmac
import json
import logging

import requests
from django.conf import settings
from requests import RequestException
from requests.auth import HTTPBasicAuth

logger = logging.getLogger(__name__)

COMMON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class GatewayError(Exception):
    status_code = 502

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


def _base_url() -> str:
    return settings.RAZORPAY_BASE_URL.rstrip("/")


def _auth() -> HTTPBasicAuth:
    key_id = getattr(settings, "RAZORPAY_KEY_ID", "")
    key_secret = getattr(settings, "RAZORPAY_KEY_SECRET", "")
    if not (key_id and key_secret):
        raise GatewayError("Missing RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET")
    return HTTPBasicAuth(key_id, key_secret)


def _timeout() -> int:
    return getattr(settings, "RAZORPAY_TIMEOUT", 30)


def _parse(resp, action: str) -> dict:
    try:
        data = resp.json()
    except ValueError:
        data = {"raw": resp.text}
    if resp.status_code == 200:
        return data
    if resp.status_code == 401:
        hint = "Check RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET."
    elif resp.status_code == 400:
        hint = "Bad request: amount/currency/receipt."
    elif resp.status_code in (404, 500, 502, 503):
        hint = f"Gateway error {resp.status_code}."
    else:
        hint = f"HTTP {resp.status_code}"
    raise GatewayError(f"{action} failed: {hint} Response: {json.dumps(data)[:800]}")


def create_order(*, amount: int, receipt: str, currency: str = "INR", notes: dict | None = None) -> dict:
    """Create a gateway order for ``amount`` paise and return its JSON."""
    payload = {
        "amount": int(amount),
        "currency": currency,
        "receipt": receipt,
        "notes": notes or {},
    }
    try:
        resp = requests.post(
            f"{_base_url()}/orders",
            json=payload,
            headers=COMMON_HEADERS,
            auth=_auth(),
            timeout=_timeout(),
        )
    except RequestException as e:
        raise GatewayError(f"Gateway request failed: {e}")
    return _parse(resp, "Create order")


def fetch_order(gateway_order_id: str) -> dict:
    try:
        resp = requests.get(
            f"{_base_url()}/orders/{gateway_order_id}",
            headers=COMMON_HEADERS,
            auth=_auth(),
            timeout=_timeout(),
        )
    except RequestException as e:
        raise GatewayError(f"Gateway request failed: {e}")
    return _parse(resp, "Fetch order")


def fetch_order_payments(gateway_order_id: str) -> list:
    try:
        resp = requests.get(
            f"{_base_url()}/orders/{gateway_order_id}/payments",
            headers=COMMON_HEADERS,
            auth=_auth(),
            timeout=_timeout(),
        )
    except RequestException as e:
        raise GatewayError(f"Gateway request failed: {e}")
    return _parse(resp, "Fetch payments").get("items", [])


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_payment_signature(gateway_order_id: str, payment_id: str, signature: str) -> bool:
    """Check the signature the checkout widget hands back to the buyer.

    The gateway signs ``"<order_id>|<payment_id>"`` with the key secret.
    A missing secret is a configuration error, never a pass.
    """
    secret = getattr(settings, "RAZORPAY_KEY_SECRET", "")
    if not secret:
        logger.error("RAZORPAY_KEY_SECRET missing; refusing payment signature")
        return False
    expected = _hmac_hex(secret, f"{gateway_order_id}|{payment_id}".encode())
    return hmac.compare_digest(expected, str(signature or "").strip())


def verify_webhook_signature(raw_body: bytes, signature: str) -> bool:
    secret = getattr(settings, "RAZORPAY_WEBHOOK_SECRET", "")
    if not secret:
        logger.error("RAZORPAY_WEBHOOK_SECRET missing; refusing webhook")
        return False
    expected = _hmac_hex(secret, raw_body or b"")
    return hmac.compare_digest(expected, str(signature or "").strip())


def public_key_id() -> str:
    return getattr(settings, "RAZORPAY_KEY_ID", "")
