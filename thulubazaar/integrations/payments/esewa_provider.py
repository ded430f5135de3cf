from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from decimal import Decimal, InvalidOperation
from urllib.parse import urlencode

import requests

from thulubazaar.config import api_base_url, payments_http_timeout
from thulubazaar.integrations.common import GatewayVerificationError
from thulubazaar.integrations.payments.base import (
    CANCELED,
    COMPLETED,
    EXPIRED,
    FAILED,
    PENDING,
    REFUNDED,
    PaymentsProvider,
    PaymentInitializeResult,
    PaymentVerifyResult,
)

ESEWA_SANDBOX_URL = "https://rc-epay.esewa.com.np"
ESEWA_PRODUCTION_URL = "https://epay.esewa.com.np"
ESEWA_SANDBOX_STATUS_URL = "https://rc.esewa.com.np"
ESEWA_PRODUCTION_STATUS_URL = "https://esewa.com.np"

# Public sandbox credentials published by eSewa.
ESEWA_TEST_MERCHANT_CODE = "EPAYTEST"
ESEWA_TEST_SECRET_KEY = "8gBm/:&EnhH.1/q"

INITIATE_SIGNED_FIELDS = "total_amount,transaction_uuid,product_code"

# A callback is only trusted locally when these fields are covered by its signature.
CALLBACK_REQUIRED_FIELDS = frozenset({"status", "total_amount", "transaction_uuid", "product_code"})

_STATUS_MAP = {
    "COMPLETE": COMPLETED,
    "PENDING": PENDING,
    "AMBIGUOUS": PENDING,
    "FULL_REFUND": REFUNDED,
    "PARTIAL_REFUND": REFUNDED,
    "NOT_FOUND": EXPIRED,
    "CANCELED": CANCELED,
}


def format_amount(amount) -> str:
    """Render an amount the way eSewa signs it: no trailing zeros, no exponent."""
    try:
        value = Decimal(str(amount)).normalize()
    except (InvalidOperation, ValueError):
        return str(amount)
    return format(value, "f")


def sign_fields(fields: dict, signed_field_names: str, secret_key: str) -> str:
    parts = []
    for name in signed_field_names.split(","):
        name = name.strip()
        value = fields.get(name)
        parts.append(f"{name}={'' if value is None else value}")
    digest = hmac.new(secret_key.encode("utf-8"), ",".join(parts).encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def decode_callback(encoded: str | None) -> dict | None:
    """eSewa redirects back with ?data=<base64 JSON>."""
    raw = (encoded or "").strip()
    if not raw:
        return None
    try:
        padded = raw + "=" * (-len(raw) % 4)
        decoded = base64.b64decode(padded).decode("utf-8")
        parsed = json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


class EsewaPaymentsProvider(PaymentsProvider):
    name = "esewa"
    display_name = "eSewa"
    min_amount = 10.0

    def __init__(self, merchant_code: str, secret_key: str, *, production: bool = False):
        self.merchant_code = merchant_code
        self.secret_key = secret_key
        self.form_url = f"{ESEWA_PRODUCTION_URL if production else ESEWA_SANDBOX_URL}/api/epay/main/v2/form"
        self.status_url = ESEWA_PRODUCTION_STATUS_URL if production else ESEWA_SANDBOX_STATUS_URL

    def build_form(self, *, order_id: str, amount: float, return_url: str) -> dict:
        total = format_amount(amount)
        fields = {
            "amount": total,
            "tax_amount": "0",
            "total_amount": total,
            "transaction_uuid": order_id,
            "product_code": self.merchant_code,
            "product_service_charge": "0",
            "product_delivery_charge": "0",
            "success_url": return_url,
            "failure_url": return_url,
            "signed_field_names": INITIATE_SIGNED_FIELDS,
        }
        fields["signature"] = sign_fields(fields, INITIATE_SIGNED_FIELDS, self.secret_key)
        return fields

    def initialize(
        self,
        *,
        order_id: str,
        amount: float,
        order_name: str,
        return_url: str,
        customer: dict | None = None,
    ) -> PaymentInitializeResult:
        # eSewa wants a browser form POST; our redirect page submits it.
        form = self.build_form(order_id=order_id, amount=amount, return_url=return_url)
        query = urlencode({**form, "formUrl": self.form_url})
        return PaymentInitializeResult(
            payment_url=f"{api_base_url()}/api/payments/esewa/redirect?{query}",
            transaction_id=order_id,
            provider=self.name,
            raw={"form": form, "form_url": self.form_url},
        )

    def signature_valid(self, data: dict) -> bool:
        signed = str(data.get("signed_field_names") or "").strip()
        signature = str(data.get("signature") or "").strip()
        if not signed or not signature:
            return False
        expected = sign_fields(data, signed, self.secret_key)
        return hmac.compare_digest(expected, signature)

    def callback_matches(self, data: dict, order_id: str) -> bool:
        signed = {name.strip() for name in str(data.get("signed_field_names") or "").split(",")}
        if not CALLBACK_REQUIRED_FIELDS.issubset(signed):
            return False
        return (
            str(data.get("transaction_uuid") or "") == order_id
            and str(data.get("product_code") or "") == self.merchant_code
        )

    def verify(
        self,
        *,
        order_id: str,
        amount: float,
        pidx: str | None = None,
        callback: dict | None = None,
    ) -> PaymentVerifyResult:
        if (
            callback
            and str(callback.get("status") or "").upper() == "COMPLETE"
            and self.signature_valid(callback)
            and self.callback_matches(callback, order_id)
        ):
            try:
                paid = float(str(callback.get("total_amount") or "0").replace(",", ""))
            except ValueError:
                paid = 0.0
            return PaymentVerifyResult(
                status=COMPLETED,
                amount=paid,
                gateway_transaction_id=str(callback.get("transaction_code") or "") or None,
                raw=dict(callback),
            )

        params = {
            "product_code": self.merchant_code,
            "total_amount": format_amount(amount or 0),
            "transaction_uuid": order_id,
        }
        try:
            r = requests.get(
                f"{self.status_url}/api/epay/transaction/status/",
                params=params,
                headers={"Content-Type": "application/json"},
                timeout=payments_http_timeout(),
            )
            j = r.json() if r.content else {}
        except (requests.RequestException, ValueError) as e:
            raise GatewayVerificationError(f"ESEWA_STATUS_FAILED:{e}") from e
        if not isinstance(j, dict):
            j = {"payload": j}
        if r.status_code < 200 or r.status_code >= 300:
            return PaymentVerifyResult(
                status=FAILED,
                amount=0.0,
                error=str(j.get("message") or j.get("error_message") or "Verification failed"),
                raw=j,
            )
        try:
            paid = float(j.get("total_amount") or 0)
        except (TypeError, ValueError):
            paid = 0.0
        return PaymentVerifyResult(
            status=_STATUS_MAP.get(str(j.get("status") or "").upper(), FAILED),
            amount=paid,
            gateway_transaction_id=j.get("ref_id"),
            raw=j,
        )
