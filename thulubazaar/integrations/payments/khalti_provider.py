from __future__ import annotations

import requests

from thulubazaar.config import frontend_url, payments_http_timeout
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

KHALTI_SANDBOX_URL = "https://dev.khalti.com/api/v2"
KHALTI_PRODUCTION_URL = "https://khalti.com/api/v2"

_STATUS_MAP = {
    "Completed": COMPLETED,
    "Pending": PENDING,
    "Initiated": PENDING,
    "Refunded": REFUNDED,
    "Expired": EXPIRED,
    "User canceled": CANCELED,
}


class KhaltiPaymentsProvider(PaymentsProvider):
    name = "khalti"
    display_name = "Khalti"
    min_amount = 10.0

    def __init__(self, secret_key: str, *, production: bool = False):
        self.secret_key = secret_key
        self.api_url = KHALTI_PRODUCTION_URL if production else KHALTI_SANDBOX_URL

    def _headers(self) -> dict:
        return {
            "Authorization": f"Key {self.secret_key}",
            "Content-Type": "application/json",
        }

    def initialize(
        self,
        *,
        order_id: str,
        amount: float,
        order_name: str,
        return_url: str,
        customer: dict | None = None,
    ) -> PaymentInitializeResult:
        # Khalti bills in paisa; Rs. 10 minimum.
        amount_paisa = int(round(float(amount) * 100))
        if amount_paisa < 1000:
            raise ValueError("KHALTI_MIN_AMOUNT:Minimum amount is Rs. 10")
        customer = customer or {}
        payload = {
            "return_url": return_url,
            "website_url": frontend_url(),
            "amount": amount_paisa,
            "purchase_order_id": order_id,
            "purchase_order_name": order_name,
            "customer_info": {
                "name": customer.get("name") or "Customer",
                "email": customer.get("email") or "",
                "phone": customer.get("phone") or "",
            },
        }
        r = requests.post(
            f"{self.api_url}/epayment/initiate/",
            headers=self._headers(),
            json=payload,
            timeout=payments_http_timeout(),
        )
        j = r.json() if r.content else {}
        if r.status_code < 200 or r.status_code >= 300:
            msg = (j.get("detail") or j.get("error_key") or f"HTTP {r.status_code}")
            raise RuntimeError(f"KHALTI_INIT_FAILED:{msg}")
        return PaymentInitializeResult(
            payment_url=(j.get("payment_url") or "").strip(),
            transaction_id=order_id,
            provider=self.name,
            pidx=j.get("pidx"),
            expires_at=j.get("expires_at"),
            raw=j if isinstance(j, dict) else {"payload": j},
        )

    def verify(
        self,
        *,
        order_id: str,
        amount: float,
        pidx: str | None = None,
        callback: dict | None = None,
    ) -> PaymentVerifyResult:
        pidx = (pidx or "").strip()
        if not pidx:
            return PaymentVerifyResult(status=FAILED, amount=0.0, error="pidx is required for verification")
        try:
            r = requests.post(
                f"{self.api_url}/epayment/lookup/",
                headers=self._headers(),
                json={"pidx": pidx},
                timeout=payments_http_timeout(),
            )
            j = r.json() if r.content else {}
        except (requests.RequestException, ValueError) as e:
            raise GatewayVerificationError(f"KHALTI_LOOKUP_FAILED:{e}") from e
        if not isinstance(j, dict):
            j = {"payload": j}
        if r.status_code < 200 or r.status_code >= 300:
            return PaymentVerifyResult(
                status=FAILED,
                amount=0.0,
                error=str(j.get("detail") or "Verification failed"),
                raw=j,
            )
        try:
            paid = float(j.get("total_amount") or 0) / 100.0
        except Exception:
            paid = 0.0
        return PaymentVerifyResult(
            status=_STATUS_MAP.get(str(j.get("status") or ""), FAILED),
            amount=paid,
            gateway_transaction_id=j.get("transaction_id"),
            raw=j,
        )
