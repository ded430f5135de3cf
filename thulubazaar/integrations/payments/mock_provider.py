from __future__ import annotations

from urllib.parse import urlencode

from thulubazaar.config import api_base_url
from thulubazaar.integrations.payments.base import (
    COMPLETED,
    PaymentsProvider,
    PaymentInitializeResult,
    PaymentVerifyResult,
)


class MockPaymentsProvider(PaymentsProvider):
    """Local gateway simulator; the payment page is our own /api/mock-payment routes."""

    name = "mock"
    display_name = "Mock Gateway (testing)"

    def initialize(
        self,
        *,
        order_id: str,
        amount: float,
        order_name: str,
        return_url: str,
        customer: dict | None = None,
    ) -> PaymentInitializeResult:
        query = urlencode({"txnId": order_id, "amount": amount})
        return PaymentInitializeResult(
            payment_url=f"{api_base_url()}/api/mock-payment/success?{query}",
            transaction_id=order_id,
            provider=self.name,
            raw={
                "order_name": order_name,
                "amount": amount,
                "return_url": return_url,
                "customer": customer or {},
            },
        )

    def verify(
        self,
        *,
        order_id: str,
        amount: float,
        pidx: str | None = None,
        callback: dict | None = None,
    ) -> PaymentVerifyResult:
        return PaymentVerifyResult(
            status=COMPLETED,
            amount=float(amount or 0.0),
            gateway_transaction_id=f"MOCK_{order_id}",
            raw={"order_id": order_id, "provider": self.name},
        )
