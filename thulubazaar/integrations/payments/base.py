from __future__ import annotations

from dataclasses import dataclass, field


# Gateway-neutral verification outcomes.
COMPLETED = "completed"
PENDING = "pending"
FAILED = "failed"
CANCELED = "canceled"
REFUNDED = "refunded"
EXPIRED = "expired"


@dataclass
class PaymentInitializeResult:
    payment_url: str
    transaction_id: str
    provider: str
    pidx: str | None = None
    expires_at: str | None = None
    raw: dict | None = None


@dataclass
class PaymentVerifyResult:
    status: str
    amount: float
    gateway_transaction_id: str | None = None
    error: str = ""
    raw: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == COMPLETED

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "amount": self.amount,
            "gatewayTransactionId": self.gateway_transaction_id,
            "error": self.error,
            "raw": self.raw,
        }


class PaymentsProvider:
    name = "unknown"
    display_name = "Unknown"
    # Smallest amount (NPR) the gateway accepts.
    min_amount = 0.0

    def initialize(
        self,
        *,
        order_id: str,
        amount: float,
        order_name: str,
        return_url: str,
        customer: dict | None = None,
    ) -> PaymentInitializeResult:
        raise NotImplementedError

    def verify(
        self,
        *,
        order_id: str,
        amount: float,
        pidx: str | None = None,
        callback: dict | None = None,
    ) -> PaymentVerifyResult:
        raise NotImplementedError
