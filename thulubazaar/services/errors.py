from __future__ import annotations


class ServiceError(Exception):
    """Base for errors the API layer turns into {"ok": false, "error": code}."""

    code = "SERVICE_ERROR"
    status = 400

    def __init__(self, message: str = "", *, code: str | None = None):
        if code:
            self.code = code
        self.message = message or self.code
        super().__init__(self.message)

    def to_payload(self) -> dict:
        return {"ok": False, "error": self.code, "message": self.message}


class PaymentValidationError(ServiceError):
    code = "VALIDATION_ERROR"
    status = 400


class TransactionNotFoundError(ServiceError):
    code = "TRANSACTION_NOT_FOUND"
    status = 404


class AdNotFoundError(ServiceError):
    code = "AD_NOT_FOUND"
    status = 404


class AdOwnershipError(ServiceError):
    code = "AD_NOT_OWNED"
    status = 403


class AdNotPromotableError(ServiceError):
    code = "AD_NOT_PROMOTABLE"
    status = 400


class PromotionValidationError(ServiceError):
    code = "INVALID_PROMOTION"
    status = 400


class PricingNotFoundError(ServiceError):
    code = "PRICING_NOT_FOUND"
    status = 404


class AccountSuspendedError(ServiceError):
    code = "ACCOUNT_SUSPENDED"
    status = 403
