from __future__ import annotations

import os

from thulubazaar.config import is_production, mock_payments_enabled
from thulubazaar.integrations.common import IntegrationMisconfiguredError, UnknownGatewayError
from thulubazaar.integrations.payments.base import PaymentsProvider
from thulubazaar.integrations.payments.esewa_provider import (
    ESEWA_TEST_MERCHANT_CODE,
    ESEWA_TEST_SECRET_KEY,
    EsewaPaymentsProvider,
)
from thulubazaar.integrations.payments.khalti_provider import KhaltiPaymentsProvider
from thulubazaar.integrations.payments.mock_provider import MockPaymentsProvider

REAL_GATEWAYS = ("khalti", "esewa")


def _is_production_gateway(env_key: str) -> bool:
    return (os.getenv(env_key) or "").strip().lower() == "production"


def known_gateway(gateway: str | None) -> bool:
    name = (gateway or "").strip().lower()
    if name in REAL_GATEWAYS:
        return True
    return name == "mock" and mock_payments_enabled()


def build_payments_provider(gateway: str | None) -> PaymentsProvider:
    name = (gateway or "").strip().lower()

    if name == "mock":
        if not mock_payments_enabled():
            raise UnknownGatewayError(name)
        return MockPaymentsProvider()

    if name == "khalti":
        secret_key = (os.getenv("KHALTI_SECRET_KEY") or "").strip()
        if not secret_key:
            raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing KHALTI_SECRET_KEY")
        return KhaltiPaymentsProvider(secret_key=secret_key, production=_is_production_gateway("KHALTI_ENV"))

    if name == "esewa":
        production = _is_production_gateway("ESEWA_ENV")
        merchant_code = (os.getenv("ESEWA_MERCHANT_CODE") or "").strip()
        secret_key = (os.getenv("ESEWA_SECRET_KEY") or "").strip()
        if production or is_production():
            if not merchant_code or not secret_key:
                raise IntegrationMisconfiguredError(
                    "INTEGRATION_MISCONFIGURED:missing ESEWA_MERCHANT_CODE/ESEWA_SECRET_KEY"
                )
        return EsewaPaymentsProvider(
            merchant_code=merchant_code or ESEWA_TEST_MERCHANT_CODE,
            secret_key=secret_key or ESEWA_TEST_SECRET_KEY,
            production=production,
        )

    raise UnknownGatewayError(name)


def available_gateways() -> list[dict]:
    items = []
    for name in ("khalti", "esewa", "mock"):
        try:
            provider = build_payments_provider(name)
        except (UnknownGatewayError, IntegrationMisconfiguredError):
            continue
        items.append(
            {
                "id": provider.name,
                "name": provider.display_name,
                "minAmount": provider.min_amount,
            }
        )
    return items


def payment_health() -> dict:
    missing = []
    if not (os.getenv("KHALTI_SECRET_KEY") or "").strip():
        missing.append("KHALTI_SECRET_KEY")
    if not (os.getenv("ESEWA_SECRET_KEY") or "").strip():
        missing.append("ESEWA_SECRET_KEY")
    enabled = [g["id"] for g in available_gateways()]
    if not enabled:
        status = "disabled"
    elif missing:
        status = "partial"
    else:
        status = "configured"
    return {
        "status": status,
        "enabled": enabled,
        "mock_enabled": mock_payments_enabled(),
        "missing": missing,
    }
