from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import json
import logging
import secrets
import string
import time
from urllib.parse import urlencode

import requests

from thulubazaar.config import api_base_url, frontend_url
from thulubazaar.extensions import db
from thulubazaar.integrations.common import (
    GatewayVerificationError,
    IntegrationMisconfiguredError,
    UnknownGatewayError,
)
from thulubazaar.integrations.payments import base as gateway_status
from thulubazaar.integrations.payments.base import PaymentsProvider, PaymentVerifyResult
from thulubazaar.integrations.payments.esewa_provider import decode_callback
from thulubazaar.integrations.payments.factory import build_payments_provider, known_gateway
from thulubazaar.models import Ad, PaymentTransaction, PaymentTransition, User, VerificationRequest
from thulubazaar.services.errors import (
    AccountSuspendedError,
    AdNotFoundError,
    AdNotPromotableError,
    AdOwnershipError,
    PaymentValidationError,
    PricingNotFoundError,
    ServiceError,
    TransactionNotFoundError,
)
from thulubazaar.services.pricing_service import calculate_price
from thulubazaar.services.promotion_service import (
    activate_promotion,
    normalize_duration_days,
    normalize_promotion_type,
)

logger = logging.getLogger(__name__)

PAYMENT_TYPES = ("ad_promotion", "individual_verification", "business_verification")
_ORDER_ID_ALPHABET = string.ascii_lowercase + string.digits


class PaymentStatus:
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"
    CANCELED = "canceled"

    TERMINAL = {VERIFIED, FAILED, CANCELED}
    ALLOWED = {
        PENDING: {PENDING, VERIFIED, FAILED, CANCELED},
        VERIFIED: {VERIFIED},
        FAILED: {FAILED},
        CANCELED: {CANCELED},
    }


def transition_transaction(
    tx: PaymentTransaction,
    to_state: str,
    *,
    reason: str = "",
    metadata: dict | None = None,
) -> PaymentTransition:
    if tx is None:
        raise ValueError("transaction required")
    current = (tx.status or PaymentStatus.PENDING).strip().lower()
    target = (to_state or "").strip().lower()
    allowed = PaymentStatus.ALLOWED.get(current, {current})
    if target not in allowed:
        raise ValueError(f"invalid_payment_transition {current}->{target}")

    now = datetime.utcnow()
    row = PaymentTransition(
        payment_transaction_id=int(tx.id),
        from_status=current,
        to_status=target,
        reason=(reason or "")[:240],
        metadata_json=json.dumps(metadata or {}, default=str)[:4000],
        created_at=now,
    )
    tx.status = target
    tx.updated_at = now
    if target == PaymentStatus.VERIFIED and not tx.verified_at:
        tx.verified_at = now
    db.session.add(row)
    db.session.add(tx)
    db.session.commit()
    return row


def generate_order_id(payment_type: str) -> str:
    stamp = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ORDER_ID_ALPHABET) for _ in range(6))
    return f"TB_{payment_type.upper()[:3]}_{stamp}_{suffix}"


def callback_return_url(*, gateway: str, order_id: str, payment_type: str, related_id: int | None) -> str:
    params = {"gateway": gateway, "orderId": order_id, "paymentType": payment_type}
    if related_id:
        params["relatedId"] = int(related_id)
    return f"{api_base_url()}/api/payments/callback?{urlencode(params)}"


def _parse_amount(value, provider: PaymentsProvider) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise PaymentValidationError("Invalid amount. Amount must be greater than 0.", code="INVALID_AMOUNT")
    if amount <= 0:
        raise PaymentValidationError("Invalid amount. Amount must be greater than 0.", code="INVALID_AMOUNT")
    if provider.min_amount and amount < provider.min_amount:
        raise PaymentValidationError(
            f"Minimum amount is NPR {int(provider.min_amount)}", code="INVALID_AMOUNT"
        )
    return round(amount, 2)


def _parse_related_id(value) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise PaymentValidationError("relatedId must be an integer", code="INVALID_RELATED_ID")


def _validate_promotion_target(user: User, related_id: int | None, metadata: dict) -> tuple[int, dict]:
    ad_id = related_id if related_id is not None else _parse_related_id(metadata.get("adId"))
    if ad_id is None:
        raise PaymentValidationError("Ad promotion payments need the ad id", code="INVALID_PROMOTION")
    ptype = normalize_promotion_type(metadata.get("promotionType"))
    days = normalize_duration_days(metadata.get("durationDays"))

    ad = db.session.get(Ad, int(ad_id))
    if ad is None:
        raise AdNotFoundError("Ad not found")
    if int(ad.user_id) != int(user.id):
        raise AdOwnershipError("You can only promote your own ads")
    if not ad.is_promotable:
        raise AdNotPromotableError("Cannot promote inactive ad")

    metadata = dict(metadata)
    metadata.update({"adId": int(ad_id), "promotionType": ptype, "durationDays": days})
    return int(ad_id), metadata


def _check_promotion_price(user: User, metadata: dict, amount: float) -> dict:
    """Amount must equal the quoted price when pricing is configured for the promotion."""
    try:
        quote = calculate_price(
            user,
            metadata.get("promotionType"),
            metadata.get("durationDays"),
            tier=metadata.get("pricingTier"),
        )
    except PricingNotFoundError:
        logger.warning(
            "promotion_price_unconfigured type=%s days=%s account_type=%s",
            metadata.get("promotionType"),
            metadata.get("durationDays"),
            user.account_type,
        )
        return metadata
    if abs(float(quote["finalPrice"]) - amount) >= 0.01:
        raise PaymentValidationError(
            f"Amount does not match the promotion price (NPR {quote['finalPrice']:g})", code="INVALID_AMOUNT"
        )
    metadata = dict(metadata)
    metadata.update({"pricingTier": quote["pricingTier"], "quotedPrice": quote["finalPrice"]})
    return metadata


def _default_order_name(payment_type: str, metadata: dict) -> str:
    if payment_type == "ad_promotion" and metadata.get("promotionType"):
        return f"Ad Promotion - {metadata['promotionType']} ({metadata.get('durationDays')} days)"
    if payment_type == "individual_verification":
        return "Individual Verification Fee"
    if payment_type == "business_verification":
        return "Business Verification Fee"
    return f"ThuluBazaar {payment_type.replace('_', ' ')}"


def initiate_payment(
    user: User,
    *,
    gateway: str,
    amount,
    payment_type: str,
    related_id=None,
    order_name: str | None = None,
    metadata: dict | None = None,
) -> PaymentTransaction:
    if user is None:
        raise PaymentValidationError("Authentication required", code="UNAUTHORIZED")
    if user.is_suspended:
        raise AccountSuspendedError("Suspended accounts cannot make payments")

    gateway = (gateway or "").strip().lower()
    if not known_gateway(gateway):
        raise PaymentValidationError("Invalid payment gateway", code="INVALID_GATEWAY")
    try:
        provider = build_payments_provider(gateway)
    except (UnknownGatewayError, IntegrationMisconfiguredError) as e:
        logger.warning("payment_gateway_unavailable gateway=%s err=%s", gateway, e)
        raise PaymentValidationError("Payment gateway is not available", code="INVALID_GATEWAY")

    amount_value = _parse_amount(amount, provider)

    payment_type = (payment_type or "").strip().lower()
    if not payment_type:
        raise PaymentValidationError("Payment type is required", code="INVALID_PAYMENT_TYPE")
    if payment_type not in PAYMENT_TYPES:
        raise PaymentValidationError("Invalid payment type", code="INVALID_PAYMENT_TYPE")

    meta = dict(metadata) if isinstance(metadata, dict) else {}
    related = _parse_related_id(related_id)
    if payment_type == "ad_promotion":
        related, meta = _validate_promotion_target(user, related, meta)
        meta = _check_promotion_price(user, meta, amount_value)
    elif related is not None:
        req = db.session.get(VerificationRequest, related)
        if req is None or int(req.user_id) != int(user.id):
            raise TransactionNotFoundError("Verification request not found", code="VERIFICATION_REQUEST_NOT_FOUND")

    order_id = generate_order_id(payment_type)
    order_name = (order_name or "").strip() or _default_order_name(payment_type, meta)
    meta.update({"orderName": order_name, "initiatedAt": datetime.utcnow().isoformat()})

    tx = PaymentTransaction(
        user_id=int(user.id),
        payment_type=payment_type,
        gateway=gateway,
        amount=amount_value,
        transaction_id=order_id,
        related_id=related,
        status=PaymentStatus.PENDING,
        metadata_json=json.dumps(meta, default=str),
    )
    db.session.add(tx)
    db.session.commit()

    try:
        result = provider.initialize(
            order_id=order_id,
            amount=amount_value,
            order_name=order_name,
            return_url=callback_return_url(
                gateway=gateway, order_id=order_id, payment_type=payment_type, related_id=related
            ),
            customer={"name": user.full_name, "email": user.email, "phone": user.phone},
        )
    except (RuntimeError, ValueError, requests.RequestException) as e:
        logger.warning("payment_initiation_failed order_id=%s gateway=%s err=%s", order_id, gateway, e)
        tx.failure_reason = str(e)[:500]
        transition_transaction(tx, PaymentStatus.FAILED, reason="initiation_failed")
        raise PaymentValidationError("Payment initiation failed", code="PAYMENT_INITIATION_FAILED")

    tx.payment_url = result.payment_url
    tx.merge_meta(pidx=result.pidx, expiresAt=result.expires_at)
    tx.updated_at = datetime.utcnow()
    db.session.add(tx)
    db.session.commit()

    logger.info(
        "payment_initiated order_id=%s gateway=%s type=%s amount=%s user_id=%s",
        order_id,
        gateway,
        payment_type,
        amount_value,
        user.id,
    )
    return tx


@dataclass
class CallbackOutcome:
    success: bool
    params: dict = field(default_factory=dict)
    transaction: PaymentTransaction | None = None

    @property
    def redirect_url(self) -> str:
        page = "success" if self.success else "failure"
        query = {k: v for k, v in self.params.items() if v not in (None, "")}
        base = f"{frontend_url()}/en/payment/{page}"
        return f"{base}?{urlencode(query)}" if query else base


def _failure(error: str, tx: PaymentTransaction | None = None, **extra) -> CallbackOutcome:
    params = {}
    if tx is not None:
        params["orderId"] = tx.transaction_id
    params.update(extra)
    params["error"] = error
    return CallbackOutcome(success=False, params=params, transaction=tx)


def _success(tx: PaymentTransaction) -> CallbackOutcome:
    params = {
        "orderId": tx.transaction_id,
        "gateway": tx.gateway,
        "type": tx.payment_type,
        "relatedId": tx.related_id,
    }
    return CallbackOutcome(success=True, params=params, transaction=tx)


def normalize_callback_params(args) -> dict:
    """eSewa appends ?data=... to a success_url that already has a query string."""
    params = {k: (v or "") for k, v in dict(args).items()}
    if not params.get("data"):
        for key, value in list(params.items()):
            if "?data=" in value:
                params[key], params["data"] = value.split("?data=", 1)
                break
    return params


def _mark_unsuccessful(tx: PaymentTransaction, result: PaymentVerifyResult) -> None:
    if result.status == gateway_status.PENDING:
        target = PaymentStatus.PENDING
    elif result.status == gateway_status.CANCELED:
        target = PaymentStatus.CANCELED
    else:
        target = PaymentStatus.FAILED
    tx.failure_reason = (result.error or f"Payment {result.status}")[:500]
    transition_transaction(tx, target, reason=tx.failure_reason)


def _amount_matches(tx: PaymentTransaction, result: PaymentVerifyResult) -> bool:
    if not result.amount:
        return False
    return abs(float(result.amount) - float(tx.amount or 0)) < 0.01


def apply_verification_result(
    tx: PaymentTransaction,
    result: PaymentVerifyResult,
    *,
    callback: dict | None = None,
) -> PaymentVerifyResult:
    """Persist the gateway answer and move the transaction.

    Returns the result that was applied, which is a failure when the paid
    amount does not match the transaction.
    """
    tx.merge_meta(gatewayResponse=result.to_dict(), gatewayCallback=callback or {})

    if result.ok and not _amount_matches(tx, result):
        logger.warning(
            "payment_amount_mismatch order_id=%s expected=%s got=%s",
            tx.transaction_id,
            tx.amount,
            result.amount,
        )
        result = PaymentVerifyResult(
            status=gateway_status.FAILED,
            amount=result.amount,
            gateway_transaction_id=result.gateway_transaction_id,
            error="amount_mismatch",
            raw=result.raw,
        )

    if not result.ok:
        _mark_unsuccessful(tx, result)
        logger.info("payment_not_verified order_id=%s status=%s", tx.transaction_id, tx.status)
        return result

    tx.reference_id = (result.gateway_transaction_id or "")[:120] or None
    tx.merge_meta(verifiedAt=datetime.utcnow().isoformat())
    transition_transaction(tx, PaymentStatus.VERIFIED, reason="gateway_verified")
    logger.info("payment_verified order_id=%s gateway=%s", tx.transaction_id, tx.gateway)

    post = handle_payment_success(tx)
    if post:
        tx.merge_meta(postPayment=post)
        db.session.add(tx)
        db.session.commit()
    return result


def _activate_paid_promotion(tx: PaymentTransaction) -> dict:
    meta = tx.meta
    ad_id = tx.related_id or meta.get("adId")
    if not ad_id or not meta.get("promotionType") or not meta.get("durationDays"):
        raise ServiceError("Ad promotion payment is missing ad id or promotion details", code="PROMOTION_METADATA_MISSING")
    promotion = activate_promotion(
        ad_id=int(ad_id),
        user_id=int(tx.user_id),
        promotion_type=meta.get("promotionType"),
        duration_days=meta.get("durationDays"),
        amount_paid=tx.amount,
        transaction_id=tx.transaction_id,
        payment_method=tx.gateway,
    )
    return {
        "promotionId": int(promotion.id),
        "adId": int(promotion.ad_id),
        "expiresAt": promotion.expires_at.isoformat(),
    }


def _unlock_verification_request(tx: PaymentTransaction) -> dict:
    kind = "business" if tx.payment_type == "business_verification" else "individual"
    if tx.related_id:
        req = db.session.get(VerificationRequest, int(tx.related_id))
    else:
        req = (
            VerificationRequest.query
            .filter_by(user_id=int(tx.user_id), kind=kind, status="pending_payment")
            .order_by(VerificationRequest.created_at.desc())
            .first()
        )
    if req is None or int(req.user_id) != int(tx.user_id):
        raise ServiceError("Verification request not found", code="VERIFICATION_REQUEST_NOT_FOUND")
    if req.status == "pending_payment":
        req.status = "pending"
    req.payment_status = "paid"
    req.payment_reference = tx.transaction_id
    req.updated_at = datetime.utcnow()
    db.session.add(req)
    db.session.commit()
    logger.info("verification_request_paid request_id=%s user_id=%s", req.id, tx.user_id)
    return {"verificationRequestId": int(req.id), "status": req.status}


def handle_payment_success(tx: PaymentTransaction) -> dict | None:
    """Run the action the payment paid for. Failures never undo the payment."""
    try:
        if tx.payment_type == "ad_promotion":
            return _activate_paid_promotion(tx)
        if tx.payment_type in ("individual_verification", "business_verification"):
            return _unlock_verification_request(tx)
        return None
    except Exception as e:
        db.session.rollback()
        logger.exception("post_payment_action_failed order_id=%s type=%s", tx.transaction_id, tx.payment_type)
        code = e.code if isinstance(e, ServiceError) else "POST_PAYMENT_FAILED"
        tx.merge_meta(postPaymentError={"code": code, "message": str(e)[:300]})
        db.session.add(tx)
        db.session.commit()
        return None


def _verify_with_gateway(tx: PaymentTransaction, params: dict) -> CallbackOutcome:
    try:
        provider = build_payments_provider(tx.gateway)
    except (UnknownGatewayError, IntegrationMisconfiguredError) as e:
        logger.error("payment_gateway_unavailable order_id=%s gateway=%s err=%s", tx.transaction_id, tx.gateway, e)
        return _failure("gateway_unavailable", tx)

    callback = None
    if tx.gateway == "khalti":
        if params.get("status") == "User canceled":
            tx.failure_reason = "User canceled payment"
            tx.merge_meta(gatewayCallback=params)
            transition_transaction(tx, PaymentStatus.CANCELED, reason="user_canceled")
            logger.info("payment_canceled order_id=%s", tx.transaction_id)
            return _failure("canceled", tx)
    elif tx.gateway == "esewa":
        callback = decode_callback(params.get("data"))
        if callback and str(callback.get("transaction_uuid") or "") != tx.transaction_id:
            logger.warning(
                "esewa_callback_order_mismatch order_id=%s callback_uuid=%s",
                tx.transaction_id,
                callback.get("transaction_uuid"),
            )

    try:
        result = provider.verify(
            order_id=tx.transaction_id,
            amount=float(tx.amount or 0),
            pidx=params.get("pidx") or tx.meta.get("pidx"),
            callback=callback,
        )
    except GatewayVerificationError as e:
        logger.error("payment_verification_error order_id=%s err=%s", tx.transaction_id, e)
        tx.failure_reason = str(e)[:500]
        tx.merge_meta(gatewayCallback=params, gatewayError=str(e)[:500])
        transition_transaction(tx, PaymentStatus.FAILED, reason="verification_error")
        return _failure("verification_failed", tx)

    raw_callback = dict(params)
    if callback is not None:
        raw_callback["esewaData"] = callback
    applied = apply_verification_result(tx, result, callback=raw_callback)
    if applied.ok:
        return _success(tx)
    return _failure(applied.error or "payment_not_completed", tx, status=tx.status)


def handle_gateway_callback(args) -> CallbackOutcome:
    params = normalize_callback_params(args)
    gateway = (params.get("gateway") or "").strip().lower()
    order_id = (params.get("orderId") or "").strip()

    if not order_id:
        logger.error("payment_callback_missing_order gateway=%s", gateway)
        return _failure("missing_order")
    if not known_gateway(gateway):
        logger.error("payment_callback_unknown_gateway gateway=%s order_id=%s", gateway, order_id)
        return _failure("invalid_gateway")

    tx = PaymentTransaction.query.filter_by(transaction_id=order_id, gateway=gateway).first()
    if tx is None:
        logger.error("payment_callback_transaction_not_found order_id=%s", order_id)
        return _failure("transaction_not_found")

    if tx.status == PaymentStatus.VERIFIED:
        return _success(tx)
    if tx.status in PaymentStatus.TERMINAL:
        return _failure("already_processed", tx, status=tx.status)

    return _verify_with_gateway(tx, params)


def get_user_transaction(user_id: int, transaction_id: str) -> PaymentTransaction:
    tx = PaymentTransaction.query.filter_by(transaction_id=(transaction_id or "").strip(), user_id=int(user_id)).first()
    if tx is None:
        raise TransactionNotFoundError("Transaction not found")
    return tx


def verify_user_payment(user: User, transaction_id: str, *, pidx: str | None = None, data: str | None = None) -> CallbackOutcome:
    tx = get_user_transaction(int(user.id), transaction_id)
    if tx.status == PaymentStatus.VERIFIED:
        return _success(tx)
    if tx.status in PaymentStatus.TERMINAL:
        return _failure("already_processed", tx, status=tx.status)
    params = {"gateway": tx.gateway, "orderId": tx.transaction_id}
    if pidx:
        params["pidx"] = pidx
    if data:
        params["data"] = data
    return _verify_with_gateway(tx, params)


def fail_mock_payment(transaction_id: str, reason: str | None = None) -> CallbackOutcome:
    tx = PaymentTransaction.query.filter_by(transaction_id=(transaction_id or "").strip(), gateway="mock").first()
    if tx is None:
        return _failure("transaction_not_found")
    if tx.status in PaymentStatus.TERMINAL:
        return _failure("already_processed", tx, status=tx.status)
    reason = (reason or "").strip() or "User cancelled payment"
    tx.failure_reason = reason[:500]
    tx.merge_meta(failureReason=reason)
    transition_transaction(tx, PaymentStatus.FAILED, reason="mock_failure")
    logger.info("mock_payment_failed order_id=%s reason=%s", tx.transaction_id, reason)
    return _failure("payment_failed", tx, status=tx.status)


def payment_history(
    user_id: int,
    *,
    page: int = 1,
    limit: int = 10,
    status: str | None = None,
    payment_type: str | None = None,
) -> tuple[list[PaymentTransaction], int]:
    page = max(1, int(page or 1))
    limit = max(1, min(int(limit or 10), 50))
    q = PaymentTransaction.query.filter_by(user_id=int(user_id))
    if status:
        q = q.filter_by(status=status.strip().lower())
    if payment_type:
        q = q.filter_by(payment_type=payment_type.strip().lower())
    total = q.count()
    rows = (
        q.order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
