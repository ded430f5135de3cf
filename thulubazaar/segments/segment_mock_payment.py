from __future__ import annotations

from flask import Blueprint, current_app, jsonify, redirect, request

from thulubazaar.config import mock_payments_enabled
from thulubazaar.extensions import db
from thulubazaar.services.errors import ServiceError
from thulubazaar.services.payment_service import (
    CallbackOutcome,
    fail_mock_payment,
    get_user_transaction,
    handle_gateway_callback,
    initiate_payment,
)
from thulubazaar.segments.segment_payments import initiate_payload
from thulubazaar.utils.auth import require_user

mock_payment_bp = Blueprint("mock_payment_bp", __name__, url_prefix="/api/mock-payment")


@mock_payment_bp.before_request
def _mock_gateway_guard():
    if not mock_payments_enabled():
        return jsonify({"ok": False, "error": "NOT_FOUND", "message": "Mock payments are disabled"}), 404
    return None


@mock_payment_bp.get("/")
def index():
    return jsonify(
        {
            "ok": True,
            "gateway": "mock",
            "endpoints": {
                "initiate": "POST /api/mock-payment/initiate",
                "success": "GET /api/mock-payment/success?txnId=...",
                "failure": "GET /api/mock-payment/failure?txnId=...&reason=...",
                "status": "GET /api/mock-payment/status/<transactionId>",
            },
        }
    ), 200


@mock_payment_bp.post("/initiate")
@require_user
def initiate(user):
    data = request.get_json(silent=True) or {}
    try:
        tx = initiate_payment(
            user,
            gateway="mock",
            amount=data.get("amount"),
            payment_type=data.get("paymentType"),
            related_id=data.get("relatedId"),
            order_name=data.get("orderName"),
            metadata=data.get("metadata"),
        )
    except ServiceError as e:
        return jsonify(e.to_payload()), e.status
    return jsonify({"ok": True, "data": initiate_payload(tx)}), 200


def _internal_error_outcome(action: str, txn_id: str) -> CallbackOutcome:
    db.session.rollback()
    current_app.logger.exception("mock_payment_%s_failed order_id=%s", action, txn_id)
    return CallbackOutcome(success=False, params={"error": "internal_error"})


@mock_payment_bp.get("/success")
def success():
    txn_id = (request.args.get("txnId") or "").strip()
    try:
        outcome = handle_gateway_callback({"gateway": "mock", "orderId": txn_id})
    except Exception:
        outcome = _internal_error_outcome("success", txn_id)
    return redirect(outcome.redirect_url, code=302)


@mock_payment_bp.get("/failure")
def failure():
    txn_id = (request.args.get("txnId") or "").strip()
    try:
        if not txn_id:
            outcome = handle_gateway_callback({"gateway": "mock"})
        else:
            outcome = fail_mock_payment(txn_id, request.args.get("reason"))
    except Exception:
        outcome = _internal_error_outcome("failure", txn_id)
    return redirect(outcome.redirect_url, code=302)


@mock_payment_bp.get("/status/<transaction_id>")
@require_user
def status(user, transaction_id: str):
    try:
        tx = get_user_transaction(int(user.id), transaction_id)
    except ServiceError as e:
        return jsonify(e.to_payload()), e.status
    return jsonify({"ok": True, "transaction": tx.to_dict(include_meta=True)}), 200
