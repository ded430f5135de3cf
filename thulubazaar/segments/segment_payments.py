from __future__ import annotations

from flask import Blueprint, current_app, jsonify, redirect, render_template_string, request

from thulubazaar.extensions import db
from thulubazaar.integrations.payments.esewa_provider import ESEWA_PRODUCTION_URL, ESEWA_SANDBOX_URL
from thulubazaar.integrations.payments.factory import available_gateways
from thulubazaar.services.errors import ServiceError
from thulubazaar.services.payment_service import (
    CallbackOutcome,
    get_user_transaction,
    handle_gateway_callback,
    initiate_payment,
    payment_history,
    verify_user_payment,
)
from thulubazaar.utils.auth import require_user

payments_bp = Blueprint("payments_bp", __name__, url_prefix="/api/payments")

_INIT = False

_ESEWA_FORM_HOSTS = (ESEWA_SANDBOX_URL, ESEWA_PRODUCTION_URL)

_ESEWA_REDIRECT_PAGE = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>Redirecting to eSewa</title></head>
<body onload="document.forms[0].submit()">
<p>Redirecting to eSewa...</p>
<form method="POST" action="{{ form_url }}">
{% for name, value in fields %}<input type="hidden" name="{{ name }}" value="{{ value }}">
{% endfor %}<noscript><button type="submit">Continue to eSewa</button></noscript>
</form>
</body>
</html>
"""


@payments_bp.before_app_request
def _ensure_tables_once():
    global _INIT
    if _INIT:
        return
    db.create_all()
    _INIT = True


def _error(status: int, code: str, message: str):
    return jsonify({"ok": False, "error": code, "message": message}), status


def _parse_page_values(default_limit: int = 10) -> tuple[int, int]:
    try:
        page = int(request.args.get("page") or 1)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(request.args.get("limit") or default_limit)
    except (TypeError, ValueError):
        limit = default_limit
    return max(1, page), max(1, limit)


def initiate_payload(tx) -> dict:
    meta = tx.meta
    return {
        "paymentTransactionId": int(tx.id),
        "transactionId": tx.transaction_id,
        "paymentUrl": tx.payment_url,
        "gateway": tx.gateway,
        "amount": float(tx.amount),
        "pidx": meta.get("pidx"),
        "expiresAt": meta.get("expiresAt"),
    }


@payments_bp.get("/gateways")
def list_gateways():
    return jsonify({"ok": True, "gateways": available_gateways()}), 200


@payments_bp.post("/initiate")
@require_user
def initiate(user):
    data = request.get_json(silent=True) or {}
    try:
        tx = initiate_payment(
            user,
            gateway=data.get("gateway"),
            amount=data.get("amount"),
            payment_type=data.get("paymentType"),
            related_id=data.get("relatedId"),
            order_name=data.get("orderName"),
            metadata=data.get("metadata"),
        )
    except ServiceError as e:
        return jsonify(e.to_payload()), e.status

    return jsonify({"ok": True, "data": initiate_payload(tx)}), 200


@payments_bp.get("/callback")
def callback():
    """Browser return from Khalti/eSewa. Always answers with a redirect to the frontend."""
    try:
        outcome = handle_gateway_callback(request.args)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "payment_callback_failed gateway=%s order_id=%s",
            request.args.get("gateway"),
            request.args.get("orderId"),
        )
        outcome = CallbackOutcome(success=False, params={"error": "internal_error"})
    return redirect(outcome.redirect_url, code=302)


@payments_bp.post("/verify")
@require_user
def verify(user):
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        data = {}
    transaction_id = str(data.get("transactionId") or "").strip()
    if not transaction_id:
        return _error(400, "VALIDATION_ERROR", "transactionId is required")
    pidx = data.get("pidx")
    esewa_data = data.get("data")
    if not isinstance(pidx, (str, type(None))) or not isinstance(esewa_data, (str, type(None))):
        return _error(400, "VALIDATION_ERROR", "pidx and data must be strings")
    try:
        outcome = verify_user_payment(user, transaction_id, pidx=pidx, data=esewa_data)
    except ServiceError as e:
        return jsonify(e.to_payload()), e.status

    tx = outcome.transaction
    payload = {
        "ok": outcome.success,
        "status": tx.status if tx is not None else None,
        "transaction": tx.to_dict() if tx is not None else None,
    }
    if not outcome.success:
        payload["error"] = outcome.params.get("error")
    return jsonify(payload), 200


@payments_bp.get("/status/<transaction_id>")
@require_user
def status(user, transaction_id: str):
    try:
        tx = get_user_transaction(int(user.id), transaction_id)
    except ServiceError as e:
        return jsonify(e.to_payload()), e.status
    return jsonify({"ok": True, "transaction": tx.to_dict(include_meta=True)}), 200


@payments_bp.get("/history")
@require_user
def history(user):
    page, limit = _parse_page_values()
    rows, total = payment_history(
        int(user.id),
        page=page,
        limit=limit,
        status=request.args.get("status"),
        payment_type=request.args.get("type"),
    )
    return jsonify(
        {
            "ok": True,
            "items": [r.to_dict() for r in rows],
            "page": page,
            "limit": limit,
            "total": total,
        }
    ), 200


@payments_bp.get("/esewa/redirect")
def esewa_redirect():
    fields = request.args.to_dict()
    form_url = (fields.pop("formUrl", "") or "").strip()
    if not any(form_url.startswith(host + "/") for host in _ESEWA_FORM_HOSTS):
        return _error(400, "INVALID_FORM_URL", "Unknown eSewa form url")
    if not fields.get("transaction_uuid") or not fields.get("signature"):
        return _error(400, "VALIDATION_ERROR", "Missing eSewa form fields")
    html = render_template_string(_ESEWA_REDIRECT_PAGE, form_url=form_url, fields=sorted(fields.items()))
    return html, 200, {"Content-Type": "text/html; charset=utf-8"}
