from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from thulubazaar.integrations.payments.factory import payment_health
from thulubazaar.jobs.promotion_sweeper import JOB_NAME, run_promotion_expiry_sweep
from thulubazaar.services.errors import ServiceError
from thulubazaar.services.pricing_service import update_price
from thulubazaar.utils.auth import require_admin
from thulubazaar.utils.job_runs import recent_job_runs

admin_promotions_bp = Blueprint("admin_promotions_bp", __name__, url_prefix="/api/admin")


@admin_promotions_bp.post("/promotions/sweep")
@require_admin
def sweep(user):
    data = request.get_json(silent=True) or {}
    try:
        limit = int(data.get("limit") or 500)
    except (TypeError, ValueError):
        limit = 500
    result = run_promotion_expiry_sweep(limit=limit)
    current_app.logger.info("promotion_sweep_manual admin_id=%s found=%s", user.id, result.get("found"))
    return jsonify(result), 200


@admin_promotions_bp.get("/promotions/sweeps")
@require_admin
def sweep_runs(user):
    try:
        limit = int(request.args.get("limit") or 20)
    except (TypeError, ValueError):
        limit = 20
    rows = recent_job_runs(JOB_NAME, limit=limit)
    return jsonify({"ok": True, "items": [r.to_dict() for r in rows]}), 200


@admin_promotions_bp.patch("/promotion-pricing/<int:pricing_id>")
@require_admin
def pricing_update(user, pricing_id: int):
    if (user.role or "").strip().lower() != "super_admin":
        return jsonify({"ok": False, "error": "FORBIDDEN", "message": "Super admin access required"}), 403
    data = request.get_json(silent=True) or {}
    try:
        row = update_price(
            pricing_id,
            price=data.get("price"),
            discount_percentage=data.get("discountPercentage"),
            is_active=data.get("isActive"),
        )
    except ServiceError as e:
        return jsonify(e.to_payload()), e.status
    if row is None:
        return jsonify({"ok": False, "error": "PRICING_NOT_FOUND", "message": "Pricing row not found"}), 404
    current_app.logger.info("promotion_pricing_updated pricing_id=%s admin_id=%s", pricing_id, user.id)
    return jsonify({"ok": True, "pricing": row.to_dict()}), 200


@admin_promotions_bp.get("/payments/health")
@require_admin
def payments_health(user):
    return jsonify({"ok": True, "payments": payment_health()}), 200
