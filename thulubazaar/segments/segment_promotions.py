from __future__ import annotations

from flask import Blueprint, jsonify, request

from thulubazaar.extensions import db
from thulubazaar.models import Ad
from thulubazaar.services.errors import ServiceError
from thulubazaar.services.pricing_service import calculate_price, pricing_table
from thulubazaar.services.promotion_service import active_promotion_for_ad, list_user_promotions
from thulubazaar.utils.auth import require_user

promotions_bp = Blueprint("promotions_bp", __name__)


def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name) or default)
    except (TypeError, ValueError):
        return default


@promotions_bp.get("/api/promotions")
@require_user
def my_promotions(user):
    page = max(1, _int_arg("page", 1))
    limit = max(1, min(_int_arg("limit", 50), 100))
    rows, total = list_user_promotions(int(user.id), page=page, limit=limit)
    return jsonify(
        {
            "ok": True,
            "items": [r.to_dict(include_ad=True) for r in rows],
            "page": page,
            "limit": limit,
            "total": total,
        }
    ), 200


@promotions_bp.get("/api/ads/<int:ad_id>/promotions/active")
def ad_active_promotion(ad_id: int):
    ad = db.session.get(Ad, int(ad_id))
    if ad is None:
        return jsonify({"ok": False, "error": "AD_NOT_FOUND", "message": "Ad not found"}), 404
    promotion = active_promotion_for_ad(int(ad.id))
    return jsonify(
        {
            "ok": True,
            "adId": int(ad.id),
            "promotion": promotion.to_dict() if promotion is not None else None,
            "flags": ad.promotion_flags(),
        }
    ), 200


@promotions_bp.get("/api/promotion-pricing")
def pricing():
    return jsonify({"ok": True, "currency": "NPR", "pricing": pricing_table()}), 200


@promotions_bp.get("/api/promotion-pricing/calculate")
@require_user
def pricing_calculate(user):
    try:
        quote = calculate_price(
            user,
            request.args.get("promotionType"),
            request.args.get("durationDays"),
            tier=request.args.get("tier"),
        )
    except ServiceError as e:
        return jsonify(e.to_payload()), e.status
    return jsonify({"ok": True, "data": quote}), 200
