from __future__ import annotations

from datetime import datetime
import logging

from thulubazaar.extensions import db
from thulubazaar.models import PromotionPricing, User, ACCOUNT_TYPES, PRICING_TIERS
from thulubazaar.services.errors import PricingNotFoundError, PromotionValidationError
from thulubazaar.services.promotion_service import normalize_duration_days, normalize_promotion_type

logger = logging.getLogger(__name__)

# NPR, default tier: promotion_type -> duration_days -> account_type -> price
DEFAULT_PRICING = {
    "featured": {
        3: {"individual": 1000, "individual_verified": 800, "business": 600},
        7: {"individual": 2000, "individual_verified": 1600, "business": 1200},
        15: {"individual": 3500, "individual_verified": 2800, "business": 2100},
    },
    "urgent": {
        3: {"individual": 500, "individual_verified": 400, "business": 300},
        7: {"individual": 1000, "individual_verified": 800, "business": 600},
        15: {"individual": 1750, "individual_verified": 1400, "business": 1050},
    },
    "sticky": {
        3: {"individual": 100, "individual_verified": 85, "business": 70},
        7: {"individual": 200, "individual_verified": 170, "business": 140},
        15: {"individual": 350, "individual_verified": 297, "business": 245},
    },
}


def seed_default_pricing() -> int:
    """Insert any missing default-tier rows. Returns how many were created."""
    existing = {
        (row.promotion_type, int(row.duration_days), row.account_type)
        for row in PromotionPricing.query.filter_by(pricing_tier="default").all()
    }
    created = 0
    for ptype, durations in DEFAULT_PRICING.items():
        for days, prices in durations.items():
            for account_type in ACCOUNT_TYPES:
                price = prices[account_type]
                if (ptype, days, account_type) in existing:
                    continue
                db.session.add(
                    PromotionPricing(
                        promotion_type=ptype,
                        duration_days=days,
                        account_type=account_type,
                        pricing_tier="default",
                        price=price,
                    )
                )
                created += 1
    if created:
        db.session.commit()
        logger.info("promotion_pricing_seeded rows=%s", created)
    return created


def _lookup(ptype: str, days: int, account_type: str, tier: str) -> PromotionPricing | None:
    return PromotionPricing.query.filter_by(
        promotion_type=ptype,
        duration_days=days,
        account_type=account_type,
        pricing_tier=tier,
        is_active=True,
    ).first()


def calculate_price(user: User, promotion_type, duration_days, *, tier: str | None = None) -> dict:
    ptype = normalize_promotion_type(promotion_type)
    days = normalize_duration_days(duration_days)
    pricing_tier = (tier or "default").strip().lower()
    if pricing_tier not in PRICING_TIERS:
        raise PromotionValidationError(f"Invalid pricing tier. Must be one of: {', '.join(PRICING_TIERS)}")

    account_type = user.account_type
    row = _lookup(ptype, days, account_type, pricing_tier)
    if row is None and pricing_tier != "default":
        row = _lookup(ptype, days, account_type, "default")
    if row is None:
        raise PricingNotFoundError("Pricing not found for this promotion")

    price = float(row.price or 0)
    discount = int(row.discount_percentage or 0)
    final_price = round(price * (100 - discount) / 100.0, 2)
    return {
        "promotionType": ptype,
        "durationDays": days,
        "accountType": account_type,
        "pricingTier": row.pricing_tier,
        "price": price,
        "discountPercentage": discount,
        "finalPrice": final_price,
        "currency": "NPR",
    }


def pricing_table() -> dict:
    """Active prices grouped as {type: {days: {account_type: price}}} per tier."""
    table: dict = {}
    rows = (
        PromotionPricing.query
        .filter_by(is_active=True)
        .order_by(PromotionPricing.promotion_type, PromotionPricing.duration_days)
        .all()
    )
    for row in rows:
        tier = table.setdefault(row.pricing_tier or "default", {})
        by_days = tier.setdefault(row.promotion_type, {})
        by_days.setdefault(str(int(row.duration_days)), {})[row.account_type] = float(row.price or 0)
    return table


def update_price(pricing_id: int, *, price=None, discount_percentage=None, is_active=None) -> PromotionPricing | None:
    row = db.session.get(PromotionPricing, int(pricing_id))
    if row is None:
        return None
    if price is not None:
        try:
            value = float(price)
        except (TypeError, ValueError):
            raise PromotionValidationError("price must be a number")
        if value < 0:
            raise PromotionValidationError("price must not be negative")
        row.price = value
    if discount_percentage is not None:
        try:
            discount = int(discount_percentage)
        except (TypeError, ValueError):
            raise PromotionValidationError("discountPercentage must be a whole number")
        if discount < 0 or discount > 100:
            raise PromotionValidationError("discountPercentage must be between 0 and 100")
        row.discount_percentage = discount
    if is_active is not None:
        row.is_active = bool(is_active)
    row.updated_at = datetime.utcnow()
    db.session.add(row)
    db.session.commit()
    return row
