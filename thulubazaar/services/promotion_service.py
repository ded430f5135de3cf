from __future__ import annotations

from datetime import datetime, timedelta
import logging

from thulubazaar.extensions import db
from thulubazaar.models import Ad, AdPromotion, User, PROMOTION_TYPES
from thulubazaar.services.errors import (
    AdNotFoundError,
    AdNotPromotableError,
    AdOwnershipError,
    PromotionValidationError,
)

logger = logging.getLogger(__name__)

MAX_DURATION_DAYS = 365


def normalize_promotion_type(value) -> str:
    ptype = str(value or "").strip().lower()
    # Older clients still send the pre-rename label.
    if ptype == "bump_up":
        ptype = "sticky"
    if ptype not in PROMOTION_TYPES:
        raise PromotionValidationError(
            f"Invalid promotion type. Must be one of: {', '.join(PROMOTION_TYPES)}"
        )
    return ptype


def normalize_duration_days(value) -> int:
    try:
        days = int(str(value).strip())
    except (TypeError, ValueError):
        raise PromotionValidationError("durationDays must be a whole number of days")
    if days < 1 or days > MAX_DURATION_DAYS:
        raise PromotionValidationError(f"durationDays must be between 1 and {MAX_DURATION_DAYS}")
    return days


def activate_promotion(
    *,
    ad_id: int,
    user_id: int,
    promotion_type: str,
    duration_days,
    amount_paid,
    transaction_id: str,
    payment_method: str = "online",
    now: datetime | None = None,
) -> AdPromotion:
    """Make this the one active promotion of the ad and mirror it onto the ad row.

    Insert, sibling deactivation and flag rewrite share a single commit.
    """
    ptype = normalize_promotion_type(promotion_type)
    days = normalize_duration_days(duration_days)

    ad = db.session.get(Ad, int(ad_id))
    if ad is None:
        raise AdNotFoundError("Ad not found")
    if int(ad.user_id) != int(user_id):
        raise AdOwnershipError("Ad does not belong to user")
    if not ad.is_promotable:
        raise AdNotPromotableError("Cannot promote inactive ad")

    user = db.session.get(User, int(user_id))
    account_type = user.account_type if user is not None else "individual"

    starts_at = now or datetime.utcnow()
    expires_at = starts_at + timedelta(days=days)

    try:
        promotion = AdPromotion(
            ad_id=int(ad.id),
            user_id=int(user_id),
            promotion_type=ptype,
            duration_days=days,
            price_paid=amount_paid or 0,
            account_type=account_type,
            payment_reference=(transaction_id or "")[:80],
            payment_method=(payment_method or "online")[:24],
            starts_at=starts_at,
            expires_at=expires_at,
            is_active=True,
            created_at=starts_at,
        )
        db.session.add(promotion)
        db.session.flush()

        (
            AdPromotion.query
            .filter(
                AdPromotion.ad_id == int(ad.id),
                AdPromotion.is_active.is_(True),
                AdPromotion.id != int(promotion.id),
            )
            .update({"is_active": False}, synchronize_session=False)
        )

        ad.clear_promotion_flags()
        ad.apply_promotion_flags(ptype, expires_at)
        ad.promoted_at = starts_at
        db.session.add(ad)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("promotion_activation_failed ad_id=%s type=%s", ad_id, ptype)
        raise

    logger.info(
        "promotion_activated promotion_id=%s ad_id=%s type=%s expires_at=%s txn=%s",
        promotion.id,
        ad.id,
        ptype,
        expires_at.isoformat(),
        transaction_id,
    )
    return promotion


def active_promotion_for_ad(ad_id: int) -> AdPromotion | None:
    return (
        AdPromotion.query
        .filter_by(ad_id=int(ad_id), is_active=True)
        .order_by(AdPromotion.created_at.desc(), AdPromotion.id.desc())
        .first()
    )


def list_user_promotions(user_id: int, *, page: int = 1, limit: int = 50) -> tuple[list[AdPromotion], int]:
    page = max(1, int(page or 1))
    limit = max(1, min(int(limit or 50), 100))
    q = AdPromotion.query.filter_by(user_id=int(user_id))
    total = q.count()
    rows = (
        q.order_by(AdPromotion.created_at.desc(), AdPromotion.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
