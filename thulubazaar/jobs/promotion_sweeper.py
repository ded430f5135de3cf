from __future__ import annotations

from datetime import datetime
import logging

from thulubazaar.extensions import db
from thulubazaar.models import Ad, AdPromotion, PROMOTION_FLAG_COLUMNS
from thulubazaar.utils.job_runs import record_job_run

logger = logging.getLogger(__name__)

JOB_NAME = "promotion_expiry_sweep"


def _now():
    return datetime.utcnow()


def _expire_promotion(promotion: AdPromotion, now: datetime) -> None:
    promotion.is_active = False
    db.session.add(promotion)
    ad = db.session.get(Ad, int(promotion.ad_id))
    if ad is not None:
        ad.clear_promotion_flags(promotion.promotion_type)
        db.session.add(ad)
    db.session.commit()
    logger.info(
        "promotion_expired promotion_id=%s ad_id=%s type=%s expired_at=%s",
        promotion.id,
        promotion.ad_id,
        promotion.promotion_type,
        promotion.expires_at.isoformat() if promotion.expires_at else None,
    )


def _clean_orphaned_flags(now: datetime) -> int:
    """Clear ad flags whose until-time has passed but no promotion row was swept."""
    cleaned = 0
    for pairs in PROMOTION_FLAG_COLUMNS.values():
        for flag_col, until_col in pairs:
            flag = getattr(Ad, flag_col)
            until = getattr(Ad, until_col)
            count = (
                Ad.query
                .filter(flag.is_(True), until.isnot(None), until < now)
                .update({flag_col: False, until_col: None}, synchronize_session=False)
            )
            cleaned += int(count or 0)
    db.session.commit()
    return cleaned


def run_promotion_expiry_sweep(*, now: datetime | None = None, limit: int = 500) -> dict:
    """Deactivate promotions past their expiry and clear the matching ad flags.

    Each promotion commits on its own so one bad row does not stop the rest.
    Running it again right away finds nothing to do.
    """
    started = _now()
    now = now or started
    limit = max(1, min(int(limit or 500), 5000))

    ids = [
        int(row.id)
        for row in (
            AdPromotion.query
            .filter(AdPromotion.is_active.is_(True), AdPromotion.expires_at < now)
            .order_by(AdPromotion.expires_at.asc(), AdPromotion.id.asc())
            .limit(limit)
            .all()
        )
    ]

    deactivated = 0
    errors = 0
    for promotion_id in ids:
        try:
            promotion = db.session.get(AdPromotion, promotion_id)
            if promotion is None or not promotion.is_active:
                continue
            _expire_promotion(promotion, now)
            deactivated += 1
        except Exception:
            db.session.rollback()
            errors += 1
            logger.exception("promotion_expire_failed promotion_id=%s", promotion_id)

    orphaned = 0
    job_error = None
    try:
        orphaned = _clean_orphaned_flags(now)
    except Exception as e:
        db.session.rollback()
        job_error = f"orphan_cleanup_failed: {e}"
        logger.exception("promotion_orphan_cleanup_failed")

    summary = {
        "found": len(ids),
        "deactivated": deactivated,
        "errors": errors,
        "orphaned_cleaned": orphaned,
    }
    ok = errors == 0 and job_error is None
    record_job_run(job_name=JOB_NAME, ok=ok, started_at=started, summary=summary, error=job_error)
    if ids or orphaned:
        logger.info(
            "promotion_sweep_done found=%s deactivated=%s errors=%s orphaned=%s",
            len(ids),
            deactivated,
            errors,
            orphaned,
        )
    result = {"ok": ok}
    result.update(summary)
    return result
