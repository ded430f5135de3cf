from datetime import datetime

import sqlalchemy as sa

from thulubazaar.extensions import db


PROMOTION_TYPES = ("featured", "urgent", "sticky")


class AdPromotion(db.Model):
    __tablename__ = "ad_promotions"
    __table_args__ = (
        db.Index("ix_ad_promotions_active_expiry", "is_active", "expires_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    ad_id = db.Column(db.Integer, db.ForeignKey("ads.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    promotion_type = db.Column(db.String(16), nullable=False)
    duration_days = db.Column(db.Integer, nullable=False)
    price_paid = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    account_type = db.Column(db.String(24), nullable=False, default="individual")
    payment_reference = db.Column(db.String(80), nullable=True)
    payment_method = db.Column(db.String(24), nullable=True)

    starts_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=sa.text("true"))

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    ad = db.relationship("Ad", lazy="joined")

    def to_dict(self, *, include_ad: bool = False) -> dict:
        payload = {
            "id": int(self.id),
            "adId": int(self.ad_id),
            "userId": int(self.user_id),
            "promotionType": self.promotion_type,
            "durationDays": int(self.duration_days),
            "pricePaid": float(self.price_paid or 0),
            "accountType": self.account_type or "individual",
            "paymentReference": self.payment_reference or "",
            "paymentMethod": self.payment_method or "",
            "startsAt": self.starts_at.isoformat() if self.starts_at else None,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "isActive": bool(self.is_active),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if include_ad:
            payload["ad"] = self.ad.to_summary() if self.ad is not None else None
        return payload
