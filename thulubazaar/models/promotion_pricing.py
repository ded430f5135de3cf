from datetime import datetime

import sqlalchemy as sa

from thulubazaar.extensions import db


PRICING_TIERS = ("default", "electronics", "vehicles", "property")
ACCOUNT_TYPES = ("individual", "individual_verified", "business")


class PromotionPricing(db.Model):
    __tablename__ = "promotion_pricing"
    __table_args__ = (
        db.UniqueConstraint(
            "promotion_type",
            "duration_days",
            "account_type",
            "pricing_tier",
            name="uq_promotion_pricing_lookup",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    promotion_type = db.Column(db.String(16), nullable=False)
    duration_days = db.Column(db.Integer, nullable=False)
    account_type = db.Column(db.String(24), nullable=False)
    pricing_tier = db.Column(db.String(24), nullable=False, default="default", server_default="default")
    price = db.Column(db.Numeric(12, 2), nullable=False)
    discount_percentage = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=sa.text("true"))

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "promotionType": self.promotion_type,
            "durationDays": int(self.duration_days),
            "accountType": self.account_type,
            "pricingTier": self.pricing_tier or "default",
            "price": float(self.price or 0),
            "discountPercentage": int(self.discount_percentage or 0),
            "isActive": bool(self.is_active),
        }
