from datetime import datetime

import sqlalchemy as sa

from thulubazaar.extensions import db


PROMOTABLE_AD_STATUSES = ("active", "approved")

# promotion_type -> (flag column, until column); sticky also drives the bump pair.
PROMOTION_FLAG_COLUMNS = {
    "featured": (("is_featured", "featured_until"),),
    "urgent": (("is_urgent", "urgent_until"),),
    "sticky": (("is_sticky", "sticky_until"), ("is_bumped", "bump_expires_at")),
}


class Ad(db.Model):
    __tablename__ = "ads"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(220), nullable=True, unique=True, index=True)
    category = db.Column(db.String(64), nullable=True)

    # pending | approved | active | rejected | suspended | sold
    status = db.Column(db.String(24), nullable=False, default="pending", server_default="pending", index=True)

    # Denormalized from the active AdPromotion for fast listing filters.
    is_featured = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"), index=True)
    featured_until = db.Column(db.DateTime, nullable=True)
    is_urgent = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"), index=True)
    urgent_until = db.Column(db.DateTime, nullable=True)
    is_sticky = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"), index=True)
    sticky_until = db.Column(db.DateTime, nullable=True)
    is_bumped = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    bump_expires_at = db.Column(db.DateTime, nullable=True)
    promoted_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @property
    def is_promotable(self) -> bool:
        return (self.status or "").strip().lower() in PROMOTABLE_AD_STATUSES

    def clear_promotion_flags(self, promotion_type: str | None = None) -> None:
        """Reset the denormalized flags for one promotion type, or all of them."""
        if promotion_type is None:
            groups = PROMOTION_FLAG_COLUMNS.values()
        else:
            groups = [PROMOTION_FLAG_COLUMNS.get(promotion_type, ())]
        for pairs in groups:
            for flag_col, until_col in pairs:
                setattr(self, flag_col, False)
                setattr(self, until_col, None)

    def apply_promotion_flags(self, promotion_type: str, expires_at: datetime) -> None:
        for flag_col, until_col in PROMOTION_FLAG_COLUMNS.get(promotion_type, ()):
            setattr(self, flag_col, True)
            setattr(self, until_col, expires_at)

    def promotion_flags(self) -> dict:
        def _iso(value):
            return value.isoformat() if value else None

        return {
            "is_featured": bool(self.is_featured),
            "featured_until": _iso(self.featured_until),
            "is_urgent": bool(self.is_urgent),
            "urgent_until": _iso(self.urgent_until),
            "is_sticky": bool(self.is_sticky),
            "sticky_until": _iso(self.sticky_until),
            "is_bumped": bool(self.is_bumped),
            "bump_expires_at": _iso(self.bump_expires_at),
            "promoted_at": _iso(self.promoted_at),
        }

    def to_summary(self) -> dict:
        return {
            "id": int(self.id),
            "title": self.title or "",
            "slug": self.slug or "",
            "status": self.status or "",
        }

    def to_dict(self) -> dict:
        payload = self.to_summary()
        payload.update(
            {
                "user_id": int(self.user_id),
                "category": self.category or "",
                "created_at": self.created_at.isoformat() if self.created_at else None,
            }
        )
        payload.update(self.promotion_flags())
        return payload
