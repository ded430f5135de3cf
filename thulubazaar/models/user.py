from datetime import datetime

from thulubazaar.extensions import db


ADMIN_ROLES = ("editor", "admin", "super_admin")


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    full_name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=True)
    phone = db.Column(db.String(32), unique=True, index=True, nullable=True)

    # user | editor | admin | super_admin
    role = db.Column(db.String(32), nullable=False, default="user")
    is_suspended = db.Column(db.Boolean, nullable=False, default=False)

    # Drives the account type used for promotion pricing.
    individual_verified = db.Column(db.Boolean, nullable=False, default=False)
    business_verification_status = db.Column(db.String(24), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @property
    def account_type(self) -> str:
        business = (self.business_verification_status or "").strip().lower()
        if business in ("approved", "verified"):
            return "business"
        if self.individual_verified:
            return "individual_verified"
        return "individual"

    @property
    def is_admin(self) -> bool:
        return (self.role or "").strip().lower() in ADMIN_ROLES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name or "",
            "email": self.email or "",
            "phone": self.phone or "",
            "role": self.role or "user",
            "is_suspended": bool(self.is_suspended),
            "account_type": self.account_type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
