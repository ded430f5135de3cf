from datetime import datetime

from thulubazaar.extensions import db


class VerificationRequest(db.Model):
    __tablename__ = "verification_requests"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # individual | business
    kind = db.Column(db.String(16), nullable=False)
    # pending_payment -> pending -> approved | rejected
    status = db.Column(db.String(24), nullable=False, default="pending_payment")
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")
    payment_reference = db.Column(db.String(80), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "kind": self.kind,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_reference": self.payment_reference or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
