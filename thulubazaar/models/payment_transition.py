from datetime import datetime

from thulubazaar.extensions import db


class PaymentTransition(db.Model):
    __tablename__ = "payment_transitions"

    id = db.Column(db.Integer, primary_key=True)
    payment_transaction_id = db.Column(db.Integer, db.ForeignKey("payment_transactions.id"), nullable=False, index=True)
    from_status = db.Column(db.String(16), nullable=False, default="")
    to_status = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.String(240), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "payment_transaction_id": int(self.payment_transaction_id),
            "from_status": self.from_status or "",
            "to_status": self.to_status or "",
            "reason": self.reason or "",
            "metadata_json": self.metadata_json or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
