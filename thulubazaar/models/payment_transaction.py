from datetime import datetime
import json

from thulubazaar.extensions import db


class PaymentTransaction(db.Model):
    __tablename__ = "payment_transactions"
    __table_args__ = (
        db.UniqueConstraint("gateway", "transaction_id", name="uq_payment_tx_gateway_txn"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # ad_promotion | individual_verification | business_verification
    payment_type = db.Column(db.String(40), nullable=False, index=True)
    # khalti | esewa | mock
    gateway = db.Column(db.String(24), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)

    # Our order id, sent to the gateway as purchase_order_id / transaction_uuid.
    transaction_id = db.Column(db.String(80), nullable=False, index=True)
    # Gateway-side id, known once verified.
    reference_id = db.Column(db.String(120), nullable=True)
    related_id = db.Column(db.Integer, nullable=True, index=True)

    # pending | verified | failed | canceled
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_url = db.Column(db.Text, nullable=True)
    failure_reason = db.Column(db.String(500), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    verified_at = db.Column(db.DateTime, nullable=True)

    @property
    def meta(self) -> dict:
        if not self.metadata_json:
            return {}
        try:
            parsed = json.loads(self.metadata_json)
        except Exception:
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def merge_meta(self, **values) -> dict:
        merged = self.meta
        merged.update(values)
        self.metadata_json = json.dumps(merged, default=str)
        return merged

    def to_dict(self, *, include_meta: bool = False) -> dict:
        payload = {
            "id": int(self.id),
            "transactionId": self.transaction_id,
            "paymentType": self.payment_type,
            "gateway": self.gateway,
            "amount": float(self.amount or 0),
            "status": self.status,
            "paymentUrl": self.payment_url or None,
            "referenceId": self.reference_id or None,
            "relatedId": int(self.related_id) if self.related_id is not None else None,
            "failureReason": self.failure_reason or None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "verifiedAt": self.verified_at.isoformat() if self.verified_at else None,
        }
        if include_meta:
            payload["metadata"] = self.meta
        return payload
