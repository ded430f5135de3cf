from __future__ import annotations

import base64
import json
import os
import unittest
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import requests

from thulubazaar import create_app
from thulubazaar.extensions import db
from thulubazaar.integrations.payments.esewa_provider import ESEWA_TEST_SECRET_KEY, sign_fields
from thulubazaar.models import Ad, AdPromotion, PaymentTransaction, User, VerificationRequest
from thulubazaar.utils.jwt_utils import create_token

KHALTI_POST = "thulubazaar.integrations.payments.khalti_provider.requests.post"


def _khalti_response(status_code: int, payload: dict) -> MagicMock:
    fake = MagicMock()
    fake.status_code = status_code
    fake.content = b"{}"
    fake.json.return_value = payload
    return fake


class PaymentCallbackTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._saved_env = {
            key: os.getenv(key)
            for key in (
                "SQLALCHEMY_DATABASE_URI",
                "DATABASE_URL",
                "THULUBAZAAR_ENV",
                "KHALTI_SECRET_KEY",
                "ESEWA_SECRET_KEY",
                "ESEWA_MERCHANT_CODE",
                "FRONTEND_URL",
                "PAYMENTS_MOCK_ENABLED",
            )
        }
        db_uri = "sqlite:///:memory:"
        os.environ["SQLALCHEMY_DATABASE_URI"] = db_uri
        os.environ["DATABASE_URL"] = db_uri
        os.environ["THULUBAZAAR_ENV"] = "test"
        os.environ["KHALTI_SECRET_KEY"] = "test_khalti_secret"
        os.environ.pop("ESEWA_SECRET_KEY", None)
        os.environ.pop("ESEWA_MERCHANT_CODE", None)
        os.environ["FRONTEND_URL"] = "http://web.test"
        os.environ["PAYMENTS_MOCK_ENABLED"] = "1"
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        for key, value in cls._saved_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def setUp(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.create_all()
            seller = User(full_name="Ram Seller", email="ram@example.com", phone="9800000001")
            db.session.add(seller)
            db.session.flush()
            ad = Ad(user_id=seller.id, title="iPhone 13", slug="iphone-13", status="active")
            db.session.add(ad)
            db.session.commit()
            self.seller_id = int(seller.id)
            self.ad_id = int(ad.id)
        self.headers = {"Authorization": f"Bearer {create_token(self.seller_id)}"}

    def _initiate(self, gateway: str, *, amount=500, days=7, ptype="featured") -> str:
        body = {
            "gateway": gateway,
            "amount": amount,
            "paymentType": "ad_promotion",
            "relatedId": self.ad_id,
            "metadata": {"promotionType": ptype, "durationDays": days},
        }
        if gateway == "khalti":
            fake = _khalti_response(200, {"pidx": "PIDX123", "payment_url": "https://pay.test/PIDX123"})
            with patch(KHALTI_POST, return_value=fake):
                res = self.client.post("/api/payments/initiate", json=body, headers=self.headers)
        else:
            res = self.client.post("/api/payments/initiate", json=body, headers=self.headers)
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        return res.get_json(force=True)["data"]["transactionId"]

    def _esewa_data(self, order_id: str, *, status="COMPLETE", amount="500", secret=ESEWA_TEST_SECRET_KEY) -> str:
        fields = {
            "transaction_code": "000AWEO",
            "status": status,
            "total_amount": amount,
            "transaction_uuid": order_id,
            "product_code": "EPAYTEST",
            "signed_field_names": "transaction_code,status,total_amount,transaction_uuid,product_code,signed_field_names",
        }
        fields["signature"] = sign_fields(fields, fields["signed_field_names"], secret)
        return base64.b64encode(json.dumps(fields).encode("utf-8")).decode("ascii")

    def _callback(self, **params):
        res = self.client.get("/api/payments/callback", query_string=params)
        self.assertEqual(res.status_code, 302)
        location = res.headers.get("Location") or ""
        parsed = urlparse(location)
        query = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        return parsed.path, query

    def _tx(self, order_id: str) -> PaymentTransaction:
        return PaymentTransaction.query.filter_by(transaction_id=order_id).first()

    def test_esewa_complete_callback_verifies_and_activates_promotion(self):
        order_id = self._initiate("esewa", days=7)
        started = datetime.utcnow()
        path, query = self._callback(
            gateway="esewa",
            orderId=order_id,
            paymentType="ad_promotion",
            relatedId=self.ad_id,
            data=self._esewa_data(order_id),
        )
        self.assertEqual(path, "/en/payment/success")
        self.assertEqual(query.get("orderId"), order_id)
        self.assertEqual(query.get("gateway"), "esewa")
        self.assertEqual(query.get("type"), "ad_promotion")
        self.assertEqual(query.get("relatedId"), str(self.ad_id))

        with self.app.app_context():
            tx = self._tx(order_id)
            self.assertEqual(tx.status, "verified")
            self.assertIsNotNone(tx.verified_at)
            self.assertEqual(tx.reference_id, "000AWEO")
            meta = tx.meta
            self.assertIn("verifiedAt", meta)
            self.assertEqual((meta.get("gatewayResponse") or {}).get("status"), "completed")
            self.assertEqual((meta.get("postPayment") or {}).get("adId"), self.ad_id)

            promos = AdPromotion.query.filter_by(ad_id=self.ad_id, is_active=True).all()
            self.assertEqual(len(promos), 1)
            promo = promos[0]
            self.assertEqual(promo.promotion_type, "featured")
            self.assertEqual(promo.payment_reference, order_id)
            self.assertEqual(promo.payment_method, "esewa")
            expected = started + timedelta(days=7)
            self.assertLess(abs((promo.expires_at - expected).total_seconds()), 60)

            ad = db.session.get(Ad, self.ad_id)
            self.assertTrue(ad.is_featured)
            self.assertEqual(ad.featured_until, promo.expires_at)

    def test_repeated_callback_does_not_activate_twice(self):
        order_id = self._initiate("esewa")
        data = self._esewa_data(order_id)
        self._callback(gateway="esewa", orderId=order_id, data=data)
        path, query = self._callback(gateway="esewa", orderId=order_id, data=data)
        self.assertEqual(path, "/en/payment/success")
        with self.app.app_context():
            self.assertEqual(AdPromotion.query.filter_by(ad_id=self.ad_id).count(), 1)

    def test_esewa_payload_for_another_order_is_not_trusted(self):
        paid_order = self._initiate("esewa", ptype="featured")
        unpaid_order = self._initiate("esewa", ptype="urgent")
        paid_data = self._esewa_data(paid_order)
        path, _query = self._callback(gateway="esewa", orderId=paid_order, data=paid_data)
        self.assertEqual(path, "/en/payment/success")

        fake = MagicMock()
        fake.status_code = 200
        fake.content = b"{}"
        fake.json.return_value = {"status": "PENDING", "ref_id": None, "total_amount": 500.0}
        with patch("thulubazaar.integrations.payments.esewa_provider.requests.get", return_value=fake) as mocked:
            path, query = self._callback(gateway="esewa", orderId=unpaid_order, data=paid_data)
        mocked.assert_called_once()
        self.assertEqual(mocked.call_args.kwargs["params"]["transaction_uuid"], unpaid_order)
        self.assertEqual(path, "/en/payment/failure")
        self.assertEqual(query.get("status"), "pending")
        with self.app.app_context():
            self.assertEqual(self._tx(unpaid_order).status, "pending")
            self.assertIsNone(self._tx(unpaid_order).verified_at)
            promos = AdPromotion.query.filter_by(ad_id=self.ad_id, is_active=True).all()
            self.assertEqual([p.payment_reference for p in promos], [paid_order])
            self.assertEqual(promos[0].promotion_type, "featured")

    def test_esewa_payload_without_signed_order_fields_uses_status_api(self):
        order_id = self._initiate("esewa")
        fields = {
            "transaction_code": "000AWEO",
            "status": "COMPLETE",
            "transaction_uuid": order_id,
            "product_code": "EPAYTEST",
            "signed_field_names": "transaction_code,status,signed_field_names",
        }
        fields["signature"] = sign_fields(fields, fields["signed_field_names"], ESEWA_TEST_SECRET_KEY)
        data = base64.b64encode(json.dumps(fields).encode("utf-8")).decode("ascii")
        fake = MagicMock()
        fake.status_code = 200
        fake.content = b"{}"
        fake.json.return_value = {"status": "NOT_FOUND", "ref_id": None, "total_amount": 0}
        with patch("thulubazaar.integrations.payments.esewa_provider.requests.get", return_value=fake) as mocked:
            path, _query = self._callback(gateway="esewa", orderId=order_id, data=data)
        mocked.assert_called_once()
        self.assertEqual(path, "/en/payment/failure")
        with self.app.app_context():
            self.assertNotEqual(self._tx(order_id).status, "verified")
            self.assertEqual(AdPromotion.query.count(), 0)

    def test_esewa_data_glued_to_previous_param_is_recovered(self):
        order_id = self._initiate("esewa")
        path, _query = self._callback(
            gateway="esewa",
            orderId=order_id,
            paymentType="ad_promotion?data=" + self._esewa_data(order_id),
        )
        self.assertEqual(path, "/en/payment/success")

    def test_esewa_bad_signature_falls_back_to_status_api(self):
        order_id = self._initiate("esewa")
        fake = MagicMock()
        fake.status_code = 200
        fake.content = b"{}"
        fake.json.return_value = {"status": "PENDING", "ref_id": None, "total_amount": 500.0}
        with patch("thulubazaar.integrations.payments.esewa_provider.requests.get", return_value=fake) as mocked:
            path, query = self._callback(
                gateway="esewa",
                orderId=order_id,
                data=self._esewa_data(order_id, secret="not-the-secret"),
            )
        mocked.assert_called_once()
        self.assertEqual(mocked.call_args.kwargs["params"]["transaction_uuid"], order_id)
        self.assertEqual(path, "/en/payment/failure")
        self.assertEqual(query.get("status"), "pending")
        with self.app.app_context():
            tx = self._tx(order_id)
            self.assertEqual(tx.status, "pending")
            self.assertIsNone(tx.verified_at)
            self.assertEqual(AdPromotion.query.count(), 0)

    def test_unknown_gateway_leaves_transaction_untouched(self):
        order_id = self._initiate("esewa")
        path, query = self._callback(gateway="paypal", orderId=order_id)
        self.assertEqual(path, "/en/payment/failure")
        self.assertEqual(query.get("error"), "invalid_gateway")
        with self.app.app_context():
            tx = self._tx(order_id)
            self.assertEqual(tx.status, "pending")
            self.assertNotIn("gatewayCallback", tx.meta)

    def test_missing_order_and_unknown_transaction(self):
        _path, query = self._callback(gateway="esewa")
        self.assertEqual(query.get("error"), "missing_order")
        _path, query = self._callback(gateway="esewa", orderId="TB_AD__0_nothere")
        self.assertEqual(query.get("error"), "transaction_not_found")

    def test_khalti_user_canceled(self):
        order_id = self._initiate("khalti")
        with patch(KHALTI_POST) as mocked:
            path, query = self._callback(gateway="khalti", orderId=order_id, pidx="PIDX123", status="User canceled")
        mocked.assert_not_called()
        self.assertEqual(path, "/en/payment/failure")
        self.assertEqual(query.get("error"), "canceled")
        with self.app.app_context():
            self.assertEqual(self._tx(order_id).status, "canceled")

    def test_khalti_completed_lookup(self):
        order_id = self._initiate("khalti", ptype="sticky", days=3)
        lookup = _khalti_response(
            200,
            {"pidx": "PIDX123", "total_amount": 50000, "status": "Completed", "transaction_id": "KH-TXN-9"},
        )
        with patch(KHALTI_POST, return_value=lookup) as mocked:
            path, _query = self._callback(gateway="khalti", orderId=order_id, pidx="PIDX123", status="Completed")
        self.assertEqual(mocked.call_args.kwargs["json"], {"pidx": "PIDX123"})
        self.assertEqual(path, "/en/payment/success")
        with self.app.app_context():
            tx = self._tx(order_id)
            self.assertEqual(tx.status, "verified")
            self.assertEqual(tx.reference_id, "KH-TXN-9")
            ad = db.session.get(Ad, self.ad_id)
            self.assertTrue(ad.is_sticky)
            self.assertTrue(ad.is_bumped)
            self.assertFalse(ad.is_featured)

    def test_khalti_amount_mismatch_fails(self):
        order_id = self._initiate("khalti")
        lookup = _khalti_response(200, {"pidx": "PIDX123", "total_amount": 1000, "status": "Completed"})
        with patch(KHALTI_POST, return_value=lookup):
            _path, query = self._callback(gateway="khalti", orderId=order_id, pidx="PIDX123")
        self.assertEqual(query.get("error"), "amount_mismatch")
        with self.app.app_context():
            self.assertEqual(self._tx(order_id).status, "failed")
            self.assertEqual(AdPromotion.query.count(), 0)

    def test_completed_lookup_without_amount_fails(self):
        order_id = self._initiate("khalti")
        lookup = _khalti_response(200, {"pidx": "PIDX123", "status": "Completed", "transaction_id": "KH-TXN-9"})
        with patch(KHALTI_POST, return_value=lookup):
            path, query = self._callback(gateway="khalti", orderId=order_id, pidx="PIDX123")
        self.assertEqual(path, "/en/payment/failure")
        self.assertEqual(query.get("error"), "amount_mismatch")
        with self.app.app_context():
            self.assertEqual(self._tx(order_id).status, "failed")
            self.assertEqual(AdPromotion.query.count(), 0)

    def test_khalti_lookup_network_error_marks_failed(self):
        order_id = self._initiate("khalti")
        with patch(KHALTI_POST, side_effect=requests.ConnectionError("boom")):
            path, query = self._callback(gateway="khalti", orderId=order_id, pidx="PIDX123")
        self.assertEqual(path, "/en/payment/failure")
        self.assertEqual(query.get("error"), "verification_failed")
        with self.app.app_context():
            tx = self._tx(order_id)
            self.assertEqual(tx.status, "failed")
            self.assertIn("KHALTI_LOOKUP_FAILED", tx.failure_reason or "")

        # failed is terminal
        path, query = self._callback(gateway="khalti", orderId=order_id, pidx="PIDX123")
        self.assertEqual(query.get("error"), "already_processed")
        self.assertEqual(query.get("status"), "failed")

    def test_unexpected_error_redirects_internal_error(self):
        order_id = self._initiate("esewa")
        with patch(
            "thulubazaar.segments.segment_payments.handle_gateway_callback",
            side_effect=RuntimeError("db down"),
        ):
            _path, query = self._callback(gateway="esewa", orderId=order_id)
        self.assertEqual(query.get("error"), "internal_error")

    def test_post_payment_failure_keeps_payment_verified(self):
        order_id = self._initiate("esewa")
        with self.app.app_context():
            ad = db.session.get(Ad, self.ad_id)
            ad.status = "sold"
            db.session.commit()
        path, _query = self._callback(gateway="esewa", orderId=order_id, data=self._esewa_data(order_id))
        self.assertEqual(path, "/en/payment/success")
        with self.app.app_context():
            tx = self._tx(order_id)
            self.assertEqual(tx.status, "verified")
            self.assertEqual((tx.meta.get("postPaymentError") or {}).get("code"), "AD_NOT_PROMOTABLE")
            self.assertEqual(AdPromotion.query.count(), 0)

    def test_verification_fee_unlocks_request(self):
        with self.app.app_context():
            req = VerificationRequest(user_id=self.seller_id, kind="individual")
            db.session.add(req)
            db.session.commit()
            req_id = int(req.id)
        res = self.client.post(
            "/api/payments/initiate",
            json={"gateway": "esewa", "amount": 1000, "paymentType": "individual_verification", "relatedId": req_id},
            headers=self.headers,
        )
        self.assertEqual(res.status_code, 200)
        order_id = res.get_json(force=True)["data"]["transactionId"]
        self.assertTrue(order_id.startswith("TB_IND_"))
        path, _query = self._callback(gateway="esewa", orderId=order_id, data=self._esewa_data(order_id, amount="1000"))
        self.assertEqual(path, "/en/payment/success")
        with self.app.app_context():
            req = db.session.get(VerificationRequest, req_id)
            self.assertEqual(req.status, "pending")
            self.assertEqual(req.payment_status, "paid")
            self.assertEqual(req.payment_reference, order_id)

    def test_verify_endpoint_and_status(self):
        order_id = self._initiate("esewa")
        res = self.client.post(
            "/api/payments/verify",
            json={"transactionId": order_id, "data": self._esewa_data(order_id)},
            headers=self.headers,
        )
        self.assertEqual(res.status_code, 200)
        body = res.get_json(force=True)
        self.assertTrue(body.get("ok"))
        self.assertEqual(body.get("status"), "verified")

        res = self.client.get(f"/api/payments/status/{order_id}", headers=self.headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json(force=True)["transaction"]["status"], "verified")

        stranger = {"Authorization": f"Bearer {create_token(9999)}"}
        res = self.client.get(f"/api/payments/status/{order_id}", headers=stranger)
        self.assertEqual(res.status_code, 401)

        res = self.client.get("/api/payments/history?status=verified", headers=self.headers)
        body = res.get_json(force=True)
        self.assertEqual(body.get("total"), 1)
        self.assertEqual(body["items"][0]["transactionId"], order_id)

    def test_verify_rejects_non_string_payloads(self):
        order_id = self._initiate("esewa")
        for body in (
            {"transactionId": order_id, "data": {"status": "COMPLETE"}},
            {"transactionId": order_id, "data": 12345},
            {"transactionId": order_id, "pidx": ["PIDX123"]},
        ):
            res = self.client.post("/api/payments/verify", json=body, headers=self.headers)
            self.assertEqual(res.status_code, 400, body)
            self.assertEqual(res.get_json(force=True).get("error"), "VALIDATION_ERROR", body)
        with self.app.app_context():
            self.assertEqual(self._tx(order_id).status, "pending")


if __name__ == "__main__":
    unittest.main()
