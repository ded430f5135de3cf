from __future__ import annotations

import os
import unittest
import uuid

from thulubazaar import create_app
from thulubazaar.extensions import db


class ApiErrorContractTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._saved_env = {key: os.getenv(key) for key in ("SQLALCHEMY_DATABASE_URI", "DATABASE_URL")}
        db_uri = "sqlite:///:memory:"
        os.environ["SQLALCHEMY_DATABASE_URI"] = db_uri
        os.environ["DATABASE_URL"] = db_uri
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        with cls.app.app_context():
            db.create_all()
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        for key, value in cls._saved_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def test_unknown_api_route_returns_json_error_shape(self):
        res = self.client.get("/api/does-not-exist")
        self.assertEqual(res.status_code, 404)
        self.assertTrue(res.is_json)
        body = res.get_json(force=True) or {}
        self.assertFalse(bool(body.get("ok", True)))
        self.assertTrue(str(body.get("error") or "").strip())
        self.assertTrue(str(body.get("message") or "").strip())
        self.assertEqual(int(body.get("status") or 0), 404)
        self.assertEqual(body.get("trace_id"), res.headers.get("X-Request-ID"))

    def test_health(self):
        res = self.client.get("/api/health")
        self.assertEqual(res.status_code, 200)
        body = res.get_json(force=True)
        self.assertTrue(body.get("ok"))
        self.assertEqual(body.get("db"), "ok")
        self.assertEqual(body.get("alembic_head"), "3c7d9e1f2a4b")

    def test_request_id_generated_and_echoed(self):
        res = self.client.get("/api/health")
        uuid.UUID((res.headers.get("X-Request-ID") or "").strip())
        res = self.client.get("/api/health", headers={"X-Request-ID": "rid-test-123"})
        self.assertEqual(res.headers.get("X-Request-ID"), "rid-test-123")

    def test_protected_routes_need_a_valid_token(self):
        for method, path in (
            ("post", "/api/payments/initiate"),
            ("get", "/api/payments/history"),
            ("get", "/api/promotions"),
            ("post", "/api/admin/promotions/sweep"),
        ):
            res = getattr(self.client, method)(path, headers={"Authorization": "Bearer not-a-jwt"})
            self.assertEqual(res.status_code, 401, path)
            self.assertEqual(res.get_json(force=True).get("error"), "UNAUTHORIZED")

    def test_gateways_listing(self):
        res = self.client.get("/api/payments/gateways")
        self.assertEqual(res.status_code, 200)
        gateways = {g["id"]: g for g in res.get_json(force=True)["gateways"]}
        self.assertEqual(gateways["esewa"]["minAmount"], 10.0)


if __name__ == "__main__":
    unittest.main()
