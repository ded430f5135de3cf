from __future__ import annotations

import os
import unittest
from datetime import datetime, timedelta
from unittest.mock import patch

from thulubazaar import create_app
from thulubazaar.extensions import db
from thulubazaar.jobs import promotion_sweeper
from thulubazaar.jobs.promotion_sweeper import JOB_NAME, run_promotion_expiry_sweep
from thulubazaar.models import Ad, AdPromotion, JobRun, User
from thulubazaar.services.promotion_service import activate_promotion
from thulubazaar.utils.jwt_utils import create_token


class PromotionExpirySweepTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._saved_env = {key: os.getenv(key) for key in ("SQLALCHEMY_DATABASE_URI", "DATABASE_URL")}
        db_uri = "sqlite:///:memory:"
        os.environ["SQLALCHEMY_DATABASE_URI"] = db_uri
        os.environ["DATABASE_URL"] = db_uri
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
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.session.remove()
        db.drop_all()
        db.create_all()
        self.seller = User(full_name="Ram Seller", email="ram@example.com")
        self.admin = User(full_name="Ops", email="ops@example.com", role="editor")
        db.session.add_all([self.seller, self.admin])
        db.session.flush()
        self.ads = []
        for idx in range(3):
            ad = Ad(user_id=self.seller.id, title=f"Ad {idx}", slug=f"ad-{idx}", status="active")
            db.session.add(ad)
            self.ads.append(ad)
        db.session.commit()
        self.now = datetime.utcnow()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def _promote(self, ad: Ad, ptype: str, *, days: int, started_days_ago: int) -> AdPromotion:
        return activate_promotion(
            ad_id=ad.id,
            user_id=self.seller.id,
            promotion_type=ptype,
            duration_days=days,
            amount_paid=100,
            transaction_id=f"TB_AD__{ad.id}_{ptype}",
            now=self.now - timedelta(days=started_days_ago),
        )

    def test_expired_promotion_is_deactivated_and_flags_cleared(self):
        expired = self._promote(self.ads[0], "featured", days=3, started_days_ago=4)
        live = self._promote(self.ads[1], "urgent", days=7, started_days_ago=1)

        result = run_promotion_expiry_sweep(now=self.now)
        self.assertEqual(
            result,
            {"ok": True, "found": 1, "deactivated": 1, "errors": 0, "orphaned_cleaned": 0},
        )
        db.session.expire_all()
        self.assertFalse(db.session.get(AdPromotion, expired.id).is_active)
        self.assertTrue(db.session.get(AdPromotion, live.id).is_active)
        ad0 = db.session.get(Ad, self.ads[0].id)
        self.assertFalse(ad0.is_featured)
        self.assertIsNone(ad0.featured_until)
        self.assertTrue(db.session.get(Ad, self.ads[1].id).is_urgent)

        again = run_promotion_expiry_sweep(now=self.now)
        self.assertEqual(again["found"], 0)
        self.assertEqual(again["deactivated"], 0)

        runs = JobRun.query.filter_by(job_name=JOB_NAME).order_by(JobRun.id.asc()).all()
        self.assertEqual(len(runs), 2)
        self.assertEqual(runs[0].to_dict()["summary"]["deactivated"], 1)
        self.assertTrue(runs[1].ok)

    def test_sticky_expiry_clears_bump(self):
        self._promote(self.ads[2], "sticky", days=1, started_days_ago=2)
        run_promotion_expiry_sweep(now=self.now)
        db.session.expire_all()
        ad = db.session.get(Ad, self.ads[2].id)
        self.assertFalse(ad.is_sticky)
        self.assertFalse(ad.is_bumped)
        self.assertIsNone(ad.bump_expires_at)

    def test_failing_row_does_not_stop_the_rest(self):
        bad = self._promote(self.ads[0], "featured", days=1, started_days_ago=3)
        good = self._promote(self.ads[1], "featured", days=1, started_days_ago=2)
        bad_id = int(bad.id)
        real_expire = promotion_sweeper._expire_promotion

        def _flaky(promotion, now):
            if int(promotion.id) == bad_id:
                raise RuntimeError("row locked")
            return real_expire(promotion, now)

        with patch.object(promotion_sweeper, "_expire_promotion", side_effect=_flaky):
            result = run_promotion_expiry_sweep(now=self.now)

        self.assertFalse(result["ok"])
        self.assertEqual(result["found"], 2)
        self.assertEqual(result["deactivated"], 1)
        self.assertEqual(result["errors"], 1)
        db.session.expire_all()
        self.assertTrue(db.session.get(AdPromotion, bad_id).is_active)
        self.assertFalse(db.session.get(AdPromotion, good.id).is_active)
        self.assertFalse(JobRun.query.filter_by(job_name=JOB_NAME).one().ok)

        # next run picks up the leftover row
        retry = run_promotion_expiry_sweep(now=self.now)
        self.assertEqual(retry["deactivated"], 1)

    def test_orphaned_flags_are_cleared(self):
        ad = db.session.get(Ad, self.ads[0].id)
        ad.is_urgent = True
        ad.urgent_until = self.now - timedelta(hours=1)
        ad.is_featured = True
        ad.featured_until = self.now + timedelta(days=1)
        db.session.commit()

        result = run_promotion_expiry_sweep(now=self.now)
        self.assertEqual(result["found"], 0)
        self.assertEqual(result["orphaned_cleaned"], 1)
        db.session.expire_all()
        ad = db.session.get(Ad, self.ads[0].id)
        self.assertFalse(ad.is_urgent)
        self.assertIsNone(ad.urgent_until)
        self.assertTrue(ad.is_featured)

    def test_admin_sweep_endpoint(self):
        self._promote(self.ads[0], "urgent", days=1, started_days_ago=2)
        seller_token = create_token(int(self.seller.id))
        admin_token = create_token(int(self.admin.id))

        res = self.client.post("/api/admin/promotions/sweep", headers={"Authorization": f"Bearer {seller_token}"})
        self.assertEqual(res.status_code, 403)

        res = self.client.post("/api/admin/promotions/sweep", headers={"Authorization": f"Bearer {admin_token}"})
        self.assertEqual(res.status_code, 200)
        body = res.get_json(force=True)
        self.assertTrue(body.get("ok"))
        self.assertEqual(body.get("deactivated"), 1)

        res = self.client.get("/api/admin/promotions/sweeps", headers={"Authorization": f"Bearer {admin_token}"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json(force=True)["items"][0]["job_name"], JOB_NAME)

    def test_cli_command(self):
        self._promote(self.ads[0], "featured", days=1, started_days_ago=2)
        runner = self.app.test_cli_runner()
        result = runner.invoke(args=["sweep-promotions", "--limit", "10"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn('"deactivated": 1', result.output)


if __name__ == "__main__":
    unittest.main()
