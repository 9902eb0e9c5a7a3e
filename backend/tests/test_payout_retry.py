from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from marketday.celery_app import PAYOUT_RETRY_TASK, create_celery_app
from marketday.extensions import db
from marketday.models import Notification, VendorPayout
from marketday.services.marketplace_store import MarketplaceStore
from marketday.services.notification_service import NotificationDispatcher
from marketday.services.payout_retry_service import MAX_PER_RUN, retry_failed_payouts
from marketday.tasks.payout_tasks import retry_failed_payouts_task

from marketday_testkit import NOW, MarketdayTestCase


class PayoutRetryTestCase(MarketdayTestCase):
    def setUp(self):
        super().setUp()
        self.admin = self.make_user("Ops", role="admin")
        self.buyer = self.make_user("Pat Buyer")
        self.vendor = self.make_vendor()
        market = self.make_market()
        listing = self.make_listing(self.vendor, [market])
        _order, self.items = self.make_order(self.buyer, [(listing, market, 1, "cancelled")] * 3)

    def _payout(self, item, *, age: timedelta, amount=435, vendor=None, now=NOW):
        created = (now - age).replace(tzinfo=None)
        row = VendorPayout(
            order_item_id=item.id,
            vendor_profile_id=(vendor or self.vendor).id,
            amount_cents=amount,
            status="failed",
            last_error="account restricted",
            created_at=created,
            updated_at=created,
        )
        db.session.add(row)
        db.session.commit()
        return row

    def _run(self):
        return retry_failed_payouts(MarketplaceStore(), self.payments, NotificationDispatcher(None), NOW)

    def test_fresh_payout_is_retried(self):
        payout = self._payout(self.items[0], age=timedelta(days=1))
        summary = self._run()
        self.assertEqual(summary["retried"], 1)
        self.assertEqual(summary["succeeded"], 1)
        row = db.session.get(VendorPayout, payout.id)
        self.assertEqual(row.status, "processing")
        self.assertTrue(row.stripe_transfer_id.startswith("tr_mock_"))
        self.assertEqual(self.payments.transfers[0]["key"], f"transfer-{self.items[0].order_id}-{self.items[0].id}")

    def test_still_failing_payout_stays_failed(self):
        self.payments.fail_transfers = True
        payout = self._payout(self.items[0], age=timedelta(hours=3))
        summary = self._run()
        self.assertEqual(summary["still_failed"], 1)
        self.assertEqual(db.session.get(VendorPayout, payout.id).status, "failed")

    def test_stale_payout_is_cancelled_and_admins_told(self):
        payout = self._payout(self.items[0], age=timedelta(days=8))
        summary = self._run()
        self.assertEqual(summary["cancelled"], 1)
        self.assertEqual(summary["retried"], 0)
        self.assertEqual(db.session.get(VendorPayout, payout.id).status, "cancelled")
        self.assertEqual(Notification.query.filter_by(user_id=self.admin.id, type="payout_retry_exhausted").count(), 1)

    def test_vendor_without_payout_account_is_skipped(self):
        unpaid = self.make_vendor("No Account", stripe_account_id=None, payouts_enabled=False)
        payout = self._payout(self.items[1], age=timedelta(days=1), vendor=unpaid)
        summary = self._run()
        self.assertEqual(summary["skipped"], 1)
        self.assertEqual(self.payments.transfers, [])
        self.assertEqual(db.session.get(VendorPayout, payout.id).status, "failed")

    def test_batch_is_capped(self):
        for _ in range(MAX_PER_RUN + 2):
            self._payout(self.items[2], age=timedelta(hours=1))
        summary = self._run()
        self.assertEqual(summary["retried"], MAX_PER_RUN)
        self.assertEqual(VendorPayout.query.filter_by(status="failed").count(), 2)

    def test_cli_and_task_entry_points(self):
        self._payout(self.items[0], age=timedelta(hours=1), now=datetime.now(timezone.utc))
        out = self.app.test_cli_runner().invoke(args=["retry-failed-payouts"])
        self.assertEqual(out.exit_code, 0, out.output)
        self.assertIn("succeeded=1", out.output)

        summary = retry_failed_payouts_task.run()
        self.assertEqual(summary["retried"], 0)


class PayoutBeatScheduleTestCase(MarketdayTestCase):
    def test_beat_runs_payout_retry_on_configured_interval(self):
        self.app.config.update(CELERY_BROKER_URL="redis://broker:6379/3", PAYOUT_RETRY_INTERVAL_SECONDS=900)
        celery = create_celery_app(self.app)
        entry = celery.conf.beat_schedule["vendor-payout-retry"]
        self.assertEqual(entry["task"], PAYOUT_RETRY_TASK)
        self.assertEqual(entry["schedule"], 900.0)
        self.assertEqual(celery.conf.broker_url, "redis://broker:6379/3")
        self.assertEqual(PAYOUT_RETRY_TASK, retry_failed_payouts_task.name)


if __name__ == "__main__":
    unittest.main()
