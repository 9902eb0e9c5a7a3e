from __future__ import annotations

import importlib
import unittest


class ImportsBootTestCase(unittest.TestCase):
    def test_import_create_app(self):
        module = importlib.import_module("marketday")
        create_app = getattr(module, "create_app", None)
        self.assertTrue(callable(create_app))

    def test_import_lifecycle_segments(self):
        for name in (
            "marketday.segments.segment_order_lifecycle",
            "marketday.segments.segment_availability",
            "marketday.segments.segment_payment_webhooks",
        ):
            self.assertIsNotNone(importlib.import_module(name))

    def test_import_payout_task(self):
        module = importlib.import_module("marketday.tasks.payout_tasks")
        self.assertTrue(callable(getattr(module, "retry_failed_payouts_task", None)))


if __name__ == "__main__":
    unittest.main()
