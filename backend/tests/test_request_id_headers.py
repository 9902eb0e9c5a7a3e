from __future__ import annotations

import unittest
import uuid

from marketday_testkit import MarketdayTestCase


class RequestIdHeadersTestCase(MarketdayTestCase):
    def test_generates_request_id_when_missing(self):
        res = self.client.get("/api/health")
        self.assertEqual(res.status_code, 200)
        rid = (res.headers.get("X-Request-Id") or "").strip()
        self.assertTrue(rid)
        uuid.UUID(rid)

    def test_echoes_request_id_when_provided(self):
        incoming = "rid-test-123"
        res = self.client.get("/api/health", headers={"X-Request-Id": incoming})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.headers.get("X-Request-Id"), incoming)

    def test_error_payload_includes_trace_id(self):
        res = self.client.post("/api/buyer/orders/1/cancel", json={"reason": "Missing auth"})
        self.assertEqual(res.status_code, 401)
        body = res.get_json(force=True)
        self.assertIsInstance(body, dict)
        self.assertIn("trace_id", body)
        self.assertEqual((body.get("trace_id") or "").strip(), (res.headers.get("X-Request-Id") or "").strip())


if __name__ == "__main__":
    unittest.main()
