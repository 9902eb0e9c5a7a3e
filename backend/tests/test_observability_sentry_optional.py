from __future__ import annotations

import unittest

from flask import Flask

from marketday.utils.observability import _before_send_scrub, init_otel, init_sentry


class SentryOptionalInitTestCase(unittest.TestCase):
    def test_sentry_init_is_noop_without_dsn(self):
        app = Flask(__name__)
        app.config["SENTRY_DSN"] = ""
        init_sentry(app)

    def test_otel_disabled_is_noop(self):
        app = Flask(__name__)
        init_otel(app, enabled=False)

    def test_scrub_redacts_signature_and_auth_headers(self):
        event = {"request": {"headers": {"Authorization": "Bearer x", "Stripe-Signature": "t=1", "Accept": "json"}}}
        scrubbed = _before_send_scrub(event, None)
        headers = scrubbed["request"]["headers"]
        self.assertEqual(headers["Authorization"], "[REDACTED]")
        self.assertEqual(headers["Stripe-Signature"], "[REDACTED]")
        self.assertEqual(headers["Accept"], "json")


if __name__ == "__main__":
    unittest.main()
