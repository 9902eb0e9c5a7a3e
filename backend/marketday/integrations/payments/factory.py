from __future__ import annotations

from marketday.integrations.common import IntegrationMisconfiguredError, config_value
from marketday.integrations.payments.base import PaymentsProvider
from marketday.integrations.payments.mock_provider import MockPaymentsProvider
from marketday.integrations.payments.stripe_provider import StripePaymentsProvider


def build_payments_provider(config) -> PaymentsProvider:
    provider = (config_value(config, "PAYMENTS_PROVIDER", "mock") or "mock").strip().lower()

    if provider == "mock":
        return MockPaymentsProvider()

    if provider != "stripe":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:payments_provider={provider}")

    secret_key = (config_value(config, "STRIPE_SECRET_KEY", "") or "").strip()
    if not secret_key:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing STRIPE_SECRET_KEY")

    return StripePaymentsProvider(secret_key=secret_key)


def payment_health(config) -> dict:
    provider = (config_value(config, "PAYMENTS_PROVIDER", "mock") or "mock").strip().lower()
    missing = []
    if provider == "stripe":
        if not (config_value(config, "STRIPE_SECRET_KEY", "") or "").strip():
            missing.append("STRIPE_SECRET_KEY")
        if not (config_value(config, "STRIPE_WEBHOOK_SECRET", "") or "").strip():
            missing.append("STRIPE_WEBHOOK_SECRET")
    if provider not in ("mock", "stripe"):
        status = "misconfigured"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "provider": provider, "missing": missing}
