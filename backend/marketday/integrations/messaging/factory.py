from __future__ import annotations

from marketday.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError, config_value
from marketday.integrations.messaging.base import MessagingProvider
from marketday.integrations.messaging.mock_provider import MockMessagingProvider
from marketday.integrations.messaging.twilio_provider import TwilioMessagingProvider


def build_messaging_provider(config) -> MessagingProvider:
    provider = (config_value(config, "MESSAGING_PROVIDER", "mock") or "mock").strip().lower()
    if provider == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:sms")

    if provider == "mock":
        return MockMessagingProvider()

    if provider != "twilio":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:messaging_provider={provider}")

    sid = (config_value(config, "TWILIO_ACCOUNT_SID", "") or "").strip()
    token = (config_value(config, "TWILIO_AUTH_TOKEN", "") or "").strip()
    from_number = (config_value(config, "TWILIO_FROM_NUMBER", "") or "").strip()
    missing = []
    if not sid:
        missing.append("TWILIO_ACCOUNT_SID")
    if not token:
        missing.append("TWILIO_AUTH_TOKEN")
    if not from_number:
        missing.append("TWILIO_FROM_NUMBER")
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")
    return TwilioMessagingProvider(account_sid=sid, auth_token=token, from_number=from_number)
