from __future__ import annotations

import requests

from marketday.integrations.messaging.base import MessagingProvider, MessageResult


TWILIO_BASE = "https://api.twilio.com/2010-04-01"


def _map_twilio_error(status: int, message: str) -> str:
    msg = (message or "").lower()
    if status in (401, 403):
        return "SMS_AUTH_FAILED"
    if status == 429:
        return "SMS_RATE_LIMITED"
    if status >= 500 or status == 404:
        return "SMS_PROVIDER_DOWN"
    if status == 400:
        if "from" in msg:
            return "SMS_INVALID_SENDER"
        return "SMS_INVALID_RECIPIENT"
    return "SMS_PROVIDER_DOWN"


class TwilioMessagingProvider(MessagingProvider):
    name = "twilio"

    def __init__(self, *, account_sid: str, auth_token: str, from_number: str):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number

    def send_sms(self, *, to: str, message: str, reference: str = "") -> MessageResult:
        url = f"{TWILIO_BASE}/Accounts/{self.account_sid}/Messages.json"
        form = {"To": (to or "").strip(), "From": self.from_number, "Body": message}
        try:
            r = requests.post(url, data=form, auth=(self.account_sid, self.auth_token), timeout=12)
            data = r.json() if r.content else {}
            if not isinstance(data, dict):
                data = {"payload": data}
            if 200 <= r.status_code < 300:
                return MessageResult(ok=True, code="OK", message="sent", provider_ref=str(data.get("sid") or ""), raw=data)
            detail = str(data.get("message") or data.get("error") or "")
            return MessageResult(
                ok=False,
                code=_map_twilio_error(r.status_code, detail),
                message=(detail or f"http_{r.status_code}")[:200],
                raw=data,
            )
        except requests.Timeout:
            return MessageResult(ok=False, code="SMS_PROVIDER_DOWN", message="timeout")
        except Exception as e:
            return MessageResult(ok=False, code="SMS_PROVIDER_DOWN", message=str(e)[:200])
