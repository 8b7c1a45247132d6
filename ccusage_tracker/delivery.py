"""Webhook delivery of parsed usage records."""

from datetime import datetime
from typing import Optional

import httpx

from ccusage_tracker.usage_parser import UsageRecord

DEFAULT_TIMEOUT = 30.0


class DeliveryError(Exception):
    """The webhook answered with a non-success status."""

    def __init__(self, status_code: int, reason: str, body: str):
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(f"Failed to send data to webhook: {status_code} {reason}. Response: {body}")


def build_payload(record: UsageRecord, user: str, note: str = "",
                  raw_output: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    """Payload posted to the webhook.

    date/time are the reporting moment in local time; the usage day itself
    is usageDate.
    """
    now = now or datetime.now()
    payload = {
        "user": user,
        "timestamp": now.astimezone().isoformat(),
        "date": now.strftime("%Y-%m-%d"),
        "time": now.strftime("%H:%M:%S"),
        "usageDate": record.date,
        "note": note or "",
        **record.to_payload(),
    }
    if raw_output is not None:
        payload["rawOutput"] = raw_output
    return payload


def send_usage(url: str, payload: dict, timeout: float = DEFAULT_TIMEOUT,
               transport: Optional[httpx.BaseTransport] = None) -> str:
    """POST the payload as JSON. Returns the response body text."""
    with httpx.Client(timeout=timeout, transport=transport) as client:
        response = client.post(url, json=payload)

    if not response.is_success:
        raise DeliveryError(response.status_code, response.reason_phrase, response.text)
    return response.text
