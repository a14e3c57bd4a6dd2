"""
Transactional email delivery through Resend, with an in-memory outbox for tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import requests

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
REQUEST_TIMEOUT = 30


class EmailDeliveryError(Exception):
    """Raised when the email provider rejects or fails a send."""


@dataclass
class EmailMessage:
    sender: str
    to: list[str]
    subject: str
    html: str
    text: Optional[str] = None
    reply_to: Optional[str] = None

    def as_payload(self) -> dict:
        payload = {
            "from": self.sender,
            "to": self.to,
            "subject": self.subject,
            "html": self.html,
        }
        if self.text:
            payload["text"] = self.text
        if self.reply_to:
            payload["reply_to"] = self.reply_to
        return payload


class EmailClient(Protocol):
    def send(self, message: EmailMessage) -> Optional[str]:
        ...


class ResendEmailClient:
    def __init__(self, api_key: str, timeout: float = REQUEST_TIMEOUT):
        if not api_key:
            raise ValueError("RESEND_API_KEY is required")
        self.api_key = api_key
        self.timeout = timeout

    def send(self, message: EmailMessage) -> Optional[str]:
        try:
            response = requests.post(
                RESEND_API_URL,
                json=message.as_payload(),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise EmailDeliveryError(f"Resend request failed: {exc}") from exc
        if not response.ok:
            raise EmailDeliveryError(
                f"Resend error {response.status_code}: {response.text}"
            )
        try:
            email_id = response.json().get("id")
        except (ValueError, AttributeError) as exc:
            raise EmailDeliveryError(
                f"Unexpected Resend response: {response.text}"
            ) from exc
        logger.info("Sent email %s to %s", email_id, ", ".join(message.to))
        return email_id


@dataclass
class InMemoryEmailClient:
    """Collects messages instead of sending them (testing/dev)."""

    outbox: list[EmailMessage] = field(default_factory=list)
    fail: bool = False

    def send(self, message: EmailMessage) -> Optional[str]:
        if self.fail:
            raise EmailDeliveryError("delivery disabled")
        self.outbox.append(message)
        return f"mem-{len(self.outbox)}"
