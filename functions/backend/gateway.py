"""
Takbull payment gateway client and notification signature checks.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
SIGNATURE_HEADER = "X-Takbull-Signature"


class GatewayError(Exception):
    """Raised when the gateway cannot be reached or rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PaymentGateway(Protocol):
    def get_redirect_url(self, payload: dict) -> dict:
        ...

    def stop_recurring_charge(self, recurring_id: str) -> None:
        ...

    def resume_recurring_charge(self, recurring_id: str) -> None:
        ...

    def cancel_subscription(self, uniq_id: str) -> None:
        ...


class TakbullGateway:
    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str,
        timeout: float = REQUEST_TIMEOUT,
    ):
        if not api_key or not api_secret:
            raise ValueError("TAKBULL_API_KEY and TAKBULL_API_SECRET are required")
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _credentials(self) -> dict:
        return {"API_Key": self.api_key, "API_Secret": self.api_secret}

    def _post(self, endpoint: str, body: dict) -> requests.Response:
        try:
            response = requests.post(
                f"{self.base_url}/{endpoint}",
                json={**body, **self._credentials()},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GatewayError(f"Network error: {exc}") from exc
        if not response.ok:
            raise GatewayError(
                f"Takbull API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )
        return response

    def get_redirect_url(self, payload: dict) -> dict:
        response = self._post("GetTakbullPaymentPageRedirectUrl", payload)
        return _json_object(response)

    def stop_recurring_charge(self, recurring_id: str) -> None:
        self._post("StopRecurringCharge", {"RecurringId": recurring_id})

    def resume_recurring_charge(self, recurring_id: str) -> None:
        self._post("ResumeRecurringCharge", {"RecurringId": recurring_id})

    def cancel_subscription(self, uniq_id: str) -> None:
        try:
            response = requests.get(
                f"{self.base_url}/CancelSubscription",
                params={"uniqId": uniq_id},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GatewayError(f"Network error: {exc}") from exc
        if not response.ok:
            raise GatewayError(
                f"CancelSubscription HTTP error: {response.status_code} {response.text}",
                status_code=response.status_code,
            )
        data = _json_object(response)
        if data.get("InternalCode") != 0:
            raise GatewayError(
                f"CancelSubscription failed: {data.get('InternalDescription') or 'Unknown error'}"
            )


def _json_object(response: requests.Response) -> dict:
    try:
        data = response.json()
    except ValueError as exc:
        raise GatewayError(f"Invalid JSON from Takbull: {response.text}") from exc
    if not isinstance(data, dict):
        raise GatewayError(f"Unexpected Takbull response: {response.text}")
    return data


@dataclass
class InMemoryGateway:
    """Records calls and returns a canned redirect response (testing/dev)."""

    redirect_response: dict = field(
        default_factory=lambda: {
            "responseCode": 0,
            "url": "https://pay.example.test/checkout",
            "uniqId": "uniq-test",
        }
    )
    fail_with: Optional[GatewayError] = None
    calls: list[tuple[str, Any]] = field(default_factory=list)

    def _record(self, name: str, value: Any) -> None:
        self.calls.append((name, value))
        if self.fail_with is not None:
            raise self.fail_with

    def get_redirect_url(self, payload: dict) -> dict:
        self._record("get_redirect_url", payload)
        return dict(self.redirect_response)

    def stop_recurring_charge(self, recurring_id: str) -> None:
        self._record("stop_recurring_charge", recurring_id)

    def resume_recurring_charge(self, recurring_id: str) -> None:
        self._record("resume_recurring_charge", recurring_id)

    def cancel_subscription(self, uniq_id: str) -> None:
        self._record("cancel_subscription", uniq_id)


def sign_notification(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_notification(secret: str, payload: bytes, signature: Optional[str]) -> bool:
    if not signature:
        return False
    expected = sign_notification(secret, payload)
    return hmac.compare_digest(expected, signature.strip().lower())
