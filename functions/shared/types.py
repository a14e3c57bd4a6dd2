"""
Canonical state enums shared by the store, the billing flows and the API.

Each entity carries exactly one canonical state. The legacy columns read by
older clients (`subscriptions.status`, `takbull_orders.payment_status`,
`profiles.subscription_status`) are derived from it with the helpers below
and are never read back.
"""

from __future__ import annotations

from enum import Enum


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELED = "canceled"
    EXPIRED = "expired"
    INACTIVE = "inactive"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SubscriptionTier(str, Enum):
    FREE = "free"
    CREATOR = "creator"
    PRO = "pro"
    COACH = "coach"
    COACH_PRO = "coach-pro"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionAction(str, Enum):
    PAUSE = "pause"
    CANCEL = "cancel"
    RESUME = "resume"


_LEGACY_SUBSCRIPTION_STATUS = {
    SubscriptionStatus.ACTIVE: "active",
    # Paused rows kept the legacy "active" marker.
    SubscriptionStatus.PAUSED: "active",
    SubscriptionStatus.CANCELED: "cancelled",
    SubscriptionStatus.EXPIRED: "expired",
    SubscriptionStatus.INACTIVE: "inactive",
}

_PROFILE_SUBSCRIPTION_STATUS = {
    SubscriptionStatus.ACTIVE: "active",
    SubscriptionStatus.PAUSED: "paused",
    SubscriptionStatus.CANCELED: "cancelled",
    SubscriptionStatus.EXPIRED: "inactive",
    SubscriptionStatus.INACTIVE: "inactive",
}

_PAYMENT_STATUS = {
    OrderStatus.PENDING: "pending",
    OrderStatus.PROCESSING: "pending",
    OrderStatus.COMPLETED: "paid",
    OrderStatus.FAILED: "failed",
}


def legacy_subscription_status(status: SubscriptionStatus) -> str:
    return _LEGACY_SUBSCRIPTION_STATUS[status]


def profile_subscription_status(status: SubscriptionStatus) -> str:
    """Value mirrored onto `profiles.subscription_status`."""
    return _PROFILE_SUBSCRIPTION_STATUS[status]


def payment_status(status: OrderStatus) -> str:
    return _PAYMENT_STATUS[status]
