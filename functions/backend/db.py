"""
Database abstraction for the managed tables and an in-memory test implementation.

Every mutation that touches more than one table is exposed as a single
unit of work (`complete_payment`, `transition_subscription`,
`delete_user_data`, ...). The SQLAlchemy client in `backend.db_postgres`
runs each in one transaction; the in-memory client applies each under one
lock.
"""

from __future__ import annotations

import copy
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Protocol

from backend.billing_rules import (
    add_billing_interval,
    as_utc,
    is_downgrade_due,
    next_period_end,
    tracks_for_tier,
    utcnow,
)
from shared.types import (
    OrderStatus,
    SubscriptionStatus,
    SubscriptionTier,
    legacy_subscription_status,
    payment_status,
    profile_subscription_status,
)

# Tables whose rows belong to one user and go away with the account.
USER_OWNED_TABLES = ("usage", "analyses", "videos")


class StoreError(Exception):
    """Raised when a store operation cannot be applied."""


class NotFoundError(StoreError):
    pass


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ProfileRecord:
    user_id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    role: str = "user"
    subscription_tier: str = SubscriptionTier.FREE.value
    subscription_status: str = "inactive"
    subscription_period: Optional[str] = None
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    preferred_language: Optional[str] = None
    receive_updates: bool = False
    selected_tracks: list[str] = field(default_factory=list)
    selected_primary_track: Optional[str] = None
    pending_payment_discount_type: Optional[str] = None
    pending_payment_discount_value: Optional[float] = None


@dataclass
class PlanRecord:
    id: str
    tier: str
    name: str = ""
    monthly_price: float = 0
    yearly_price: float = 0
    is_active: bool = True

    def price_for(self, billing_period: str) -> float:
        if billing_period == "monthly":
            return self.monthly_price
        return self.yearly_price


@dataclass
class SubscriptionRecord:
    id: str
    user_id: str
    plan_id: Optional[str]
    plan: str
    subscription_status: SubscriptionStatus
    billing_period: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    auto_renew: bool = True
    recurring_id: Optional[str] = None
    payment_provider: Optional[str] = None
    payment_id: Optional[str] = None
    usage_quota_used: int = 0
    usage_quota_total: int = 0
    paused_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def status(self) -> str:
        return legacy_subscription_status(self.subscription_status)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "plan_id": self.plan_id,
            "plan": self.plan,
            "subscription_status": self.subscription_status.value,
            "status": self.status,
            "billing_period": self.billing_period,
            "current_period_end": _iso(self.current_period_end),
            "auto_renew": self.auto_renew,
        }


@dataclass
class OrderRecord:
    id: str
    user_id: str
    plan_id: Optional[str]
    subscription_tier: str
    billing_period: str
    order_reference: str
    amount: float
    order_status: OrderStatus = OrderStatus.PENDING
    uniq_id: Optional[str] = None
    takbull_order_number: Optional[str] = None
    transaction_internal_number: Optional[str] = None
    status_code: Optional[int] = None
    token: Optional[str] = None
    last_4_digits: Optional[str] = None
    number_payments: Optional[int] = None
    token_expiration_month: Optional[str] = None
    token_expiration_year: Optional[str] = None
    gateway_response: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    subscription_id: Optional[str] = None
    next_payment_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    is_recurring: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def payment_status(self) -> str:
        return payment_status(self.order_status)


@dataclass
class SubscriptionEventRecord:
    user_id: str
    event_type: str
    meta: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class AnnouncementRecord:
    id: str
    title: str
    message: str
    created_by: Optional[str]
    target_all: bool = True
    target_tier: list[str] = field(default_factory=list)
    sent_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class UserAnnouncementRecord:
    announcement_id: str
    user_id: str
    is_read: bool = False
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class CouponRecord:
    id: str
    code: str
    created_by: Optional[str] = None


@dataclass
class CouponRedemptionRecord:
    id: str
    coupon_id: str
    user_id: str


@dataclass
class TrialRecord:
    id: str
    user_id: str


@dataclass
class PaymentNotification:
    """Fields reported by the gateway on a redirect or IPN."""

    status_code: int = 0
    transaction_internal_number: Optional[str] = None
    takbull_order_number: Optional[str] = None
    uniq_id: Optional[str] = None
    token: Optional[str] = None
    last_4_digits: Optional[str] = None
    number_payments: Optional[int] = None
    token_expiration_month: Optional[str] = None
    token_expiration_year: Optional[str] = None
    recurring_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def transaction_id(self) -> Optional[str]:
        return self.takbull_order_number or self.transaction_internal_number


@dataclass
class PaymentOutcome:
    order: OrderRecord
    subscription: Optional[SubscriptionRecord]
    old_tier: str
    new_tier: str
    duplicate: bool = False


class DbClient(Protocol):
    """Interface for database access."""

    def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        ...

    def save_profile(self, profile: ProfileRecord) -> None:
        ...

    def list_profiles(
        self,
        *,
        only_receiving_updates: bool = True,
        tiers: Optional[list[str]] = None,
        require_email: bool = False,
    ) -> list[ProfileRecord]:
        ...

    def get_plan(self, plan_id: str) -> Optional[PlanRecord]:
        ...

    def find_active_plan(self, tier: str) -> Optional[PlanRecord]:
        ...

    def save_plan(self, plan: PlanRecord) -> None:
        ...

    def create_order(self, order: OrderRecord) -> OrderRecord:
        ...

    def get_order(self, order_id: str) -> Optional[OrderRecord]:
        ...

    def find_order(
        self,
        *,
        takbull_order_number: Optional[str] = None,
        order_reference: Optional[str] = None,
        transaction_internal_number: Optional[str] = None,
        uniq_id: Optional[str] = None,
    ) -> Optional[OrderRecord]:
        ...

    def find_recent_pending_order(self, since: datetime) -> Optional[OrderRecord]:
        ...

    def mark_order_processing(
        self, order_id: str, uniq_id: Optional[str], gateway_response: dict
    ) -> None:
        ...

    def mark_order_failed(
        self,
        order_id: str,
        error_message: str,
        gateway_response: Optional[dict] = None,
    ) -> None:
        ...

    def record_order_notification(
        self, order_id: str, notification: PaymentNotification
    ) -> OrderRecord:
        ...

    def latest_order_uniq_id(self, subscription_id: str) -> Optional[str]:
        ...

    def save_subscription(self, subscription: SubscriptionRecord) -> None:
        ...

    def get_subscription(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        ...

    def latest_subscription(
        self,
        user_id: str,
        statuses: Optional[Iterable[SubscriptionStatus]] = None,
    ) -> Optional[SubscriptionRecord]:
        ...

    def list_downgrade_candidates(self) -> list[SubscriptionRecord]:
        ...

    def list_events(self, user_id: str) -> list[SubscriptionEventRecord]:
        ...

    def complete_payment(
        self,
        order_id: str,
        notification: PaymentNotification,
        now: Optional[datetime] = None,
    ) -> PaymentOutcome:
        ...

    def fail_payment(
        self,
        order_id: str,
        notification: PaymentNotification,
        now: Optional[datetime] = None,
    ) -> OrderRecord:
        """Fail the order; a completed order only merges the notification fields."""
        ...

    def transition_subscription(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
        event_type: str,
        now: Optional[datetime] = None,
    ) -> SubscriptionRecord:
        ...

    def expire_subscription(
        self, subscription_id: str, now: Optional[datetime] = None
    ) -> bool:
        ...

    def create_announcement(
        self,
        *,
        title: str,
        message: str,
        created_by: Optional[str],
        target_all: bool = True,
        target_tier: Optional[list[str]] = None,
        include_all_target_users: bool = False,
        now: Optional[datetime] = None,
    ) -> tuple[AnnouncementRecord, int]:
        ...

    def delete_user_data(self, user_id: str) -> None:
        ...

    def delete_coupons(self, coupon_ids: list[str]) -> int:
        ...

    def delete_trials(self, trial_ids: list[str]) -> int:
        ...

    def delete_all_trials(self) -> int:
        ...

    def delete_all_redemptions(self) -> int:
        ...


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def apply_notification(order: Any, notification: PaymentNotification) -> None:
    """Merge gateway-reported fields into an order (record or row)."""
    for name in (
        "transaction_internal_number",
        "takbull_order_number",
        "uniq_id",
        "token",
        "last_4_digits",
        "number_payments",
        "token_expiration_month",
        "token_expiration_year",
    ):
        value = getattr(notification, name)
        if value is not None:
            setattr(order, name, value)
    order.status_code = notification.status_code
    merged = dict(order.gateway_response or {})
    merged.update(notification.raw)
    order.gateway_response = merged


def is_duplicate_completion(order: Any, notification: PaymentNotification) -> bool:
    """A completed order seeing the same (or no) transaction number again."""
    if order.order_status != OrderStatus.COMPLETED:
        return False
    incoming = notification.transaction_id
    if incoming is None:
        return True
    return incoming in (order.takbull_order_number, order.transaction_internal_number)


def apply_paid_profile(
    profile: Any,
    *,
    tier: str,
    billing_period: str,
    period_start: datetime,
    period_end: datetime,
) -> None:
    """Mirror a completed payment onto a profile (record or row)."""
    tracks, primary = tracks_for_tier(
        tier, profile.selected_tracks, profile.selected_primary_track
    )
    profile.subscription_tier = tier
    profile.subscription_period = billing_period
    profile.subscription_start_date = period_start
    profile.subscription_end_date = period_end
    profile.subscription_status = profile_subscription_status(SubscriptionStatus.ACTIVE)
    profile.pending_payment_discount_type = None
    profile.pending_payment_discount_value = None
    if tracks:
        profile.selected_tracks = tracks
    if primary:
        profile.selected_primary_track = primary


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self._lock = threading.RLock()
        self._clear()

    def _clear(self) -> None:
        self.profiles: Dict[str, ProfileRecord] = {}
        self.plans: Dict[str, PlanRecord] = {}
        self.orders: Dict[str, OrderRecord] = {}
        self.subscriptions: Dict[str, SubscriptionRecord] = {}
        self.events: list[SubscriptionEventRecord] = []
        self.announcements: Dict[str, AnnouncementRecord] = {}
        self.user_announcements: list[UserAnnouncementRecord] = []
        self.coupons: Dict[str, CouponRecord] = {}
        self.redemptions: Dict[str, CouponRedemptionRecord] = {}
        self.trials: Dict[str, TrialRecord] = {}
        # table name -> rows keyed by owner column ("user_id" / "coach_id")
        self.owned_rows: Dict[str, list[dict]] = {
            name: [] for name in USER_OWNED_TABLES + ("trainees",)
        }

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self._clear()

    def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        return self.profiles.get(user_id)

    def save_profile(self, profile: ProfileRecord) -> None:
        with self._lock:
            self.profiles[profile.user_id] = profile

    def list_profiles(
        self,
        *,
        only_receiving_updates: bool = True,
        tiers: Optional[list[str]] = None,
        require_email: bool = False,
    ) -> list[ProfileRecord]:
        result = []
        for profile in self.profiles.values():
            if only_receiving_updates and not profile.receive_updates:
                continue
            if tiers and profile.subscription_tier not in tiers:
                continue
            if require_email and not profile.email:
                continue
            result.append(profile)
        return result

    def get_plan(self, plan_id: str) -> Optional[PlanRecord]:
        return self.plans.get(plan_id)

    def find_active_plan(self, tier: str) -> Optional[PlanRecord]:
        for plan in self.plans.values():
            if plan.tier == tier and plan.is_active:
                return plan
        return None

    def save_plan(self, plan: PlanRecord) -> None:
        self.plans[plan.id] = plan

    def create_order(self, order: OrderRecord) -> OrderRecord:
        with self._lock:
            self.orders[order.id] = order
        return order

    def get_order(self, order_id: str) -> Optional[OrderRecord]:
        return self.orders.get(order_id)

    def find_order(
        self,
        *,
        takbull_order_number: Optional[str] = None,
        order_reference: Optional[str] = None,
        transaction_internal_number: Optional[str] = None,
        uniq_id: Optional[str] = None,
    ) -> Optional[OrderRecord]:
        for column, value in (
            ("takbull_order_number", takbull_order_number),
            ("order_reference", order_reference),
            ("transaction_internal_number", transaction_internal_number),
            ("uniq_id", uniq_id),
        ):
            if not value:
                continue
            for order in self.orders.values():
                if getattr(order, column) == value:
                    return order
        return None

    def find_recent_pending_order(self, since: datetime) -> Optional[OrderRecord]:
        pending = [
            order
            for order in self.orders.values()
            if order.order_status == OrderStatus.PENDING and order.created_at >= since
        ]
        if not pending:
            return None
        return max(pending, key=lambda order: order.created_at)

    def mark_order_processing(
        self, order_id: str, uniq_id: Optional[str], gateway_response: dict
    ) -> None:
        with self._lock:
            order = self._require_order(order_id)
            order.order_status = OrderStatus.PROCESSING
            order.uniq_id = uniq_id
            order.gateway_response = dict(gateway_response)
            order.updated_at = utcnow()

    def mark_order_failed(
        self,
        order_id: str,
        error_message: str,
        gateway_response: Optional[dict] = None,
    ) -> None:
        with self._lock:
            order = self._require_order(order_id)
            order.order_status = OrderStatus.FAILED
            order.error_message = error_message
            if gateway_response is not None:
                order.gateway_response = dict(gateway_response)
            order.updated_at = utcnow()

    def record_order_notification(
        self, order_id: str, notification: PaymentNotification
    ) -> OrderRecord:
        with self._lock:
            order = self._require_order(order_id)
            apply_notification(order, notification)
            order.updated_at = utcnow()
            return order

    def latest_order_uniq_id(self, subscription_id: str) -> Optional[str]:
        orders = [
            order
            for order in self.orders.values()
            if order.subscription_id == subscription_id and order.uniq_id
        ]
        if not orders:
            return None
        return max(orders, key=lambda order: order.created_at).uniq_id

    def save_subscription(self, subscription: SubscriptionRecord) -> None:
        self.subscriptions[subscription.id] = subscription

    def get_subscription(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        return self.subscriptions.get(subscription_id)

    def latest_subscription(
        self,
        user_id: str,
        statuses: Optional[Iterable[SubscriptionStatus]] = None,
    ) -> Optional[SubscriptionRecord]:
        allowed = set(statuses) if statuses is not None else None
        candidates = [
            sub
            for sub in self.subscriptions.values()
            if sub.user_id == user_id
            and (allowed is None or sub.subscription_status in allowed)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda sub: sub.created_at)

    def list_downgrade_candidates(self) -> list[SubscriptionRecord]:
        return [
            sub
            for sub in self.subscriptions.values()
            if sub.plan != SubscriptionTier.FREE.value
            and sub.subscription_status
            in (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED)
        ]

    def list_events(self, user_id: str) -> list[SubscriptionEventRecord]:
        return [event for event in self.events if event.user_id == user_id]

    def complete_payment(
        self,
        order_id: str,
        notification: PaymentNotification,
        now: Optional[datetime] = None,
    ) -> PaymentOutcome:
        now = now or utcnow()
        with self._lock:
            order = self._require_order(order_id)
            profile = self.profiles.get(order.user_id)
            old_tier = profile.subscription_tier if profile else SubscriptionTier.FREE.value
            if is_duplicate_completion(order, notification):
                subscription = (
                    self.subscriptions.get(order.subscription_id)
                    if order.subscription_id
                    else None
                )
                return PaymentOutcome(
                    order=order,
                    subscription=subscription,
                    old_tier=old_tier,
                    new_tier=old_tier,
                    duplicate=True,
                )

            plan = self.plans.get(order.plan_id) if order.plan_id else None
            tier = plan.tier if plan else order.subscription_tier

            # Stage on copies so a failure leaves nothing half-applied.
            order_copy = copy.deepcopy(order)
            subscription = self._subscription_for_order(order_copy)
            sub_copy = copy.deepcopy(subscription) if subscription else None
            if sub_copy is None:
                sub_copy = SubscriptionRecord(
                    id=new_id(),
                    user_id=order.user_id,
                    plan_id=order.plan_id,
                    plan=tier,
                    subscription_status=SubscriptionStatus.ACTIVE,
                    current_period_start=now,
                    created_at=now,
                )
            was_active = sub_copy.subscription_status == SubscriptionStatus.ACTIVE
            period_end = next_period_end(
                sub_copy.current_period_end if was_active else None,
                now,
                order.billing_period,
            )
            if not was_active:
                sub_copy.current_period_start = now
            sub_copy.plan = tier
            sub_copy.plan_id = order.plan_id
            sub_copy.subscription_status = SubscriptionStatus.ACTIVE
            sub_copy.billing_period = order.billing_period
            sub_copy.current_period_end = period_end
            sub_copy.auto_renew = True
            sub_copy.paused_at = None
            sub_copy.canceled_at = None
            sub_copy.expired_at = None
            sub_copy.payment_provider = "takbull"
            sub_copy.payment_id = notification.transaction_id or sub_copy.payment_id
            sub_copy.recurring_id = notification.recurring_id or sub_copy.recurring_id
            sub_copy.updated_at = now

            apply_notification(order_copy, notification)
            order_copy.order_status = OrderStatus.COMPLETED
            order_copy.error_message = None
            order_copy.completed_at = now
            order_copy.subscription_id = sub_copy.id
            order_copy.next_payment_date = add_billing_interval(now, order.billing_period)
            order_copy.updated_at = now

            profile_copy = copy.deepcopy(profile) if profile else ProfileRecord(user_id=order.user_id)
            apply_paid_profile(
                profile_copy,
                tier=tier,
                billing_period=order.billing_period,
                period_start=sub_copy.current_period_start or now,
                period_end=period_end,
            )

            self.orders[order.id] = order_copy
            self.subscriptions[sub_copy.id] = sub_copy
            self.profiles[profile_copy.user_id] = profile_copy
            self.events.append(
                SubscriptionEventRecord(
                    user_id=order.user_id,
                    event_type="payment",
                    meta={"order_id": order.id, "subscription_id": sub_copy.id},
                    created_at=now,
                )
            )
            return PaymentOutcome(
                order=order_copy,
                subscription=sub_copy,
                old_tier=old_tier,
                new_tier=tier,
            )

    def fail_payment(
        self,
        order_id: str,
        notification: PaymentNotification,
        now: Optional[datetime] = None,
    ) -> OrderRecord:
        now = now or utcnow()
        with self._lock:
            order = self._require_order(order_id)
            apply_notification(order, notification)
            order.updated_at = now
            if order.order_status == OrderStatus.COMPLETED:
                # Completed is terminal; only the notification fields merge.
                return order
            order.order_status = OrderStatus.FAILED
            order.error_message = (
                f"Payment failed with status code: {notification.status_code}"
            )
            subscription = (
                self.subscriptions.get(order.subscription_id)
                if order.subscription_id
                else None
            )
            if subscription:
                subscription.subscription_status = SubscriptionStatus.INACTIVE
                subscription.updated_at = now
                profile = self.profiles.get(order.user_id)
                if profile:
                    profile.subscription_status = profile_subscription_status(
                        SubscriptionStatus.INACTIVE
                    )
            return order

    def transition_subscription(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
        event_type: str,
        now: Optional[datetime] = None,
    ) -> SubscriptionRecord:
        now = now or utcnow()
        with self._lock:
            subscription = self.subscriptions.get(subscription_id)
            if not subscription:
                raise NotFoundError(f"Subscription {subscription_id} not found")
            apply_transition(subscription, status, now)
            subscription.subscription_status = status
            profile = self.profiles.get(subscription.user_id)
            if profile:
                profile.subscription_status = profile_subscription_status(status)
            self.events.append(
                SubscriptionEventRecord(
                    user_id=subscription.user_id,
                    event_type=event_type,
                    meta={"subscription_id": subscription.id},
                    created_at=now,
                )
            )
            return subscription

    def expire_subscription(
        self, subscription_id: str, now: Optional[datetime] = None
    ) -> bool:
        now = now or utcnow()
        with self._lock:
            subscription = self.subscriptions.get(subscription_id)
            if not subscription or subscription.subscription_status not in (
                SubscriptionStatus.ACTIVE,
                SubscriptionStatus.PAUSED,
            ):
                return False
            if not is_downgrade_due(
                subscription.current_period_end,
                subscription.usage_quota_used,
                subscription.usage_quota_total,
                now,
            ):
                return False
            subscription.plan = SubscriptionTier.FREE.value
            subscription.subscription_status = SubscriptionStatus.EXPIRED
            subscription.auto_renew = False
            subscription.expired_at = now
            subscription.updated_at = now
            profile = self.profiles.get(subscription.user_id)
            if profile:
                profile.subscription_tier = SubscriptionTier.FREE.value
                profile.subscription_status = profile_subscription_status(
                    SubscriptionStatus.EXPIRED
                )
            self.events.append(
                SubscriptionEventRecord(
                    user_id=subscription.user_id,
                    event_type="expire",
                    meta={"subscription_id": subscription.id},
                    created_at=now,
                )
            )
            return True

    def create_announcement(
        self,
        *,
        title: str,
        message: str,
        created_by: Optional[str],
        target_all: bool = True,
        target_tier: Optional[list[str]] = None,
        include_all_target_users: bool = False,
        now: Optional[datetime] = None,
    ) -> tuple[AnnouncementRecord, int]:
        now = now or utcnow()
        with self._lock:
            announcement = AnnouncementRecord(
                id=new_id(),
                title=title,
                message=message,
                created_by=created_by,
                target_all=target_all,
                target_tier=list(target_tier or []),
                created_at=now,
            )
            recipients = self.list_profiles(
                only_receiving_updates=not include_all_target_users,
                tiers=None if target_all else announcement.target_tier,
            )
            for profile in recipients:
                self.user_announcements.append(
                    UserAnnouncementRecord(
                        announcement_id=announcement.id,
                        user_id=profile.user_id,
                        created_at=now,
                    )
                )
            announcement.sent_at = now
            self.announcements[announcement.id] = announcement
            return announcement, len(recipients)

    def delete_user_data(self, user_id: str) -> None:
        with self._lock:
            self.orders = {
                key: order for key, order in self.orders.items() if order.user_id != user_id
            }
            self.subscriptions = {
                key: sub
                for key, sub in self.subscriptions.items()
                if sub.user_id != user_id
            }
            self.events = [event for event in self.events if event.user_id != user_id]
            for table in USER_OWNED_TABLES:
                self.owned_rows[table] = [
                    row for row in self.owned_rows[table] if row.get("user_id") != user_id
                ]
            self.owned_rows["trainees"] = [
                row
                for row in self.owned_rows["trainees"]
                if row.get("coach_id") != user_id
            ]
            self.trials = {
                key: trial for key, trial in self.trials.items() if trial.user_id != user_id
            }
            owned_announcements = {
                key
                for key, announcement in self.announcements.items()
                if announcement.created_by == user_id
            }
            self.user_announcements = [
                item
                for item in self.user_announcements
                if item.user_id != user_id
                and item.announcement_id not in owned_announcements
            ]
            for key in owned_announcements:
                del self.announcements[key]
            owned_coupons = {
                key for key, coupon in self.coupons.items() if coupon.created_by == user_id
            }
            self.redemptions = {
                key: redemption
                for key, redemption in self.redemptions.items()
                if redemption.user_id != user_id
                and redemption.coupon_id not in owned_coupons
            }
            for key in owned_coupons:
                del self.coupons[key]
            self.profiles.pop(user_id, None)

    def delete_coupons(self, coupon_ids: list[str]) -> int:
        targets = set(coupon_ids)
        with self._lock:
            self.redemptions = {
                key: redemption
                for key, redemption in self.redemptions.items()
                if redemption.coupon_id not in targets
            }
            deleted = [key for key in self.coupons if key in targets]
            for key in deleted:
                del self.coupons[key]
            return len(deleted)

    def delete_trials(self, trial_ids: list[str]) -> int:
        with self._lock:
            deleted = [key for key in trial_ids if key in self.trials]
            for key in deleted:
                del self.trials[key]
            return len(deleted)

    def delete_all_trials(self) -> int:
        with self._lock:
            count = len(self.trials)
            self.trials.clear()
            return count

    def delete_all_redemptions(self) -> int:
        with self._lock:
            count = len(self.redemptions)
            self.redemptions.clear()
            return count

    def _require_order(self, order_id: str) -> OrderRecord:
        order = self.orders.get(order_id)
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def _subscription_for_order(
        self, order: OrderRecord
    ) -> Optional[SubscriptionRecord]:
        if order.subscription_id and order.subscription_id in self.subscriptions:
            return self.subscriptions[order.subscription_id]
        for sub in self.subscriptions.values():
            if sub.user_id == order.user_id and sub.plan_id == order.plan_id:
                return sub
        return None


def apply_transition(subscription: Any, status: SubscriptionStatus, now: datetime) -> None:
    """Set the timestamps and renewal flag that accompany a user-driven transition."""
    if status == SubscriptionStatus.PAUSED:
        subscription.auto_renew = False
        subscription.paused_at = now
    elif status == SubscriptionStatus.CANCELED:
        subscription.auto_renew = False
        subscription.canceled_at = now
    elif status == SubscriptionStatus.ACTIVE:
        subscription.auto_renew = True
        subscription.paused_at = None
    subscription.updated_at = now
