"""
Takbull checkout, payment notifications and subscription lifecycle.

`BillingService` holds the flows behind the `/takbull/*` and
`/subscription/*` routes. It raises `ApiError` for anything the client
should see; gateway and email side effects of cancel/pause/resume are
best-effort and only logged.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional

from backend.billing_rules import apply_discount, as_utc, utcnow
from backend.config import Settings
from backend.db import (
    DbClient,
    OrderRecord,
    PaymentNotification,
    StoreError,
    SubscriptionRecord,
    new_id,
)
from backend.email_templates import render_subscription_action_email
from backend.errors import ApiError
from backend.gateway import GatewayError, PaymentGateway
from backend.identity import IdentityUser
from backend.mailer import EmailClient, EmailDeliveryError, EmailMessage
from shared.constants import (
    CURRENCY,
    MIN_PAYMENT_SECONDS,
    ORDER_REFERENCE_PREFIX,
    ORDER_REFERENCE_SUFFIX_LENGTH,
    PENDING_ORDER_FALLBACK_SECONDS,
    SHORT_BRAND_NAME,
)
from shared.messages import normalize_lang, t
from shared.types import (
    BillingPeriod,
    OrderStatus,
    SubscriptionAction,
    SubscriptionStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_SITE_URL = "https://viraly.co.il"
SUBSCRIPTION_DEAL_TYPE = 4
# Takbull recurring-interval codes.
YEARLY_RECURRING_INTERVAL = 4
MONTHLY_RECURRING_INTERVAL = 5
PAYMENT_UPDATE_FAILED = (
    "Payment succeeded but subscription update failed. Please contact support."
)
SUCCESS_EVENTS = ("payment_success", "recurring_payment")
_REFERENCE_ALPHABET = string.digits + string.ascii_uppercase


def new_order_reference(now: datetime) -> str:
    """`VRL-<epoch ms>-<9 uppercase base36 chars>`."""
    suffix = "".join(
        secrets.choice(_REFERENCE_ALPHABET) for _ in range(ORDER_REFERENCE_SUFFIX_LENGTH)
    )
    return f"{ORDER_REFERENCE_PREFIX}-{int(now.timestamp() * 1000)}-{suffix}"


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_notification(params: Mapping[str, Any]) -> PaymentNotification:
    """Build a notification from callback query params or an IPN body."""

    def text(*keys: str) -> Optional[str]:
        for key in keys:
            value = params.get(key)
            if value not in (None, ""):
                return str(value)
        return None

    status_code = _int_or_none(params.get("statusCode"))
    return PaymentNotification(
        status_code=status_code if status_code is not None else 0,
        transaction_internal_number=text("transactionInternalNumber"),
        takbull_order_number=text("ordernumber"),
        uniq_id=text("uniqId"),
        token=text("token"),
        last_4_digits=text("Last4Digits"),
        number_payments=_int_or_none(params.get("numberpayments")),
        token_expiration_month=text("TokenExpirationMonth"),
        token_expiration_year=text("TokenExpirationYear"),
        recurring_id=text("recurringId", "RecurringId"),
        raw={key: value for key, value in params.items()},
    )


def check_cron_secret(
    configured: Optional[str], *candidates: Optional[str]
) -> bool:
    """Constant-time match of any supplied secret; no secret configured admits all."""
    if not configured:
        return True
    expected = configured.encode()
    return any(
        candidate and hmac.compare_digest(candidate.encode(), expected)
        for candidate in candidates
    )


def downgrade_expired(db: DbClient, now: Optional[datetime] = None) -> int:
    """Demote every paid subscription whose period ended or quota ran out."""
    now = now or utcnow()
    downgraded = 0
    for subscription in db.list_downgrade_candidates():
        if db.expire_subscription(subscription.id, now=now):
            downgraded += 1
            logger.info(
                "Downgraded subscription %s for user %s",
                subscription.id,
                subscription.user_id,
            )
    return downgraded


@dataclass
class BillingService:
    db: DbClient
    settings: Settings
    gateway: Optional[PaymentGateway] = None
    mailer: Optional[EmailClient] = None
    clock: Callable[[], datetime] = field(default=utcnow)

    # Checkout

    def init_order(
        self,
        user: IdentityUser,
        *,
        subscription_tier: Optional[str],
        billing_period: Optional[str],
        plan_id: Optional[str] = None,
        preferred_language: Optional[str] = None,
        requested_user_id: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> dict:
        if requested_user_id and requested_user_id != user.id:
            raise ApiError(403, "Forbidden: userId does not match the authenticated user")
        if not subscription_tier or not billing_period:
            raise ApiError(
                400, "Missing required fields: subscriptionTier, billingPeriod"
            )
        if self.gateway is None:
            logger.error("Takbull credentials are not configured")
            raise ApiError(500, "Payment gateway not configured")

        plan = self.db.get_plan(plan_id) if plan_id else self.db.find_active_plan(
            subscription_tier
        )
        if plan is None:
            raise ApiError(400, "Plan not found")

        profile = self.db.get_profile(user.id)
        amount = plan.price_for(billing_period)
        if profile:
            amount = apply_discount(
                amount,
                profile.pending_payment_discount_type,
                profile.pending_payment_discount_value,
            )

        now = self.clock()
        order = self.db.create_order(
            OrderRecord(
                id=new_id(),
                user_id=user.id,
                plan_id=plan.id,
                subscription_tier=subscription_tier,
                billing_period=billing_period,
                order_reference=new_order_reference(now),
                amount=amount,
                created_at=now,
                updated_at=now,
            )
        )
        payload = self._checkout_payload(
            order, plan.name, profile, preferred_language, origin
        )
        logger.info(
            "Requesting payment page for order %s (%s %s, %s %s)",
            order.order_reference,
            subscription_tier,
            billing_period,
            amount,
            CURRENCY,
        )

        try:
            data = self.gateway.get_redirect_url(payload)
        except GatewayError as exc:
            logger.error("Takbull redirect request failed: %s", exc)
            self.db.mark_order_failed(order.id, str(exc))
            raise ApiError(500, str(exc)) from exc

        if data.get("responseCode") != 0:
            message = data.get("message") or "Failed to initialize payment"
            self.db.mark_order_failed(order.id, message, gateway_response=data)
            raise ApiError(400, message)

        self.db.mark_order_processing(order.id, data.get("uniqId"), data)
        payment_url = data.get("url") or data.get("redirectUrl")
        if not payment_url:
            raise ApiError(500, "No payment URL received from Takbull")
        return {
            "order_id": order.id,
            "order_reference": order.order_reference,
            "payment_url": payment_url,
            "uniq_id": data.get("uniqId"),
        }

    def _checkout_payload(
        self,
        order: OrderRecord,
        plan_name: str,
        profile,
        preferred_language: Optional[str],
        origin: Optional[str],
    ) -> dict:
        product_name = plan_name or f"Viraly Pro - {order.subscription_tier}"
        redirect_url = (
            self.settings.takbull_redirect_url
            or f"{origin or DEFAULT_SITE_URL}/order-received"
        )
        yearly = order.billing_period == BillingPeriod.YEARLY.value
        return {
            "DealType": SUBSCRIPTION_DEAL_TYPE,
            "Interval": 1,
            "OrderReference": order.order_reference,
            "OrderTotalSum": order.amount,
            "InitialAmount": order.amount,
            "InitialAmountDescription": product_name,
            "Products": [{"ProductName": product_name, "Price": order.amount}],
            "Customer": {
                "CustomerFullName": ((profile.full_name if profile else None) or "").strip(),
                "Email": (profile.email if profile else None) or "",
                "PhoneNumber": ((profile.phone if profile else None) or "").strip(),
            },
            "RedirectAddress": redirect_url,
            "Currency": CURRENCY,
            "Language": normalize_lang(preferred_language),
            "RecuringInterval": (
                YEARLY_RECURRING_INTERVAL if yearly else MONTHLY_RECURRING_INTERVAL
            ),
            "NumberOfPayments": 12 if yearly else 1,
        }

    # Gateway notifications

    def handle_callback(self, params: Mapping[str, Any]) -> dict:
        """Reconcile an order from the payment-page redirect."""
        notification = parse_notification(params)
        reference = params.get("order_reference") or None
        # uniqId narrows the lookup but never identifies an order on its own.
        if not (
            reference
            or notification.takbull_order_number
            or notification.transaction_internal_number
        ):
            raise ApiError(400, "Missing order reference")

        order = self.db.find_order(
            takbull_order_number=notification.takbull_order_number,
            order_reference=reference,
            transaction_internal_number=notification.transaction_internal_number,
            uniq_id=notification.uniq_id,
        )
        now = self.clock()
        if order is None:
            since = now - timedelta(seconds=PENDING_ORDER_FALLBACK_SECONDS)
            if self.db.find_recent_pending_order(since) is not None:
                logger.warning(
                    "Callback matched no order; recent pending order left unchanged"
                )
                return self._needs_retry()
            raise ApiError(404, "Order not found")

        success = notification.status_code == 0
        if success and not notification.transaction_id:
            logger.warning(
                "Success callback for order %s without a transaction id", order.id
            )
            return self._needs_retry()
        elapsed = (now - as_utc(order.created_at)).total_seconds()
        if success and elapsed < MIN_PAYMENT_SECONDS:
            logger.warning(
                "Success callback for order %s only %.0fs after creation",
                order.id,
                elapsed,
            )
            return self._needs_retry()

        if success:
            outcome = self._complete(order, notification, now)
            return {
                "ok": True,
                "success": True,
                "orderId": order.id,
                "orderReference": order.order_reference,
                "oldTier": outcome.old_tier,
                "newTier": outcome.new_tier,
                "message": "Payment processed successfully",
            }

        old_tier = self._current_tier(order.user_id)
        self._fail(order, notification, now)
        return {
            "ok": True,
            "success": False,
            "orderId": order.id,
            "orderReference": order.order_reference,
            "oldTier": old_tier,
            "newTier": old_tier,
            "message": "Payment failed",
        }

    def handle_ipn(self, params: Mapping[str, Any]) -> dict:
        reference = params.get("order_reference")
        if not reference:
            raise ApiError(400, "Missing order_reference")
        order = self.db.find_order(order_reference=str(reference))
        if order is None:
            logger.error("IPN for unknown order %s", reference)
            raise ApiError(404, "Order not found")

        notification = parse_notification(params)
        success = notification.status_code == 0
        event_type = params.get("eventType") or (
            "payment_success" if success else "payment_failed"
        )
        logger.info(
            "IPN %s for order %s (status %s)",
            event_type,
            order.order_reference,
            notification.status_code,
        )
        now = self.clock()
        if event_type in SUCCESS_EVENTS and success:
            self._complete(order, notification, now)
        elif event_type in SUCCESS_EVENTS or event_type == "payment_failed":
            self._fail(order, notification, now)
        else:
            self.db.record_order_notification(order.id, notification)
        return {"ok": True, "message": "IPN processed successfully"}

    def _complete(self, order: OrderRecord, notification: PaymentNotification, now):
        try:
            outcome = self.db.complete_payment(order.id, notification, now=now)
        except StoreError as exc:
            logger.exception("Completing payment for order %s failed", order.id)
            raise ApiError(500, PAYMENT_UPDATE_FAILED) from exc
        if outcome.duplicate:
            logger.info("Order %s already completed; notification ignored", order.id)
        else:
            logger.info(
                "Order %s completed: %s -> %s",
                order.id,
                outcome.old_tier,
                outcome.new_tier,
            )
        return outcome

    def _fail(self, order: OrderRecord, notification: PaymentNotification, now) -> None:
        try:
            stored = self.db.fail_payment(order.id, notification, now=now)
        except StoreError as exc:
            logger.exception("Failing payment for order %s failed", order.id)
            raise ApiError(500, "Failed to update order") from exc
        if stored.order_status == OrderStatus.COMPLETED:
            logger.info(
                "Order %s already completed; failure notification merged only", order.id
            )
            return
        logger.info(
            "Order %s failed with status code %s", order.id, notification.status_code
        )

    def _current_tier(self, user_id: str) -> str:
        profile = self.db.get_profile(user_id)
        return profile.subscription_tier if profile else "free"

    @staticmethod
    def _needs_retry(lang: Optional[str] = None) -> dict:
        return {
            "ok": False,
            "success": False,
            "needsRetry": True,
            "message": t("payment_not_confirmed", lang),
        }

    # Subscriber actions

    def status(self, user: IdentityUser, lang: Optional[str] = None) -> dict:
        try:
            subscription = self.db.latest_subscription(user.id)
        except StoreError as exc:
            logger.exception("Reading subscription status for %s failed", user.id)
            raise ApiError(500, t("status_error", lang)) from exc
        if subscription is None:
            return {
                "subscription_status": SubscriptionStatus.EXPIRED.value,
                "auto_renew": False,
                "current_period_end": None,
                "plan": None,
            }
        period_end = as_utc(subscription.current_period_end)
        return {
            "subscription_status": subscription.subscription_status.value,
            "auto_renew": subscription.auto_renew,
            "current_period_end": period_end.isoformat() if period_end else None,
            "plan": subscription.plan,
        }

    def cancel(self, user: IdentityUser, lang: Optional[str] = None) -> dict:
        subscription = self._find_subscription(
            user.id,
            lang,
            (
                SubscriptionStatus.ACTIVE,
                SubscriptionStatus.PAUSED,
                SubscriptionStatus.INACTIVE,
            ),
        )
        if subscription is None:
            latest = self._find_subscription(user.id, lang)
            if latest and latest.subscription_status == SubscriptionStatus.CANCELED:
                return {"ok": True, "message": t("already_canceled", lang)}
            raise ApiError(400, t("no_active_subscription", lang))

        self._stop_charges(subscription)
        self._transition(subscription, SubscriptionStatus.CANCELED, "cancel", lang)
        self._send_confirmation(user, SubscriptionAction.CANCEL, lang)
        return {"ok": True}

    def pause(self, user: IdentityUser, lang: Optional[str] = None) -> dict:
        subscription = self._find_subscription(user.id, lang)
        if subscription is None:
            raise ApiError(400, t("no_subscription", lang))
        if subscription.subscription_status == SubscriptionStatus.PAUSED:
            return {"ok": True, "message": t("already_paused", lang)}
        if subscription.subscription_status != SubscriptionStatus.ACTIVE:
            raise ApiError(400, t("no_active_subscription", lang))

        if subscription.recurring_id and self.gateway is not None:
            try:
                self.gateway.stop_recurring_charge(subscription.recurring_id)
            except GatewayError as exc:
                logger.warning("Stopping recurring charge failed: %s", exc)
        self._transition(subscription, SubscriptionStatus.PAUSED, "pause", lang)
        self._send_confirmation(user, SubscriptionAction.PAUSE, lang)
        return {"ok": True}

    def resume(self, user: IdentityUser, lang: Optional[str] = None) -> dict:
        subscription = self._find_subscription(user.id, lang)
        if subscription is None:
            raise ApiError(400, t("no_subscription", lang))
        if subscription.subscription_status != SubscriptionStatus.PAUSED:
            raise ApiError(400, t("not_paused", lang))

        if subscription.recurring_id and self.gateway is not None:
            try:
                self.gateway.resume_recurring_charge(subscription.recurring_id)
            except GatewayError as exc:
                logger.warning("Resuming recurring charge failed: %s", exc)
        self._transition(subscription, SubscriptionStatus.ACTIVE, "resume", lang)
        self._send_confirmation(user, SubscriptionAction.RESUME, lang)
        return {"ok": True}

    def _stop_charges(self, subscription: SubscriptionRecord) -> None:
        if self.gateway is None:
            logger.warning("No payment gateway configured; skipping charge stop")
            return
        try:
            if subscription.recurring_id:
                self.gateway.stop_recurring_charge(subscription.recurring_id)
                return
            uniq_id = self.db.latest_order_uniq_id(subscription.id)
            if uniq_id:
                self.gateway.cancel_subscription(uniq_id)
            else:
                logger.warning("No uniqId found for subscription %s", subscription.id)
        except (GatewayError, StoreError) as exc:
            logger.warning(
                "Gateway cancel for subscription %s failed: %s", subscription.id, exc
            )

    def _find_subscription(
        self,
        user_id: str,
        lang: Optional[str],
        statuses: Optional[tuple[SubscriptionStatus, ...]] = None,
    ) -> Optional[SubscriptionRecord]:
        try:
            return self.db.latest_subscription(user_id, statuses)
        except StoreError as exc:
            logger.exception("Reading subscription for %s failed", user_id)
            raise ApiError(500, t("update_error", lang)) from exc

    def _transition(
        self,
        subscription: SubscriptionRecord,
        status: SubscriptionStatus,
        event_type: str,
        lang: Optional[str],
    ) -> None:
        try:
            self.db.transition_subscription(
                subscription.id, status, event_type, now=self.clock()
            )
        except StoreError as exc:
            logger.exception(
                "Moving subscription %s to %s failed", subscription.id, status.value
            )
            raise ApiError(500, t("update_error", lang)) from exc
        logger.info("Subscription %s is now %s", subscription.id, status.value)

    def _send_confirmation(
        self, user: IdentityUser, action: SubscriptionAction, lang: Optional[str]
    ) -> None:
        sender = self.settings.contact_from_email
        if self.mailer is None or not sender:
            return
        try:
            profile = self.db.get_profile(user.id)
        except StoreError as exc:
            logger.warning("Profile lookup for confirmation email failed: %s", exc)
            profile = None
        recipient = (profile.email if profile else None) or user.email
        if not recipient:
            return
        language = lang or (profile.preferred_language if profile else None)
        rendered = render_subscription_action_email(action, language)
        try:
            self.mailer.send(
                EmailMessage(
                    sender=f"{SHORT_BRAND_NAME} <{sender}>",
                    to=[recipient],
                    subject=rendered.subject,
                    html=rendered.html,
                    text=rendered.text,
                )
            )
        except EmailDeliveryError as exc:
            logger.warning("Confirmation email for %s failed: %s", action.value, exc)
