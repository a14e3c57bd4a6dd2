import json
import re
import unittest
from datetime import timedelta
from unittest import mock

from fastapi.testclient import TestClient

from backend.app import create_app
from backend.billing_rules import add_billing_interval, utcnow
from backend.config import Settings, get_settings
from backend.db import (
    InMemoryDbClient,
    OrderRecord,
    PlanRecord,
    ProfileRecord,
    StoreError,
    SubscriptionRecord,
    new_id,
)
from backend.dependencies import (
    get_db_client,
    get_email_client,
    get_identity_client,
    get_payment_gateway,
)
from backend.gateway import (
    SIGNATURE_HEADER,
    GatewayError,
    InMemoryGateway,
    TakbullGateway,
    sign_notification,
)
from backend.identity import InMemoryIdentityClient
from backend.mailer import InMemoryEmailClient
from shared.types import OrderStatus, SubscriptionStatus

USER_TOKEN = "user-token"


class BillingApiTestCase(unittest.TestCase):
    settings_overrides: dict = {}

    def setUp(self):
        self.app = create_app()
        self.db = InMemoryDbClient()
        self.identity = InMemoryIdentityClient()
        self.gateway = InMemoryGateway()
        self.mailer = InMemoryEmailClient()
        self.settings = Settings(
            _env_file=None,
            resend_api_key="re_test",
            contact_from_email="noreply@viraly.test",
            takbull_api_key="key",
            takbull_api_secret="secret",
            **self.settings_overrides,
        )
        self.app.dependency_overrides[get_db_client] = lambda: self.db
        self.app.dependency_overrides[get_identity_client] = lambda: self.identity
        self.app.dependency_overrides[get_payment_gateway] = lambda: self.gateway
        self.app.dependency_overrides[get_email_client] = lambda: self.mailer
        self.app.dependency_overrides[get_settings] = lambda: self.settings
        self.client = TestClient(self.app)
        self.headers = {"Authorization": f"Bearer {USER_TOKEN}"}

        self.identity.add_user("user-1", "user@viraly.test", token=USER_TOKEN)
        self.db.save_profile(
            ProfileRecord(
                user_id="user-1",
                email="user@viraly.test",
                full_name=" Dana Levi ",
                phone="050-0000000",
            )
        )
        self.db.save_plan(
            PlanRecord(id="p-pro", tier="pro", name="Pro", monthly_price=100, yearly_price=1000)
        )
        self.db.save_plan(
            PlanRecord(
                id="p-creator",
                tier="creator",
                name="Creator",
                monthly_price=50,
                yearly_price=500,
            )
        )

    def add_order(self, reference="VRL-1700000000000-ABCDEFGHI", age_seconds=300, **fields):
        created = utcnow() - timedelta(seconds=age_seconds)
        values = dict(
            id=new_id(),
            user_id="user-1",
            plan_id="p-pro",
            subscription_tier="pro",
            billing_period="monthly",
            order_reference=reference,
            amount=100,
            order_status=OrderStatus.PROCESSING,
            created_at=created,
            updated_at=created,
        )
        values.update(fields)
        return self.db.create_order(OrderRecord(**values))

    def add_subscription(self, status=SubscriptionStatus.ACTIVE, **fields):
        values = dict(
            id=new_id(),
            user_id="user-1",
            plan_id="p-pro",
            plan="pro",
            subscription_status=status,
            billing_period="monthly",
            current_period_end=utcnow() + timedelta(days=10),
        )
        values.update(fields)
        subscription = SubscriptionRecord(**values)
        self.db.save_subscription(subscription)
        return subscription


class InitOrderTests(BillingApiTestCase):
    def _init(self, body, headers=None):
        return self.client.post(
            "/api/takbull/init-order",
            json=body,
            headers=self.headers if headers is None else headers,
        )

    def test_requires_authentication(self):
        response = self._init({"subscriptionTier": "pro", "billingPeriod": "monthly"}, {})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(self.db.orders, {})

    def test_creates_processing_order_for_yearly_plan(self):
        response = self._init(
            {
                "subscriptionTier": "pro",
                "billingPeriod": "yearly",
                "preferredLanguage": "en",
            }
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["ok"])
        self.assertEqual(payload["paymentUrl"], "https://pay.example.test/checkout")
        self.assertEqual(payload["uniqId"], "uniq-test")
        self.assertRegex(payload["orderReference"], r"^VRL-\d{13}-[0-9A-Z]{9}$")

        order = self.db.get_order(payload["orderId"])
        self.assertEqual(order.order_status, OrderStatus.PROCESSING)
        self.assertEqual(order.payment_status, "pending")
        self.assertEqual(order.uniq_id, "uniq-test")
        self.assertEqual(order.amount, 1000)

        (name, sent), = self.gateway.calls
        self.assertEqual(name, "get_redirect_url")
        self.assertEqual(sent["DealType"], 4)
        self.assertEqual(sent["RecuringInterval"], 4)
        self.assertEqual(sent["NumberOfPayments"], 12)
        self.assertEqual(sent["Currency"], "ILS")
        self.assertEqual(sent["Language"], "en")
        self.assertEqual(sent["OrderReference"], payload["orderReference"])
        self.assertEqual(sent["Customer"]["CustomerFullName"], "Dana Levi")
        self.assertEqual(sent["RedirectAddress"], "https://viraly.co.il/order-received")

    def test_monthly_order_applies_pending_discount(self):
        profile = self.db.get_profile("user-1")
        profile.pending_payment_discount_type = "percentage"
        profile.pending_payment_discount_value = 25
        response = self._init(
            {"subscriptionTier": "pro", "billingPeriod": "monthly", "planId": "p-pro"},
            {**self.headers, "Origin": "https://app.viraly.test"},
        )
        self.assertEqual(response.status_code, 200)
        (_, sent), = self.gateway.calls
        self.assertEqual(sent["OrderTotalSum"], 75)
        self.assertEqual(sent["RecuringInterval"], 5)
        self.assertEqual(sent["NumberOfPayments"], 1)
        self.assertEqual(sent["Language"], "he")
        self.assertEqual(sent["RedirectAddress"], "https://app.viraly.test/order-received")

    def test_unknown_plan(self):
        response = self._init({"subscriptionTier": "coach", "billingPeriod": "monthly"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"ok": False, "error": "Plan not found"})

    def test_invalid_billing_period(self):
        response = self._init({"subscriptionTier": "pro", "billingPeriod": "weekly"})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["ok"])

    def test_rejects_order_for_another_user(self):
        response = self._init(
            {"userId": "user-2", "subscriptionTier": "pro", "billingPeriod": "monthly"}
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(self.db.orders, {})

    def test_gateway_rejection_fails_order(self):
        self.gateway.redirect_response = {"responseCode": 7, "message": "Invalid terminal"}
        response = self._init({"subscriptionTier": "pro", "billingPeriod": "monthly"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Invalid terminal")
        (order,) = self.db.orders.values()
        self.assertEqual(order.order_status, OrderStatus.FAILED)
        self.assertEqual(order.error_message, "Invalid terminal")

    def test_gateway_network_error_fails_order(self):
        self.gateway.fail_with = GatewayError("Network error: timed out")
        response = self._init({"subscriptionTier": "pro", "billingPeriod": "monthly"})
        self.assertEqual(response.status_code, 500)
        (order,) = self.db.orders.values()
        self.assertEqual(order.order_status, OrderStatus.FAILED)
        self.assertEqual(order.error_message, "Network error: timed out")

    def test_missing_payment_url(self):
        self.gateway.redirect_response = {"responseCode": 0, "uniqId": "u-1"}
        response = self._init({"subscriptionTier": "pro", "billingPeriod": "monthly"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["error"], "No payment URL received from Takbull")

    def test_gateway_not_configured(self):
        self.app.dependency_overrides[get_payment_gateway] = lambda: None
        response = self._init({"subscriptionTier": "pro", "billingPeriod": "monthly"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["error"], "Payment gateway not configured")


class CallbackTests(BillingApiTestCase):
    def _callback(self, **params):
        return self.client.get("/api/takbull/callback", params=params)

    def test_success_completes_order_and_extends_one_month(self):
        order = self.add_order()
        before = utcnow()
        response = self._callback(
            order_reference=order.order_reference, ordernumber="TB-100", statusCode="0"
        )
        after = utcnow()
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["oldTier"], "free")
        self.assertEqual(payload["newTier"], "pro")

        stored = self.db.get_order(order.id)
        self.assertEqual(stored.order_status, OrderStatus.COMPLETED)
        self.assertEqual(stored.payment_status, "paid")
        self.assertEqual(stored.takbull_order_number, "TB-100")
        subscription = self.db.latest_subscription("user-1")
        self.assertEqual(subscription.subscription_status, SubscriptionStatus.ACTIVE)
        self.assertTrue(subscription.auto_renew)
        self.assertLessEqual(
            add_billing_interval(before, "monthly"), subscription.current_period_end
        )
        self.assertLessEqual(
            subscription.current_period_end, add_billing_interval(after, "monthly")
        )
        profile = self.db.get_profile("user-1")
        self.assertEqual(profile.subscription_tier, "pro")
        self.assertEqual(profile.subscription_status, "active")
        self.assertEqual(
            profile.selected_tracks, ["actors", "musicians", "creators", "influencers"]
        )

    def test_repeated_notification_does_not_extend_twice(self):
        order = self.add_order()
        params = dict(
            order_reference=order.order_reference, ordernumber="TB-100", statusCode="0"
        )
        self._callback(**params)
        first_end = self.db.latest_subscription("user-1").current_period_end
        response = self._callback(**params)
        self.assertTrue(response.json()["success"])
        self.assertEqual(self.db.latest_subscription("user-1").current_period_end, first_end)
        payments = [e for e in self.db.list_events("user-1") if e.event_type == "payment"]
        self.assertEqual(len(payments), 1)

    def test_lookup_by_gateway_order_number_takes_precedence(self):
        self.add_order(reference="VRL-1-AAAAAAAAA", takbull_order_number="TB-7")
        target = self.add_order(reference="VRL-2-BBBBBBBBB")
        response = self._callback(ordernumber="TB-7", order_reference=target.order_reference)
        self.assertEqual(response.json()["orderReference"], "VRL-1-AAAAAAAAA")

    def test_success_too_soon_after_creation_needs_retry(self):
        order = self.add_order(age_seconds=5)
        response = self._callback(
            order_reference=order.order_reference, ordernumber="TB-1", statusCode="0"
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertFalse(payload["ok"])
        self.assertTrue(payload["needsRetry"])
        self.assertEqual(self.db.get_order(order.id).order_status, OrderStatus.PROCESSING)
        self.assertIsNone(self.db.latest_subscription("user-1"))

    def test_success_without_transaction_id_needs_retry(self):
        order = self.add_order()
        response = self._callback(order_reference=order.order_reference)
        self.assertTrue(response.json()["needsRetry"])
        self.assertEqual(self.db.get_order(order.id).order_status, OrderStatus.PROCESSING)

    def test_failure_status_fails_order_without_moving_dates(self):
        subscription = self.add_subscription()
        order = self.add_order(subscription_id=subscription.id)
        response = self._callback(
            order_reference=order.order_reference, ordernumber="TB-9", statusCode="3"
        )
        payload = response.json()
        self.assertTrue(payload["ok"])
        self.assertFalse(payload["success"])
        stored = self.db.get_order(order.id)
        self.assertEqual(stored.order_status, OrderStatus.FAILED)
        self.assertEqual(stored.error_message, "Payment failed with status code: 3")
        current = self.db.get_subscription(subscription.id)
        self.assertEqual(current.subscription_status, SubscriptionStatus.INACTIVE)
        self.assertEqual(current.current_period_end, subscription.current_period_end)

    def test_missing_reference(self):
        response = self._callback(statusCode="0")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Missing order reference")

    def test_uniq_id_alone_is_not_an_order_reference(self):
        order = self.add_order(uniq_id="uniq-7")
        response = self._callback(uniqId="uniq-7", statusCode="0")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Missing order reference")
        self.assertEqual(self.db.get_order(order.id).order_status, OrderStatus.PROCESSING)

    def test_unknown_reference_without_pending_order(self):
        response = self._callback(order_reference="VRL-404", ordernumber="TB-1")
        self.assertEqual(response.status_code, 404)

    def test_fallback_to_recent_pending_order_never_mutates(self):
        pending = self.add_order(order_status=OrderStatus.PENDING, age_seconds=600)
        response = self._callback(order_reference="VRL-unknown", ordernumber="TB-1")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["needsRetry"])
        self.assertEqual(self.db.get_order(pending.id).order_status, OrderStatus.PENDING)
        self.assertIsNone(self.db.latest_subscription("user-1"))


class IpnTests(BillingApiTestCase):
    def test_requires_order_reference(self):
        response = self.client.post("/api/takbull/ipn", json={"statusCode": "0"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Missing order_reference")

    def test_unknown_order(self):
        response = self.client.post("/api/takbull/ipn", json={"order_reference": "nope"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"], "Order not found")

    def test_json_success_completes_payment(self):
        order = self.add_order()
        response = self.client.post(
            "/api/takbull/ipn",
            json={
                "order_reference": order.order_reference,
                "statusCode": "0",
                "transactionInternalNumber": "INT-1",
                "Last4Digits": "4242",
                "numberpayments": "1",
            },
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(), {"ok": True, "message": "IPN processed successfully"}
        )
        stored = self.db.get_order(order.id)
        self.assertEqual(stored.order_status, OrderStatus.COMPLETED)
        self.assertEqual(stored.last_4_digits, "4242")
        self.assertEqual(stored.number_payments, 1)
        self.assertEqual(stored.gateway_response["Last4Digits"], "4242")

    def test_form_encoded_failure(self):
        order = self.add_order()
        response = self.client.post(
            "/api/takbull/ipn",
            data={"order_reference": order.order_reference, "statusCode": "5"},
        )
        self.assertEqual(response.status_code, 200)
        stored = self.db.get_order(order.id)
        self.assertEqual(stored.order_status, OrderStatus.FAILED)
        self.assertEqual(stored.payment_status, "failed")

    def test_other_event_only_records_fields(self):
        order = self.add_order()
        self.client.post(
            "/api/takbull/ipn",
            json={
                "order_reference": order.order_reference,
                "eventType": "token_updated",
                "token": "tok-2",
            },
        )
        stored = self.db.get_order(order.id)
        self.assertEqual(stored.order_status, OrderStatus.PROCESSING)
        self.assertEqual(stored.token, "tok-2")

    def test_failure_read_before_a_success_commits_keeps_the_order_completed(self):
        order = self.add_order()
        snapshot = self.db.find_order(order_reference=order.order_reference)
        self.client.post(
            "/api/takbull/ipn",
            json={
                "order_reference": order.order_reference,
                "statusCode": "0",
                "ordernumber": "TB-1",
            },
        )
        paid = self.db.latest_subscription("user-1")

        # The failure handler still holds the order as it was before the success.
        with mock.patch.object(self.db, "find_order", return_value=snapshot):
            response = self.client.post(
                "/api/takbull/ipn",
                json={
                    "order_reference": order.order_reference,
                    "statusCode": "5",
                    "token": "tok-late",
                },
            )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(snapshot.order_status, OrderStatus.PROCESSING)

        stored = self.db.get_order(order.id)
        self.assertEqual(stored.order_status, OrderStatus.COMPLETED)
        self.assertEqual(stored.payment_status, "paid")
        self.assertIsNone(stored.error_message)
        self.assertEqual(stored.token, "tok-late")
        current = self.db.get_subscription(paid.id)
        self.assertEqual(current.subscription_status, SubscriptionStatus.ACTIVE)
        self.assertEqual(current.current_period_end, paid.current_period_end)
        profile = self.db.get_profile("user-1")
        self.assertEqual(profile.subscription_tier, "pro")
        self.assertEqual(profile.subscription_status, "active")

    def test_store_failure_during_completion(self):
        order = self.add_order()
        with mock.patch.object(
            self.db, "complete_payment", side_effect=StoreError("disk full")
        ):
            response = self.client.post(
                "/api/takbull/ipn",
                json={"order_reference": order.order_reference, "statusCode": "0"},
            )
        self.assertEqual(response.status_code, 500)
        self.assertEqual(
            response.json()["error"],
            "Payment succeeded but subscription update failed. Please contact support.",
        )


class SignedIpnTests(BillingApiTestCase):
    settings_overrides = {"takbull_ipn_secret": "ipn-secret"}

    def test_rejects_bad_signature_without_mutating(self):
        order = self.add_order()
        body = json.dumps({"order_reference": order.order_reference, "statusCode": "0"})
        response = self.client.post(
            "/api/takbull/ipn",
            content=body,
            headers={"Content-Type": "application/json", SIGNATURE_HEADER: "deadbeef"},
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(self.db.get_order(order.id).order_status, OrderStatus.PROCESSING)

    def test_accepts_signed_body(self):
        order = self.add_order()
        body = json.dumps(
            {"order_reference": order.order_reference, "statusCode": "0"}
        ).encode()
        response = self.client.post(
            "/api/takbull/ipn",
            content=body,
            headers={
                "Content-Type": "application/json",
                SIGNATURE_HEADER: sign_notification("ipn-secret", body),
            },
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.db.get_order(order.id).order_status, OrderStatus.COMPLETED)

    def test_accepts_signed_query_string(self):
        order = self.add_order()
        query = f"order_reference={order.order_reference}&statusCode=4"
        response = self.client.post(
            f"/api/takbull/ipn?{query}",
            headers={SIGNATURE_HEADER: sign_notification("ipn-secret", query.encode())},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.db.get_order(order.id).order_status, OrderStatus.FAILED)


class SubscriptionApiTests(BillingApiTestCase):
    def test_requires_authentication(self):
        response = self.client.get("/api/subscription/status")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "לא מאומת")
        response = self.client.post(
            "/api/subscription/cancel", params={"lang": "en"}, headers={"Authorization": "Bearer bad"}
        )
        self.assertEqual(response.json()["error"], "Not authenticated")

    def test_status_without_subscription(self):
        response = self.client.get("/api/subscription/status", headers=self.headers)
        self.assertEqual(
            response.json(),
            {
                "ok": True,
                "subscription_status": "expired",
                "auto_renew": False,
                "current_period_end": None,
                "plan": None,
            },
        )

    def test_status_reports_latest_subscription(self):
        self.add_subscription(recurring_id="rec-1")
        payload = self.client.get("/api/subscription/status", headers=self.headers).json()
        self.assertEqual(payload["subscription_status"], "active")
        self.assertTrue(payload["auto_renew"])
        self.assertEqual(payload["plan"], "pro")
        self.assertIsNotNone(payload["current_period_end"])

    def test_cancel_stops_recurring_charge_and_confirms(self):
        subscription = self.add_subscription(recurring_id="rec-1")
        response = self.client.post("/api/subscription/cancel", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True})
        self.assertIn(("stop_recurring_charge", "rec-1"), self.gateway.calls)

        current = self.db.get_subscription(subscription.id)
        self.assertEqual(current.subscription_status, SubscriptionStatus.CANCELED)
        self.assertEqual(current.status, "cancelled")
        self.assertFalse(current.auto_renew)
        self.assertIsNotNone(current.canceled_at)
        self.assertEqual(self.db.get_profile("user-1").subscription_status, "cancelled")
        self.assertEqual(
            [e.event_type for e in self.db.list_events("user-1")], ["cancel"]
        )
        (message,) = self.mailer.outbox
        self.assertEqual(message.to, ["user@viraly.test"])
        self.assertTrue(message.subject.startswith("ביטול מנוי"))

        again = self.client.post(
            "/api/subscription/cancel", params={"lang": "en"}, headers=self.headers
        )
        self.assertEqual(
            again.json(), {"ok": True, "message": "The subscription is already canceled"}
        )

    def test_cancel_without_recurring_id_uses_latest_order(self):
        subscription = self.add_subscription()
        self.add_order(subscription_id=subscription.id, uniq_id="uniq-9")
        self.client.post("/api/subscription/cancel", headers=self.headers)
        self.assertIn(("cancel_subscription", "uniq-9"), self.gateway.calls)

    def test_cancel_survives_gateway_failure(self):
        subscription = self.add_subscription(recurring_id="rec-1")
        self.gateway.fail_with = GatewayError("Takbull API error: 500 - down")
        response = self.client.post("/api/subscription/cancel", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            self.db.get_subscription(subscription.id).subscription_status,
            SubscriptionStatus.CANCELED,
        )

    def test_cancel_survives_unreadable_gateway_reply(self):
        subscription = self.add_subscription()
        self.add_order(subscription_id=subscription.id, uniq_id="uniq-9")
        self.gateway = TakbullGateway("key", "secret", "https://api.takbull.test")
        html = mock.MagicMock(ok=True, status_code=200, text="<html>maintenance</html>")
        html.json.side_effect = ValueError("not json")
        with mock.patch("backend.gateway.requests.get", return_value=html):
            response = self.client.post("/api/subscription/cancel", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            self.db.get_subscription(subscription.id).subscription_status,
            SubscriptionStatus.CANCELED,
        )

    def test_cancel_store_failure_is_localized(self):
        self.add_subscription()
        with mock.patch.object(
            self.db, "transition_subscription", side_effect=StoreError("connection lost")
        ):
            response = self.client.post(
                "/api/subscription/cancel", params={"lang": "en"}, headers=self.headers
            )
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["error"], "Error updating subscription")

    def test_pause_lookup_failure_is_localized(self):
        with mock.patch.object(
            self.db, "latest_subscription", side_effect=StoreError("connection lost")
        ):
            response = self.client.post(
                "/api/subscription/pause", params={"lang": "he"}, headers=self.headers
            )
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["error"], "שגיאה בעדכון מנוי")

    def test_cancel_without_subscription(self):
        response = self.client.post(
            "/api/subscription/cancel", params={"lang": "en"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "No active subscription found")

    def test_pause_and_resume(self):
        subscription = self.add_subscription(recurring_id="rec-1")
        response = self.client.post(
            "/api/subscription/pause", params={"lang": "en"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 200)
        current = self.db.get_subscription(subscription.id)
        self.assertEqual(current.subscription_status, SubscriptionStatus.PAUSED)
        self.assertEqual(current.status, "active")
        self.assertFalse(current.auto_renew)
        self.assertIsNotNone(current.paused_at)
        self.assertEqual(self.db.get_profile("user-1").subscription_status, "paused")

        again = self.client.post(
            "/api/subscription/pause", params={"lang": "en"}, headers=self.headers
        )
        self.assertEqual(again.json()["message"], "The subscription is already paused")

        response = self.client.post(
            "/api/subscription/resume", params={"lang": "en"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 200)
        current = self.db.get_subscription(subscription.id)
        self.assertEqual(current.subscription_status, SubscriptionStatus.ACTIVE)
        self.assertTrue(current.auto_renew)
        self.assertIsNone(current.paused_at)
        self.assertIn(("resume_recurring_charge", "rec-1"), self.gateway.calls)
        self.assertEqual(
            [e.event_type for e in self.db.list_events("user-1")], ["pause", "resume"]
        )
        subjects = [message.subject for message in self.mailer.outbox]
        self.assertEqual(
            subjects,
            [
                "Subscription Paused | Viraly – Video Director Pro",
                "Subscription Resumed | Viraly – Video Director Pro",
            ],
        )

    def test_resume_requires_paused_subscription(self):
        self.add_subscription()
        response = self.client.post(
            "/api/subscription/resume", params={"lang": "en"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "The subscription is not paused")

    def test_pause_without_subscription(self):
        response = self.client.post("/api/subscription/pause", headers=self.headers)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "לא נמצא מנוי")


class DowngradeApiTests(BillingApiTestCase):
    settings_overrides = {"cron_secret": "cron-secret"}

    def setUp(self):
        super().setUp()
        now = utcnow()
        for user_id in ("u-expired", "u-exhausted", "u-healthy", "u-free", "u-canceled"):
            self.db.save_profile(
                ProfileRecord(
                    user_id=user_id,
                    subscription_tier="free" if user_id == "u-free" else "pro",
                    subscription_status="active",
                )
            )
        self.expired = self.add_subscription(
            user_id="u-expired", current_period_end=now - timedelta(days=1)
        )
        self.exhausted = self.add_subscription(
            user_id="u-exhausted",
            status=SubscriptionStatus.PAUSED,
            usage_quota_used=10,
            usage_quota_total=10,
        )
        self.healthy = self.add_subscription(
            user_id="u-healthy", usage_quota_used=3, usage_quota_total=10
        )
        self.free = self.add_subscription(
            user_id="u-free", plan="free", current_period_end=now - timedelta(days=1)
        )
        self.canceled = self.add_subscription(
            user_id="u-canceled",
            status=SubscriptionStatus.CANCELED,
            current_period_end=now - timedelta(days=1),
        )

    def test_rejects_wrong_secret(self):
        response = self.client.post(
            "/api/subscription/downgrade-expired",
            headers={"Authorization": "Bearer wrong"},
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"ok": False, "error": "Unauthorized"})
        self.assertEqual(
            self.db.get_subscription(self.expired.id).subscription_status,
            SubscriptionStatus.ACTIVE,
        )

    def test_demotes_only_expired_or_exhausted(self):
        response = self.client.post(
            "/api/subscription/downgrade-expired",
            headers={"Authorization": "Bearer cron-secret"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True, "downgraded": 2})

        for subscription in (self.expired, self.exhausted):
            current = self.db.get_subscription(subscription.id)
            self.assertEqual(current.subscription_status, SubscriptionStatus.EXPIRED)
            self.assertEqual(current.plan, "free")
            self.assertFalse(current.auto_renew)
            self.assertIsNotNone(current.expired_at)
            profile = self.db.get_profile(subscription.user_id)
            self.assertEqual(profile.subscription_tier, "free")
            self.assertEqual(profile.subscription_status, "inactive")

        self.assertEqual(
            self.db.get_subscription(self.healthy.id).subscription_status,
            SubscriptionStatus.ACTIVE,
        )
        self.assertEqual(
            self.db.get_subscription(self.canceled.id).subscription_status,
            SubscriptionStatus.CANCELED,
        )
        self.assertEqual(self.db.get_profile("u-healthy").subscription_tier, "pro")

    def test_secret_in_query_or_body(self):
        response = self.client.post(
            "/api/subscription/downgrade-expired", params={"secret": "cron-secret"}
        )
        self.assertEqual(response.json()["downgraded"], 2)
        response = self.client.post(
            "/api/subscription/downgrade-expired", json={"secret": "cron-secret"}
        )
        self.assertEqual(response.json()["downgraded"], 0)


if __name__ == "__main__":
    unittest.main()
