import unittest
from datetime import datetime, timedelta, timezone

from backend import billing_rules
from backend.billing import (
    check_cron_secret,
    downgrade_expired,
    new_order_reference,
    parse_notification,
)
from backend.db import InMemoryDbClient, ProfileRecord, SubscriptionRecord
from shared.types import SubscriptionStatus

NOW = datetime(2025, 1, 31, 12, 0, tzinfo=timezone.utc)


class BillingRulesTests(unittest.TestCase):
    def test_add_months_clamps_to_month_end(self):
        self.assertEqual(
            billing_rules.add_months(NOW, 1), datetime(2025, 2, 28, 12, 0, tzinfo=timezone.utc)
        )
        self.assertEqual(
            billing_rules.add_months(NOW, 13), datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc)
        )
        leap = datetime(2024, 2, 29, tzinfo=timezone.utc)
        self.assertEqual(
            billing_rules.add_billing_interval(leap, "yearly"),
            datetime(2025, 2, 28, tzinfo=timezone.utc),
        )

    def test_next_period_end_extends_from_later_date(self):
        future_end = NOW + timedelta(days=10)
        self.assertEqual(
            billing_rules.next_period_end(future_end, NOW, "monthly"),
            billing_rules.add_months(future_end, 1),
        )
        past_end = NOW - timedelta(days=10)
        self.assertEqual(
            billing_rules.next_period_end(past_end, NOW, "monthly"),
            billing_rules.add_months(NOW, 1),
        )
        self.assertEqual(
            billing_rules.next_period_end(None, NOW, "yearly"),
            billing_rules.add_months(NOW, 12),
        )

    def test_as_utc_treats_naive_values_as_utc(self):
        naive = datetime(2025, 1, 1, 8, 30)
        self.assertEqual(billing_rules.as_utc(naive).tzinfo, timezone.utc)
        self.assertIsNone(billing_rules.as_utc(None))

    def test_apply_discount(self):
        self.assertEqual(billing_rules.apply_discount(100, None, None), 100)
        self.assertEqual(billing_rules.apply_discount(100, "percentage", 15), 85)
        self.assertEqual(billing_rules.apply_discount(100, "percentage", 150), 0)
        self.assertEqual(billing_rules.apply_discount(100, "fixed_amount", 30), 70)
        self.assertEqual(billing_rules.apply_discount(100, "fixed_amount", 300), 0)
        self.assertEqual(billing_rules.apply_discount(99, "percentage", 33), 66)

    def test_tracks_for_tier(self):
        tracks, primary = billing_rules.tracks_for_tier("coach", ["musicians"], None)
        self.assertEqual(tracks, ["actors", "musicians", "creators", "influencers"])
        self.assertEqual(primary, "actors")
        self.assertEqual(
            billing_rules.tracks_for_tier("creator", ["musicians"], None),
            (["musicians"], "musicians"),
        )
        self.assertEqual(
            billing_rules.tracks_for_tier("creator", [], "influencers"),
            (["influencers"], "influencers"),
        )
        self.assertEqual(billing_rules.tracks_for_tier("creator", [], None), ([], None))

    def test_is_downgrade_due(self):
        self.assertTrue(billing_rules.is_downgrade_due(NOW, 0, 0, NOW))
        self.assertFalse(billing_rules.is_downgrade_due(NOW + timedelta(seconds=1), 0, 0, NOW))
        self.assertTrue(billing_rules.is_downgrade_due(None, 10, 10, NOW))
        self.assertFalse(billing_rules.is_downgrade_due(None, 10, 0, NOW))


class NotificationParsingTests(unittest.TestCase):
    def test_parses_gateway_fields(self):
        notification = parse_notification(
            {
                "statusCode": "0",
                "ordernumber": "TB-1",
                "transactionInternalNumber": "INT-1",
                "uniqId": "",
                "Last4Digits": "4242",
                "numberpayments": "12",
                "RecurringId": "rec-1",
            }
        )
        self.assertEqual(notification.status_code, 0)
        self.assertEqual(notification.transaction_id, "TB-1")
        self.assertIsNone(notification.uniq_id)
        self.assertEqual(notification.number_payments, 12)
        self.assertEqual(notification.recurring_id, "rec-1")
        self.assertEqual(notification.raw["Last4Digits"], "4242")

    def test_missing_status_code_counts_as_success(self):
        self.assertEqual(parse_notification({}).status_code, 0)
        self.assertEqual(parse_notification({"statusCode": "abc"}).status_code, 0)
        self.assertEqual(parse_notification({"statusCode": 7}).status_code, 7)

    def test_order_reference_format(self):
        reference = new_order_reference(NOW)
        self.assertRegex(reference, r"^VRL-1738324800000-[0-9A-Z]{9}$")
        self.assertNotEqual(reference, new_order_reference(NOW))

    def test_cron_secret(self):
        self.assertTrue(check_cron_secret(None, None))
        self.assertTrue(check_cron_secret("s", None, "s"))
        self.assertFalse(check_cron_secret("s", None, "", "x"))


class DowngradeSweepTests(unittest.TestCase):
    def test_sweep_uses_supplied_clock(self):
        db = InMemoryDbClient()
        db.save_profile(ProfileRecord(user_id="u-1", subscription_tier="pro"))
        db.save_subscription(
            SubscriptionRecord(
                id="sub-1",
                user_id="u-1",
                plan_id="p",
                plan="pro",
                subscription_status=SubscriptionStatus.ACTIVE,
                current_period_end=NOW + timedelta(days=1),
            )
        )
        self.assertEqual(downgrade_expired(db, now=NOW), 0)
        self.assertEqual(downgrade_expired(db, now=NOW + timedelta(days=2)), 1)
        self.assertEqual(db.get_profile("u-1").subscription_tier, "free")
        self.assertEqual(
            [event.event_type for event in db.list_events("u-1")], ["expire"]
        )


if __name__ == "__main__":
    unittest.main()
