"""
Pure billing rules shared by the store implementations and the HTTP flows.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timezone
from typing import Optional, Sequence

from shared.constants import ALL_TRACK_TIERS, ALL_TRACKS, DEFAULT_PRIMARY_TRACK
from shared.types import BillingPeriod


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_billing_interval(value: datetime, billing_period: str) -> datetime:
    """One billing interval: a month for monthly plans, a year otherwise."""
    if billing_period == BillingPeriod.MONTHLY.value:
        return add_months(value, 1)
    return add_months(value, 12)


def next_period_end(
    current_end: Optional[datetime], now: datetime, billing_period: str
) -> datetime:
    """Advance from the later of the current period end and now."""
    base = now
    current_end = as_utc(current_end)
    if current_end and current_end > now:
        base = current_end
    return add_billing_interval(base, billing_period)


def apply_discount(
    amount: float,
    discount_type: Optional[str],
    discount_value: Optional[float],
) -> float:
    if not discount_type or discount_value is None:
        return amount
    value = float(discount_value)
    if discount_type == "percentage":
        pct = min(100.0, max(0.0, value))
        amount = round(amount * (1 - pct / 100))
    elif discount_type == "fixed_amount":
        amount = round(amount - min(amount, max(0.0, value)))
    return max(0, amount)


def tracks_for_tier(
    tier: str,
    existing_tracks: Sequence[str] | None,
    existing_primary: Optional[str],
) -> tuple[list[str], Optional[str]]:
    """
    Return (selected_tracks, selected_primary_track) for a newly paid tier.

    Pro and coach tiers unlock every track. Creator keeps what the user
    already picked. An empty list means "leave the profile as is".
    """
    existing_tracks = list(existing_tracks or [])
    if tier in ALL_TRACK_TIERS:
        return list(ALL_TRACKS), existing_primary or DEFAULT_PRIMARY_TRACK
    if tier == "creator":
        if existing_tracks:
            return existing_tracks, existing_primary or existing_tracks[0]
        if existing_primary:
            return [existing_primary], existing_primary
    return [], None


def is_downgrade_due(
    period_end: Optional[datetime],
    usage_quota_used: Optional[int],
    usage_quota_total: Optional[int],
    now: datetime,
) -> bool:
    period_end = as_utc(period_end)
    if period_end is not None and period_end <= now:
        return True
    total = usage_quota_total or 0
    return total > 0 and (usage_quota_used or 0) >= total
