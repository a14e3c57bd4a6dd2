"""
SQLAlchemy-backed store. Accepts any SQLAlchemy URL (Postgres in production,
SQLite for tests).
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from backend.billing_rules import (
    add_billing_interval,
    as_utc,
    is_downgrade_due,
    next_period_end,
    utcnow,
)
from backend.db import (
    AnnouncementRecord,
    NotFoundError,
    OrderRecord,
    PaymentNotification,
    PaymentOutcome,
    PlanRecord,
    ProfileRecord,
    StoreError,
    SubscriptionEventRecord,
    SubscriptionRecord,
    apply_notification,
    apply_paid_profile,
    apply_transition,
    is_duplicate_completion,
    new_id,
)
from shared.types import (
    OrderStatus,
    SubscriptionStatus,
    SubscriptionTier,
    legacy_subscription_status,
    payment_status,
    profile_subscription_status,
)

ACTIVE_OR_PAUSED = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAUSED.value)


class PostgresDbClient:
    """
    Store backed by SQLAlchemy sessions; each unit of work commits once.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """One session per unit of work; driver errors surface as `StoreError`."""
        with self.Session() as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                session.rollback()
                raise StoreError(str(exc)) from exc

    # Conversions

    def _to_profile(self, row: "ProfileRow") -> ProfileRecord:
        return ProfileRecord(
            user_id=row.user_id,
            email=row.email,
            full_name=row.full_name,
            phone=row.phone,
            role=row.role,
            subscription_tier=row.subscription_tier,
            subscription_status=row.subscription_status,
            subscription_period=row.subscription_period,
            subscription_start_date=as_utc(row.subscription_start_date),
            subscription_end_date=as_utc(row.subscription_end_date),
            preferred_language=row.preferred_language,
            receive_updates=bool(row.receive_updates),
            selected_tracks=list(row.selected_tracks or []),
            selected_primary_track=row.selected_primary_track,
            pending_payment_discount_type=row.pending_payment_discount_type,
            pending_payment_discount_value=row.pending_payment_discount_value,
        )

    def _to_plan(self, row: "PlanRow") -> PlanRecord:
        return PlanRecord(
            id=row.id,
            tier=row.tier,
            name=row.name or "",
            monthly_price=row.monthly_price or 0,
            yearly_price=row.yearly_price or 0,
            is_active=bool(row.is_active),
        )

    def _to_subscription(self, row: "SubscriptionRow") -> SubscriptionRecord:
        return SubscriptionRecord(
            id=row.id,
            user_id=row.user_id,
            plan_id=row.plan_id,
            plan=row.plan,
            subscription_status=SubscriptionStatus(row.subscription_status),
            billing_period=row.billing_period,
            current_period_start=as_utc(row.current_period_start),
            current_period_end=as_utc(row.current_period_end),
            auto_renew=bool(row.auto_renew),
            recurring_id=row.recurring_id,
            payment_provider=row.payment_provider,
            payment_id=row.payment_id,
            usage_quota_used=row.usage_quota_used or 0,
            usage_quota_total=row.usage_quota_total or 0,
            paused_at=as_utc(row.paused_at),
            canceled_at=as_utc(row.canceled_at),
            expired_at=as_utc(row.expired_at),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def _to_order(self, row: "OrderRow") -> OrderRecord:
        return OrderRecord(
            id=row.id,
            user_id=row.user_id,
            plan_id=row.plan_id,
            subscription_tier=row.subscription_tier,
            billing_period=row.billing_period,
            order_reference=row.order_reference,
            amount=row.amount,
            order_status=OrderStatus(row.order_status),
            uniq_id=row.uniq_id,
            takbull_order_number=row.takbull_order_number,
            transaction_internal_number=row.transaction_internal_number,
            status_code=row.status_code,
            token=row.token,
            last_4_digits=row.last_4_digits,
            number_payments=row.number_payments,
            token_expiration_month=row.token_expiration_month,
            token_expiration_year=row.token_expiration_year,
            gateway_response=dict(row.gateway_response or {}),
            error_message=row.error_message,
            subscription_id=row.subscription_id,
            next_payment_date=as_utc(row.next_payment_date),
            completed_at=as_utc(row.completed_at),
            is_recurring=bool(row.is_recurring),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    # Profiles and plans

    def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        with self._session() as session:
            row = session.get(ProfileRow, user_id)
            return self._to_profile(row) if row else None

    def save_profile(self, profile: ProfileRecord) -> None:
        with self._session() as session:
            row = session.get(ProfileRow, profile.user_id) or ProfileRow(
                user_id=profile.user_id
            )
            for name in profile.__dataclass_fields__:
                setattr(row, name, getattr(profile, name))
            session.add(row)
            session.commit()

    def list_profiles(
        self,
        *,
        only_receiving_updates: bool = True,
        tiers: Optional[list[str]] = None,
        require_email: bool = False,
    ) -> list[ProfileRecord]:
        with self._session() as session:
            stmt = _profile_query(only_receiving_updates, tiers, require_email)
            return [self._to_profile(row) for row in session.execute(stmt).scalars()]

    def get_plan(self, plan_id: str) -> Optional[PlanRecord]:
        with self._session() as session:
            row = session.get(PlanRow, plan_id)
            return self._to_plan(row) if row else None

    def find_active_plan(self, tier: str) -> Optional[PlanRecord]:
        with self._session() as session:
            stmt = (
                select(PlanRow)
                .where(PlanRow.tier == tier, PlanRow.is_active.is_(True))
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_plan(row) if row else None

    def save_plan(self, plan: PlanRecord) -> None:
        with self._session() as session:
            session.merge(
                PlanRow(
                    id=plan.id,
                    tier=plan.tier,
                    name=plan.name,
                    monthly_price=plan.monthly_price,
                    yearly_price=plan.yearly_price,
                    is_active=plan.is_active,
                )
            )
            session.commit()

    # Orders

    def create_order(self, order: OrderRecord) -> OrderRecord:
        with self._session() as session:
            row = OrderRow(
                id=order.id,
                user_id=order.user_id,
                plan_id=order.plan_id,
                subscription_tier=order.subscription_tier,
                billing_period=order.billing_period,
                order_reference=order.order_reference,
                amount=order.amount,
                is_recurring=order.is_recurring,
                gateway_response=order.gateway_response,
                created_at=order.created_at,
                updated_at=order.updated_at,
            )
            _set_order_status(row, order.order_status)
            session.add(row)
            session.commit()
            return self._to_order(row)

    def get_order(self, order_id: str) -> Optional[OrderRecord]:
        with self._session() as session:
            row = session.get(OrderRow, order_id)
            return self._to_order(row) if row else None

    def find_order(
        self,
        *,
        takbull_order_number: Optional[str] = None,
        order_reference: Optional[str] = None,
        transaction_internal_number: Optional[str] = None,
        uniq_id: Optional[str] = None,
    ) -> Optional[OrderRecord]:
        with self._session() as session:
            for column, value in (
                (OrderRow.takbull_order_number, takbull_order_number),
                (OrderRow.order_reference, order_reference),
                (OrderRow.transaction_internal_number, transaction_internal_number),
                (OrderRow.uniq_id, uniq_id),
            ):
                if not value:
                    continue
                stmt = (
                    select(OrderRow)
                    .where(column == value)
                    .order_by(OrderRow.created_at.desc())
                    .limit(1)
                )
                row = session.execute(stmt).scalar_one_or_none()
                if row:
                    return self._to_order(row)
        return None

    def find_recent_pending_order(self, since: datetime) -> Optional[OrderRecord]:
        with self._session() as session:
            stmt = (
                select(OrderRow)
                .where(
                    OrderRow.order_status == OrderStatus.PENDING.value,
                    OrderRow.created_at >= since,
                )
                .order_by(OrderRow.created_at.desc())
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_order(row) if row else None

    def mark_order_processing(
        self, order_id: str, uniq_id: Optional[str], gateway_response: dict
    ) -> None:
        with self._session() as session:
            row = _require(session, OrderRow, order_id)
            _set_order_status(row, OrderStatus.PROCESSING)
            row.uniq_id = uniq_id
            row.gateway_response = dict(gateway_response)
            row.updated_at = utcnow()
            session.commit()

    def mark_order_failed(
        self,
        order_id: str,
        error_message: str,
        gateway_response: Optional[dict] = None,
    ) -> None:
        with self._session() as session:
            row = _require(session, OrderRow, order_id)
            _set_order_status(row, OrderStatus.FAILED)
            row.error_message = error_message
            if gateway_response is not None:
                row.gateway_response = dict(gateway_response)
            row.updated_at = utcnow()
            session.commit()

    def record_order_notification(
        self, order_id: str, notification: PaymentNotification
    ) -> OrderRecord:
        with self._session() as session:
            row = _require(session, OrderRow, order_id, lock=True)
            apply_notification(row, notification)
            row.updated_at = utcnow()
            session.commit()
            return self._to_order(row)

    def latest_order_uniq_id(self, subscription_id: str) -> Optional[str]:
        with self._session() as session:
            stmt = (
                select(OrderRow.uniq_id)
                .where(
                    OrderRow.subscription_id == subscription_id,
                    OrderRow.uniq_id.is_not(None),
                )
                .order_by(OrderRow.created_at.desc())
                .limit(1)
            )
            return session.execute(stmt).scalar_one_or_none()

    # Subscriptions

    def save_subscription(self, subscription: SubscriptionRecord) -> None:
        with self._session() as session:
            row = session.get(SubscriptionRow, subscription.id) or SubscriptionRow(
                id=subscription.id
            )
            for name in subscription.__dataclass_fields__:
                if name != "subscription_status":
                    setattr(row, name, getattr(subscription, name))
            _set_subscription_status(row, subscription.subscription_status)
            session.add(row)
            session.commit()

    def get_subscription(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        with self._session() as session:
            row = session.get(SubscriptionRow, subscription_id)
            return self._to_subscription(row) if row else None

    def latest_subscription(
        self,
        user_id: str,
        statuses: Optional[Iterable[SubscriptionStatus]] = None,
    ) -> Optional[SubscriptionRecord]:
        with self._session() as session:
            stmt = select(SubscriptionRow).where(SubscriptionRow.user_id == user_id)
            if statuses is not None:
                stmt = stmt.where(
                    SubscriptionRow.subscription_status.in_(
                        [status.value for status in statuses]
                    )
                )
            stmt = stmt.order_by(SubscriptionRow.created_at.desc()).limit(1)
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_subscription(row) if row else None

    def list_downgrade_candidates(self) -> list[SubscriptionRecord]:
        with self._session() as session:
            stmt = select(SubscriptionRow).where(
                SubscriptionRow.plan != SubscriptionTier.FREE.value,
                SubscriptionRow.subscription_status.in_(ACTIVE_OR_PAUSED),
            )
            return [
                self._to_subscription(row) for row in session.execute(stmt).scalars()
            ]

    def list_events(self, user_id: str) -> list[SubscriptionEventRecord]:
        with self._session() as session:
            stmt = (
                select(SubscriptionEventRow)
                .where(SubscriptionEventRow.user_id == user_id)
                .order_by(SubscriptionEventRow.created_at.asc())
            )
            return [
                SubscriptionEventRecord(
                    id=row.id,
                    user_id=row.user_id,
                    event_type=row.event_type,
                    meta=dict(row.meta or {}),
                    created_at=as_utc(row.created_at),
                )
                for row in session.execute(stmt).scalars()
            ]

    # Units of work

    def complete_payment(
        self,
        order_id: str,
        notification: PaymentNotification,
        now: Optional[datetime] = None,
    ) -> PaymentOutcome:
        now = now or utcnow()
        with self._session() as session:
            order = _require(session, OrderRow, order_id, lock=True)
            profile = session.get(ProfileRow, order.user_id)
            old_tier = (
                profile.subscription_tier if profile else SubscriptionTier.FREE.value
            )
            if is_duplicate_completion(order, notification):
                subscription = (
                    session.get(SubscriptionRow, order.subscription_id)
                    if order.subscription_id
                    else None
                )
                return PaymentOutcome(
                    order=self._to_order(order),
                    subscription=(
                        self._to_subscription(subscription) if subscription else None
                    ),
                    old_tier=old_tier,
                    new_tier=old_tier,
                    duplicate=True,
                )

            plan = session.get(PlanRow, order.plan_id) if order.plan_id else None
            tier = plan.tier if plan else order.subscription_tier

            subscription = self._subscription_for_order(session, order)
            if subscription is None:
                subscription = SubscriptionRow(
                    id=new_id(),
                    user_id=order.user_id,
                    plan_id=order.plan_id,
                    plan=tier,
                    current_period_start=now,
                    usage_quota_used=0,
                    usage_quota_total=0,
                    created_at=now,
                )
                _set_subscription_status(subscription, SubscriptionStatus.INACTIVE)
                session.add(subscription)
            was_active = (
                subscription.subscription_status == SubscriptionStatus.ACTIVE.value
            )
            period_end = next_period_end(
                subscription.current_period_end if was_active else None,
                now,
                order.billing_period,
            )
            if not was_active:
                subscription.current_period_start = now
            subscription.plan = tier
            subscription.plan_id = order.plan_id
            _set_subscription_status(subscription, SubscriptionStatus.ACTIVE)
            subscription.billing_period = order.billing_period
            subscription.current_period_end = period_end
            subscription.auto_renew = True
            subscription.paused_at = None
            subscription.canceled_at = None
            subscription.expired_at = None
            subscription.payment_provider = "takbull"
            subscription.payment_id = (
                notification.transaction_id or subscription.payment_id
            )
            subscription.recurring_id = (
                notification.recurring_id or subscription.recurring_id
            )
            subscription.updated_at = now

            apply_notification(order, notification)
            _set_order_status(order, OrderStatus.COMPLETED)
            order.error_message = None
            order.completed_at = now
            order.subscription_id = subscription.id
            order.next_payment_date = add_billing_interval(now, order.billing_period)
            order.updated_at = now

            if profile is None:
                profile = ProfileRow(
                    user_id=order.user_id,
                    role="user",
                    receive_updates=False,
                    selected_tracks=[],
                )
                session.add(profile)
            apply_paid_profile(
                profile,
                tier=tier,
                billing_period=order.billing_period,
                period_start=subscription.current_period_start or now,
                period_end=period_end,
            )
            session.add(
                SubscriptionEventRow(
                    id=new_id(),
                    user_id=order.user_id,
                    event_type="payment",
                    meta={"order_id": order.id, "subscription_id": subscription.id},
                    created_at=now,
                )
            )
            session.commit()
            return PaymentOutcome(
                order=self._to_order(order),
                subscription=self._to_subscription(subscription),
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
        with self._session() as session:
            order = _require(session, OrderRow, order_id, lock=True)
            apply_notification(order, notification)
            order.updated_at = now
            if order.order_status == OrderStatus.COMPLETED.value:
                session.commit()
                return self._to_order(order)
            _set_order_status(order, OrderStatus.FAILED)
            order.error_message = (
                f"Payment failed with status code: {notification.status_code}"
            )
            if order.subscription_id:
                subscription = session.get(SubscriptionRow, order.subscription_id)
                if subscription:
                    _set_subscription_status(subscription, SubscriptionStatus.INACTIVE)
                    subscription.updated_at = now
                    profile = session.get(ProfileRow, order.user_id)
                    if profile:
                        profile.subscription_status = profile_subscription_status(
                            SubscriptionStatus.INACTIVE
                        )
            session.commit()
            return self._to_order(order)

    def transition_subscription(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
        event_type: str,
        now: Optional[datetime] = None,
    ) -> SubscriptionRecord:
        now = now or utcnow()
        with self._session() as session:
            subscription = _require(session, SubscriptionRow, subscription_id, lock=True)
            apply_transition(subscription, status, now)
            _set_subscription_status(subscription, status)
            profile = session.get(ProfileRow, subscription.user_id)
            if profile:
                profile.subscription_status = profile_subscription_status(status)
            session.add(
                SubscriptionEventRow(
                    id=new_id(),
                    user_id=subscription.user_id,
                    event_type=event_type,
                    meta={"subscription_id": subscription.id},
                    created_at=now,
                )
            )
            session.commit()
            return self._to_subscription(subscription)

    def expire_subscription(
        self, subscription_id: str, now: Optional[datetime] = None
    ) -> bool:
        now = now or utcnow()
        with self._session() as session:
            subscription = session.execute(
                select(SubscriptionRow)
                .where(SubscriptionRow.id == subscription_id)
                .with_for_update()
            ).scalar_one_or_none()
            if (
                subscription is None
                or subscription.subscription_status not in ACTIVE_OR_PAUSED
                or not is_downgrade_due(
                    subscription.current_period_end,
                    subscription.usage_quota_used,
                    subscription.usage_quota_total,
                    now,
                )
            ):
                return False
            subscription.plan = SubscriptionTier.FREE.value
            _set_subscription_status(subscription, SubscriptionStatus.EXPIRED)
            subscription.auto_renew = False
            subscription.expired_at = now
            subscription.updated_at = now
            profile = session.get(ProfileRow, subscription.user_id)
            if profile:
                profile.subscription_tier = SubscriptionTier.FREE.value
                profile.subscription_status = profile_subscription_status(
                    SubscriptionStatus.EXPIRED
                )
            session.add(
                SubscriptionEventRow(
                    id=new_id(),
                    user_id=subscription.user_id,
                    event_type="expire",
                    meta={"subscription_id": subscription.id},
                    created_at=now,
                )
            )
            session.commit()
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
        tiers = list(target_tier or [])
        with self._session() as session:
            row = AnnouncementRow(
                id=new_id(),
                title=title,
                message=message,
                created_by=created_by,
                target_all=target_all,
                target_tier=tiers,
                created_at=now,
            )
            session.add(row)
            stmt = _profile_query(
                not include_all_target_users, None if target_all else tiers, False
            )
            recipients = list(session.execute(stmt).scalars())
            for profile in recipients:
                session.add(
                    UserAnnouncementRow(
                        id=new_id(),
                        announcement_id=row.id,
                        user_id=profile.user_id,
                        is_read=False,
                        created_at=now,
                    )
                )
            row.sent_at = now
            session.commit()
            record = AnnouncementRecord(
                id=row.id,
                title=row.title,
                message=row.message,
                created_by=row.created_by,
                target_all=row.target_all,
                target_tier=list(row.target_tier or []),
                sent_at=as_utc(row.sent_at),
                created_at=as_utc(row.created_at),
            )
            return record, len(recipients)

    # Admin deletes

    def delete_user_data(self, user_id: str) -> None:
        with self._session() as session:
            for model in (
                OrderRow,
                SubscriptionRow,
                SubscriptionEventRow,
                UsageRow,
                AnalysisRow,
                VideoRow,
            ):
                session.execute(delete(model).where(model.user_id == user_id))
            session.execute(delete(TraineeRow).where(TraineeRow.coach_id == user_id))
            session.execute(
                delete(CouponRedemptionRow).where(CouponRedemptionRow.user_id == user_id)
            )
            session.execute(delete(TrialRow).where(TrialRow.user_id == user_id))
            session.execute(
                delete(UserAnnouncementRow).where(UserAnnouncementRow.user_id == user_id)
            )
            owned_announcements = select(AnnouncementRow.id).where(
                AnnouncementRow.created_by == user_id
            )
            session.execute(
                delete(UserAnnouncementRow).where(
                    UserAnnouncementRow.announcement_id.in_(owned_announcements)
                )
            )
            session.execute(
                delete(AnnouncementRow).where(AnnouncementRow.created_by == user_id)
            )
            owned_coupons = select(CouponRow.id).where(CouponRow.created_by == user_id)
            session.execute(
                delete(CouponRedemptionRow).where(
                    CouponRedemptionRow.coupon_id.in_(owned_coupons)
                )
            )
            session.execute(delete(CouponRow).where(CouponRow.created_by == user_id))
            session.execute(delete(ProfileRow).where(ProfileRow.user_id == user_id))
            session.commit()

    def delete_coupons(self, coupon_ids: list[str]) -> int:
        with self._session() as session:
            session.execute(
                delete(CouponRedemptionRow).where(
                    CouponRedemptionRow.coupon_id.in_(coupon_ids)
                )
            )
            result = session.execute(delete(CouponRow).where(CouponRow.id.in_(coupon_ids)))
            session.commit()
            return result.rowcount or 0

    def delete_trials(self, trial_ids: list[str]) -> int:
        with self._session() as session:
            result = session.execute(delete(TrialRow).where(TrialRow.id.in_(trial_ids)))
            session.commit()
            return result.rowcount or 0

    def delete_all_trials(self) -> int:
        with self._session() as session:
            result = session.execute(delete(TrialRow))
            session.commit()
            return result.rowcount or 0

    def delete_all_redemptions(self) -> int:
        with self._session() as session:
            result = session.execute(delete(CouponRedemptionRow))
            session.commit()
            return result.rowcount or 0

    def count_rows(self, model: type) -> int:
        with self._session() as session:
            return session.execute(select(func.count()).select_from(model)).scalar_one()

    def _subscription_for_order(
        self, session: Session, order: "OrderRow"
    ) -> Optional["SubscriptionRow"]:
        if order.subscription_id:
            row = session.get(SubscriptionRow, order.subscription_id)
            if row:
                return row
        stmt = (
            select(SubscriptionRow)
            .where(
                SubscriptionRow.user_id == order.user_id,
                SubscriptionRow.plan_id == order.plan_id,
            )
            .order_by(SubscriptionRow.created_at.desc())
            .limit(1)
            .with_for_update()
        )
        return session.execute(stmt).scalar_one_or_none()


def _require(session: Session, model: type, key: str, *, lock: bool = False):
    if lock:
        stmt = select(model).where(model.id == key).with_for_update()
        row = session.execute(stmt).scalar_one_or_none()
    else:
        row = session.get(model, key)
    if row is None:
        raise NotFoundError(f"{model.__tablename__} {key} not found")
    return row


def _set_subscription_status(row: "SubscriptionRow", status: SubscriptionStatus) -> None:
    row.subscription_status = status.value
    row.status = legacy_subscription_status(status)


def _set_order_status(row: "OrderRow", status: OrderStatus) -> None:
    row.order_status = status.value
    row.payment_status = payment_status(status)


def _profile_query(
    only_receiving_updates: bool,
    tiers: Optional[list[str]],
    require_email: bool,
):
    stmt = select(ProfileRow)
    if only_receiving_updates:
        stmt = stmt.where(ProfileRow.receive_updates.is_(True))
    if tiers:
        stmt = stmt.where(ProfileRow.subscription_tier.in_(tiers))
    if require_email:
        stmt = stmt.where(ProfileRow.email.is_not(None), ProfileRow.email != "")
    return stmt


Base = declarative_base()


class ProfileRow(Base):
    __tablename__ = "profiles"

    user_id = Column(String, primary_key=True)
    email = Column(String, nullable=True, index=True)
    full_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    role = Column(String, nullable=False, default="user")
    subscription_tier = Column(String, nullable=False, default="free")
    subscription_status = Column(String, nullable=False, default="inactive")
    subscription_period = Column(String, nullable=True)
    subscription_start_date = Column(DateTime(timezone=True), nullable=True)
    subscription_end_date = Column(DateTime(timezone=True), nullable=True)
    preferred_language = Column(String, nullable=True)
    receive_updates = Column(Boolean, nullable=False, default=False)
    selected_tracks = Column(JSON, nullable=True)
    selected_primary_track = Column(String, nullable=True)
    pending_payment_discount_type = Column(String, nullable=True)
    pending_payment_discount_value = Column(Float, nullable=True)


class PlanRow(Base):
    __tablename__ = "plans"

    id = Column(String, primary_key=True)
    tier = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)
    monthly_price = Column(Float, nullable=True)
    yearly_price = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class SubscriptionRow(Base):
    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    plan_id = Column(String, nullable=True)
    plan = Column(String, nullable=False, default="free")
    subscription_status = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False)
    billing_period = Column(String, nullable=True)
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    auto_renew = Column(Boolean, nullable=False, default=True)
    recurring_id = Column(String, nullable=True)
    payment_provider = Column(String, nullable=True)
    payment_id = Column(String, nullable=True)
    usage_quota_used = Column(Integer, nullable=False, default=0)
    usage_quota_total = Column(Integer, nullable=False, default=0)
    paused_at = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class OrderRow(Base):
    __tablename__ = "takbull_orders"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    plan_id = Column(String, nullable=True)
    subscription_tier = Column(String, nullable=False)
    billing_period = Column(String, nullable=False)
    order_reference = Column(String, nullable=False, unique=True)
    amount = Column(Float, nullable=False)
    order_status = Column(String, nullable=False, index=True)
    payment_status = Column(String, nullable=False)
    uniq_id = Column(String, nullable=True, index=True)
    takbull_order_number = Column(String, nullable=True, index=True)
    transaction_internal_number = Column(String, nullable=True, index=True)
    status_code = Column(Integer, nullable=True)
    token = Column(String, nullable=True)
    last_4_digits = Column(String, nullable=True)
    number_payments = Column(Integer, nullable=True)
    token_expiration_month = Column(String, nullable=True)
    token_expiration_year = Column(String, nullable=True)
    gateway_response = Column("takbull_response", JSON, nullable=True)
    error_message = Column(String, nullable=True)
    subscription_id = Column(String, nullable=True, index=True)
    next_payment_date = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class SubscriptionEventRow(Base):
    __tablename__ = "subscription_events"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=False)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class AnnouncementRow(Base):
    __tablename__ = "announcements"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    created_by = Column(String, nullable=True, index=True)
    target_all = Column(Boolean, nullable=False, default=True)
    target_tier = Column(JSON, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class UserAnnouncementRow(Base):
    __tablename__ = "user_announcements"

    id = Column(String, primary_key=True)
    announcement_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class CouponRow(Base):
    __tablename__ = "coupons"

    id = Column(String, primary_key=True)
    code = Column(String, nullable=False)
    created_by = Column(String, nullable=True, index=True)


class CouponRedemptionRow(Base):
    __tablename__ = "coupon_redemptions"

    id = Column(String, primary_key=True)
    coupon_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)


class TrialRow(Base):
    __tablename__ = "user_trials"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)


class UsageRow(Base):
    __tablename__ = "usage"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)


class AnalysisRow(Base):
    __tablename__ = "analyses"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)


class VideoRow(Base):
    __tablename__ = "videos"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)


class TraineeRow(Base):
    __tablename__ = "trainees"

    id = Column(String, primary_key=True)
    coach_id = Column(String, nullable=False, index=True)
