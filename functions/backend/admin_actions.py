"""
Admin maintenance actions.

`POST /api/admin` carries `{"action": <tag>, ...}`. The tag picks one of a
closed set of typed actions; each action is applied by a plain function so
it can be exercised without HTTP.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Callable, ClassVar, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from backend.db import DbClient, StoreError
from backend.errors import ApiError
from backend.identity import IdentityClient, IdentityProviderError

logger = logging.getLogger(__name__)

UNKNOWN_ACTION = "Unknown or missing action"


class _Action(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Message returned when the action's own fields fail validation.
    invalid_message: ClassVar[str] = "Invalid request body"


class DeleteUser(_Action):
    action: Literal["delete-user"]
    user_id: str = Field(alias="userId", min_length=1)
    invalid_message: ClassVar[str] = "Missing userId in request body"


class DeleteUserByEmail(_Action):
    action: Literal["delete-user-by-email"]
    email: str = Field(min_length=1)
    invalid_message: ClassVar[str] = "Missing email in request body"


class DeleteCoupon(_Action):
    action: Literal["delete-coupon"]
    coupon_id: str = Field(alias="couponId", min_length=1)
    invalid_message: ClassVar[str] = "Missing couponId in request body"


class DeleteCouponsBatch(_Action):
    action: Literal["delete-coupons-batch"]
    coupon_ids: List[str] = Field(alias="couponIds", min_length=1)
    invalid_message: ClassVar[str] = "Missing or empty couponIds array"


class DeleteTrialsBatch(_Action):
    action: Literal["delete-trials-batch"]
    trial_ids: List[str] = Field(alias="trialIds", min_length=1)
    invalid_message: ClassVar[str] = "Missing or empty trialIds array"


class DeleteAllTrials(_Action):
    action: Literal["delete-all-trials"]


class DeleteAllRedemptions(_Action):
    action: Literal["delete-all-redemptions"]


AdminAction = Annotated[
    Union[
        DeleteUser,
        DeleteUserByEmail,
        DeleteCoupon,
        DeleteCouponsBatch,
        DeleteTrialsBatch,
        DeleteAllTrials,
        DeleteAllRedemptions,
    ],
    Field(discriminator="action"),
]

_ADAPTER = TypeAdapter(AdminAction)
_VARIANTS = {
    "delete-user": DeleteUser,
    "delete-user-by-email": DeleteUserByEmail,
    "delete-coupon": DeleteCoupon,
    "delete-coupons-batch": DeleteCouponsBatch,
    "delete-trials-batch": DeleteTrialsBatch,
    "delete-all-trials": DeleteAllTrials,
    "delete-all-redemptions": DeleteAllRedemptions,
}


def parse_action(body: Any):
    """Validate a request body into one admin action, or raise a 400 ApiError."""
    tag = body.get("action") if isinstance(body, dict) else None
    variant = _VARIANTS.get(tag) if isinstance(tag, str) else None
    if variant is None:
        raise ApiError(400, UNKNOWN_ACTION)
    try:
        return _ADAPTER.validate_python(body)
    except ValidationError as exc:
        logger.info("Rejected %s action: %s", tag, exc.errors())
        raise ApiError(400, variant.invalid_message) from exc


def _delete_account(db: DbClient, identity: IdentityClient, user_id: str) -> None:
    db.delete_user_data(user_id)
    try:
        identity.delete_user(user_id)
    except IdentityProviderError as exc:
        logger.exception("Identity delete failed for user %s", user_id)
        raise ApiError(500, f"Failed to delete user: {exc}") from exc
    logger.info("Deleted user %s", user_id)


def delete_user(action: DeleteUser, db: DbClient, identity: IdentityClient) -> str:
    _delete_account(db, identity, action.user_id)
    return "User deleted successfully"


def delete_user_by_email(
    action: DeleteUserByEmail, db: DbClient, identity: IdentityClient
) -> str:
    try:
        user = identity.find_user_by_email(action.email)
    except IdentityProviderError as exc:
        logger.exception("User lookup by email failed")
        raise ApiError(500, f"Failed to look up user: {exc}") from exc
    if user is None:
        raise ApiError(404, "User not found with this email")
    _delete_account(db, identity, user.id)
    return "User deleted successfully"


def delete_coupon(action: DeleteCoupon, db: DbClient, identity: IdentityClient) -> str:
    db.delete_coupons([action.coupon_id])
    return "Coupon deleted"


def delete_coupons_batch(
    action: DeleteCouponsBatch, db: DbClient, identity: IdentityClient
) -> str:
    deleted = db.delete_coupons(action.coupon_ids)
    return f"Deleted {deleted} coupons"


def delete_trials_batch(
    action: DeleteTrialsBatch, db: DbClient, identity: IdentityClient
) -> str:
    deleted = db.delete_trials(action.trial_ids)
    return f"Deleted {deleted} trials"


def delete_all_trials(
    action: DeleteAllTrials, db: DbClient, identity: IdentityClient
) -> str:
    db.delete_all_trials()
    return "All trials deleted"


def delete_all_redemptions(
    action: DeleteAllRedemptions, db: DbClient, identity: IdentityClient
) -> str:
    db.delete_all_redemptions()
    return "All redemptions deleted"


_HANDLERS: dict[type, Callable[..., str]] = {
    DeleteUser: delete_user,
    DeleteUserByEmail: delete_user_by_email,
    DeleteCoupon: delete_coupon,
    DeleteCouponsBatch: delete_coupons_batch,
    DeleteTrialsBatch: delete_trials_batch,
    DeleteAllTrials: delete_all_trials,
    DeleteAllRedemptions: delete_all_redemptions,
}


def run_action(action, db: DbClient, identity: Optional[IdentityClient]) -> str:
    """Apply a parsed action and return the success message."""
    if identity is None:
        raise ApiError(500, "Server configuration error")
    handler = _HANDLERS[type(action)]
    try:
        return handler(action, db, identity)
    except StoreError as exc:
        logger.exception("Admin action %s failed", action.action)
        raise ApiError(500, f"Failed to apply {action.action}: {exc}") from exc
