"""
Pydantic schemas for the Viraly backend API.

Request fields keep the camelCase names the web client sends; handlers that
must report missing fields in a particular order declare them Optional and
check presence themselves.
"""

from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class OkResponse(BaseModel):
    ok: Literal[True] = True
    message: Optional[str] = None


class ContactRequest(CamelModel):
    full_name: Optional[str] = Field(default=None, alias="fullName")
    email: Optional[str] = None
    phone: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None
    honeypot: Optional[str] = None
    source_url: Optional[str] = Field(default=None, alias="sourceUrl")
    lang: Optional[str] = None


class SendAuthEmailRequest(CamelModel):
    email: Optional[str] = None
    type: Optional[str] = None
    lang: Optional[str] = None
    action_link: Optional[str] = Field(default=None, alias="actionLink")
    redirect_to: Optional[str] = Field(default=None, alias="redirectTo")


class AuthHookUser(CamelModel):
    email: Optional[str] = None
    user_metadata: dict = Field(default_factory=dict)


class AuthHookEmailData(CamelModel):
    token_hash: Optional[str] = None
    redirect_to: Optional[str] = None
    email_action_type: Optional[str] = None


class AuthEmailHookRequest(CamelModel):
    user: Optional[AuthHookUser] = None
    email_data: Optional[AuthHookEmailData] = None


class AnalyzeRequest(CamelModel):
    system_instruction: Optional[str] = Field(default=None, alias="systemInstruction")
    parts: Optional[List[dict]] = None


class BroadcastEmailRequest(CamelModel):
    title: Optional[str] = None
    message: Optional[str] = None
    target_all: bool = Field(default=True, alias="targetAll")
    target_tier: List[str] = Field(default_factory=list, alias="targetTier")


class AnnouncementRequest(CamelModel):
    title: Any = None
    message: Optional[str] = ""
    target_all: bool = True
    target_tier: List[str] = Field(default_factory=list)
    include_all_target_users: bool = Field(default=False, alias="includeAllTargetUsers")


class AnnouncementResponse(BaseModel):
    ok: Literal[True] = True
    sent: int


class BroadcastEmailResponse(BaseModel):
    ok: Literal[True] = True
    sent: int
    skipped: Optional[str] = None


class InitOrderRequest(CamelModel):
    user_id: Optional[str] = Field(default=None, alias="userId")
    subscription_tier: Optional[str] = Field(default=None, alias="subscriptionTier")
    billing_period: Optional[Literal["monthly", "yearly"]] = Field(
        default=None, alias="billingPeriod"
    )
    plan_id: Optional[str] = Field(default=None, alias="planId")
    preferred_language: Optional[str] = Field(default=None, alias="preferredLanguage")


class InitOrderResponse(BaseModel):
    ok: Literal[True] = True
    order_id: str = Field(serialization_alias="orderId")
    order_reference: str = Field(serialization_alias="orderReference")
    payment_url: str = Field(serialization_alias="paymentUrl")
    uniq_id: Optional[str] = Field(default=None, serialization_alias="uniqId")


class SubscriptionStatusResponse(BaseModel):
    ok: Literal[True] = True
    subscription_status: str
    auto_renew: bool
    current_period_end: Optional[str] = None
    plan: Optional[str] = None


class DowngradeRequest(CamelModel):
    secret: Optional[str] = None


class DowngradeResponse(BaseModel):
    ok: Literal[True] = True
    downgraded: int


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
