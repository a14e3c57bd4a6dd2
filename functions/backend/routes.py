"""
HTTP routes for the Viraly backend API.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional
from urllib.parse import parse_qsl

from fastapi import APIRouter, Body, Depends, Header, Query, Request
from fastapi.concurrency import run_in_threadpool

from backend.admin_actions import parse_action, run_action
from backend.auth import bearer_token, require_admin, require_subscriber, require_user
from backend.billing import BillingService, check_cron_secret, downgrade_expired
from backend.config import Settings, get_settings
from backend.db import DbClient, StoreError
from backend.dependencies import (
    get_billing_service,
    get_contact_rate_limiter,
    get_db_client,
    get_email_client,
    get_identity_client,
)
from backend.errors import ApiError
from backend.gateway import SIGNATURE_HEADER, verify_notification
from backend.identity import IdentityClient, IdentityUser
from backend.mailer import EmailClient
from backend.notifications import (
    broadcast_email,
    send_auth_email,
    send_auth_hook_email,
    send_contact_message,
)
from backend.rate_limit import RateLimiter
from backend.schemas import (
    AnalyzeRequest,
    AnnouncementRequest,
    AnnouncementResponse,
    AuthEmailHookRequest,
    BroadcastEmailRequest,
    BroadcastEmailResponse,
    ContactRequest,
    DowngradeRequest,
    DowngradeResponse,
    HealthResponse,
    InitOrderRequest,
    InitOrderResponse,
    OkResponse,
    SendAuthEmailRequest,
    SubscriptionStatusResponse,
)
from models import gemini

logger = logging.getLogger(__name__)

router = APIRouter()


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or "unknown"
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse()


# Admin


@router.post("/admin", response_model=OkResponse)
def admin_action(
    body: Any = Body(default=None),
    admin: IdentityUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    identity: Optional[IdentityClient] = Depends(get_identity_client),
):
    action = parse_action(body)
    logger.info("Admin %s running %s", admin.id, action.action)
    return OkResponse(message=run_action(action, db, identity))


@router.post("/admin/announcements", response_model=AnnouncementResponse)
def send_announcement(
    payload: AnnouncementRequest,
    admin: IdentityUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if not isinstance(payload.title, str) or not payload.title.strip():
        raise ApiError(400, "Missing or invalid title")
    announcement, sent = db.create_announcement(
        title=payload.title.strip(),
        message=(payload.message or "").strip(),
        created_by=admin.id,
        target_all=payload.target_all,
        target_tier=payload.target_tier,
        include_all_target_users=payload.include_all_target_users,
    )
    logger.info("Announcement %s delivered to %d users", announcement.id, sent)
    return AnnouncementResponse(sent=sent)


@router.post(
    "/admin/broadcast-email",
    response_model=BroadcastEmailResponse,
    response_model_exclude_none=True,
)
def send_broadcast_email(
    payload: BroadcastEmailRequest,
    admin: IdentityUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    mailer: Optional[EmailClient] = Depends(get_email_client),
    settings: Settings = Depends(get_settings),
):
    return broadcast_email(payload, db=db, settings=settings, mailer=mailer)


# Analysis


@router.post("/analyze")
def analyze(payload: AnalyzeRequest, settings: Settings = Depends(get_settings)):
    """Proxy a prompt to Gemini and return the parsed JSON as the body."""
    if not payload.system_instruction or not payload.parts:
        raise ApiError(400, "Missing systemInstruction or parts")
    if not settings.gemini_api_key:
        logger.error("GEMINI_API_KEY is not configured")
        raise ApiError(500, "API key not configured. Set GEMINI_API_KEY")
    try:
        return gemini.call_analysis(
            payload.system_instruction,
            payload.parts,
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
        )
    except gemini.AnalysisError as exc:
        status = 403 if exc.code == 403 else 500
        raise ApiError(status, str(exc), code=exc.code) from exc
    except gemini.GeminiInvalidResponseException as exc:
        raise ApiError(500, f"Invalid JSON from model: {exc}", code=None) from exc


# Email


@router.post("/contact", response_model=OkResponse, response_model_exclude_none=True)
def contact(
    payload: ContactRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
    mailer: Optional[EmailClient] = Depends(get_email_client),
    limiter: RateLimiter = Depends(get_contact_rate_limiter),
):
    return send_contact_message(
        payload,
        client_key=client_ip(request),
        settings=settings,
        mailer=mailer,
        limiter=limiter,
    )


@router.post(
    "/send-auth-email", response_model=OkResponse, response_model_exclude_none=True
)
def send_auth_email_route(
    payload: SendAuthEmailRequest,
    origin: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
    mailer: Optional[EmailClient] = Depends(get_email_client),
    identity: Optional[IdentityClient] = Depends(get_identity_client),
):
    return send_auth_email(
        payload, origin=origin, settings=settings, mailer=mailer, identity=identity
    )


@router.post("/auth-email-hook")
def auth_email_hook(
    payload: AuthEmailHookRequest,
    settings: Settings = Depends(get_settings),
    mailer: Optional[EmailClient] = Depends(get_email_client),
):
    send_auth_hook_email(payload, settings=settings, mailer=mailer)
    return {}


# Payments


@router.post("/takbull/init-order", response_model=InitOrderResponse)
def init_order(
    payload: InitOrderRequest,
    origin: Optional[str] = Header(default=None),
    user: IdentityUser = Depends(require_user),
    billing: BillingService = Depends(get_billing_service),
):
    result = billing.init_order(
        user,
        subscription_tier=payload.subscription_tier,
        billing_period=payload.billing_period,
        plan_id=payload.plan_id,
        preferred_language=payload.preferred_language,
        requested_user_id=payload.user_id,
        origin=origin,
    )
    return InitOrderResponse(**result)


@router.get("/takbull/callback")
def takbull_callback(
    request: Request, billing: BillingService = Depends(get_billing_service)
):
    return billing.handle_callback(dict(request.query_params))


def _notification_params(raw: bytes, content_type: str, query: dict) -> dict:
    params = dict(query)
    if not raw:
        return params
    if "application/json" in content_type:
        try:
            body = json.loads(raw)
        except ValueError as exc:
            raise ApiError(400, "Invalid JSON body") from exc
        if isinstance(body, dict):
            params.update(body)
        return params
    params.update(parse_qsl(raw.decode("utf-8", errors="replace")))
    return params


@router.post("/takbull/ipn", response_model=OkResponse)
async def takbull_ipn(
    request: Request,
    billing: BillingService = Depends(get_billing_service),
    settings: Settings = Depends(get_settings),
):
    raw = await request.body()
    secret = settings.takbull_ipn_secret
    if secret:
        signed = raw if raw else request.url.query.encode()
        if not verify_notification(secret, signed, request.headers.get(SIGNATURE_HEADER)):
            logger.warning("Rejected IPN with a bad or missing signature")
            raise ApiError(401, "Invalid signature")
    else:
        logger.warning("TAKBULL_IPN_SECRET is not set; IPN signature not checked")

    params = _notification_params(
        raw, request.headers.get("content-type", ""), dict(request.query_params)
    )
    result = await run_in_threadpool(billing.handle_ipn, params)
    return OkResponse(message=result["message"])


# Subscriptions


@router.get("/subscription/status", response_model=SubscriptionStatusResponse)
def subscription_status(
    lang: Optional[str] = Query(default=None),
    user: IdentityUser = Depends(require_subscriber),
    billing: BillingService = Depends(get_billing_service),
):
    return SubscriptionStatusResponse(**billing.status(user, lang))


@router.post(
    "/subscription/cancel", response_model=OkResponse, response_model_exclude_none=True
)
def cancel_subscription(
    lang: Optional[str] = Query(default=None),
    user: IdentityUser = Depends(require_subscriber),
    billing: BillingService = Depends(get_billing_service),
):
    return billing.cancel(user, lang)


@router.post(
    "/subscription/pause", response_model=OkResponse, response_model_exclude_none=True
)
def pause_subscription(
    lang: Optional[str] = Query(default=None),
    user: IdentityUser = Depends(require_subscriber),
    billing: BillingService = Depends(get_billing_service),
):
    return billing.pause(user, lang)


@router.post(
    "/subscription/resume", response_model=OkResponse, response_model_exclude_none=True
)
def resume_subscription(
    lang: Optional[str] = Query(default=None),
    user: IdentityUser = Depends(require_subscriber),
    billing: BillingService = Depends(get_billing_service),
):
    return billing.resume(user, lang)


@router.post("/subscription/downgrade-expired", response_model=DowngradeResponse)
def downgrade_expired_route(
    payload: Optional[DowngradeRequest] = Body(default=None),
    secret: Optional[str] = Query(default=None),
    authorization: Optional[str] = Header(default=None),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    """Scheduled sweep demoting expired or exhausted paid subscriptions."""
    if not check_cron_secret(
        settings.cron_secret,
        bearer_token(authorization),
        payload.secret if payload else None,
        secret,
    ):
        raise ApiError(401, "Unauthorized")
    try:
        downgraded = downgrade_expired(db)
    except StoreError as exc:
        logger.exception("Downgrade sweep failed")
        raise ApiError(500, str(exc)) from exc
    logger.info("Downgrade sweep demoted %d subscriptions", downgraded)
    return DowngradeResponse(downgraded=downgraded)
