"""
Contact form, auth emails and admin broadcasts.
"""

from __future__ import annotations

import logging
import re
from typing import Optional
from urllib.parse import quote

from backend.billing_rules import utcnow
from backend.config import Settings
from backend.db import DbClient
from backend.email_templates import (
    render_auth_email,
    render_broadcast_email,
    render_contact_email,
)
from backend.errors import ApiError
from backend.identity import IdentityClient, IdentityProviderError
from backend.mailer import EmailClient, EmailDeliveryError, EmailMessage
from backend.rate_limit import RateLimiter
from backend.schemas import (
    AuthEmailHookRequest,
    BroadcastEmailRequest,
    ContactRequest,
    SendAuthEmailRequest,
)
from shared.constants import BRAND_NAME, CONTACT_MIN_MESSAGE_LENGTH, SHORT_BRAND_NAME
from shared.messages import normalize_lang, t

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value))


def display_sender(name: str, address: str) -> str:
    return f"{name} <{address}>" if "@" in address else address


def send_contact_message(
    payload: ContactRequest,
    *,
    client_key: str,
    settings: Settings,
    mailer: Optional[EmailClient],
    limiter: RateLimiter,
) -> dict:
    lang = payload.lang
    if payload.honeypot and payload.honeypot.strip():
        logger.warning("Contact form honeypot filled; dropping submission")
        return {"ok": True}

    if not limiter.hit(client_key):
        logger.warning("Contact form rate limit hit for %s", client_key)
        raise ApiError(429, t("too_many_requests", lang))

    if not (payload.full_name and payload.email and payload.subject and payload.message):
        raise ApiError(400, t("missing_fields", lang))
    if not is_valid_email(payload.email):
        raise ApiError(400, t("invalid_email", lang))
    if len(payload.message.strip()) < CONTACT_MIN_MESSAGE_LENGTH:
        raise ApiError(400, t("message_too_short", lang))

    if mailer is None or not settings.contact_from_email:
        logger.error("Contact email is not configured (RESEND_API_KEY / CONTACT_FROM_EMAIL)")
        raise ApiError(500, t("email_not_configured", lang))

    rendered = render_contact_email(
        full_name=payload.full_name,
        email=payload.email,
        subject=payload.subject,
        message=payload.message,
        lang=normalize_lang(lang),
        submitted_at=utcnow(),
        phone=payload.phone,
        source_url=payload.source_url,
    )
    try:
        email_id = mailer.send(
            EmailMessage(
                sender=display_sender(BRAND_NAME, settings.contact_from_email),
                to=[settings.contact_to_email],
                subject=rendered.subject,
                html=rendered.html,
                text=rendered.text,
                reply_to=payload.email,
            )
        )
    except EmailDeliveryError as exc:
        logger.error("Contact email delivery failed: %s", exc)
        raise ApiError(500, t("send_failed", lang)) from exc
    logger.info("Contact message delivered as %s", email_id)
    return {"ok": True}


def send_auth_email(
    payload: SendAuthEmailRequest,
    *,
    origin: Optional[str],
    settings: Settings,
    mailer: Optional[EmailClient],
    identity: Optional[IdentityClient],
) -> dict:
    email = (payload.email or "").strip().lower()
    if not email or not is_valid_email(email):
        raise ApiError(400, "Invalid email")
    email_type = "recovery" if payload.type == "recovery" else "signup"
    lang = normalize_lang(payload.lang)

    if mailer is None or not settings.contact_from_email:
        raise ApiError(500, "Email not configured")

    provided = (payload.action_link or "").strip()
    if provided.startswith("http"):
        action_link = provided
        fallback_url: Optional[str] = provided
    else:
        if identity is None:
            raise ApiError(500, "Server configuration error")
        redirect_to = payload.redirect_to or origin or ""
        link_type = "recovery" if email_type == "recovery" else "magiclink"
        try:
            link = identity.generate_link(link_type, email, redirect_to or None)
        except IdentityProviderError as exc:
            logger.warning("generate_link failed: %s", exc)
            raise ApiError(400, "Could not generate link") from exc
        action_link = link.action_link
        fallback_url = None
        if link.hashed_token:
            verification_type = link.verification_type or link_type
            fallback_url = (
                f"{redirect_to.rstrip('/')}?token_hash={quote(link.hashed_token, safe='')}"
                f"&type={quote(verification_type, safe='')}"
            )

    rendered = render_auth_email(email_type, lang, action_link, fallback_url)
    try:
        mailer.send(
            EmailMessage(
                sender=display_sender(SHORT_BRAND_NAME, settings.contact_from_email),
                to=[email],
                subject=rendered.subject,
                html=rendered.html,
            )
        )
    except EmailDeliveryError as exc:
        logger.error("Auth email delivery failed: %s", exc)
        raise ApiError(500, "Failed to send email") from exc
    return {"ok": True}


def send_auth_hook_email(
    payload: AuthEmailHookRequest,
    *,
    settings: Settings,
    mailer: Optional[EmailClient],
) -> None:
    """Render the auth email for an identity-provider send-email hook."""
    user = payload.user
    email_data = payload.email_data
    email = user.email if user else None
    token_hash = email_data.token_hash if email_data else None
    if not email or not token_hash or not settings.supabase_url:
        logger.warning("Auth hook missing email, token_hash or SUPABASE_URL")
        return
    if mailer is None or not settings.contact_from_email:
        logger.error("Auth hook cannot send: email is not configured")
        return

    action_type = (email_data.email_action_type if email_data else None) or "signup"
    redirect_to = (email_data.redirect_to if email_data else None) or settings.app_url or ""
    action_link = (
        f"{settings.supabase_url.rstrip('/')}/auth/v1/verify"
        f"?token_hash={quote(token_hash, safe='')}"
        f"&type={quote(action_type, safe='')}"
        f"&redirect_to={quote(redirect_to, safe='')}"
    )
    lang = normalize_lang(user.user_metadata.get("preferred_language"))
    email_type = "recovery" if action_type == "recovery" else "signup"
    rendered = render_auth_email(email_type, lang, action_link)
    try:
        mailer.send(
            EmailMessage(
                sender=display_sender(SHORT_BRAND_NAME, settings.contact_from_email),
                to=[email.strip().lower()],
                subject=rendered.subject,
                html=rendered.html,
            )
        )
    except EmailDeliveryError as exc:
        logger.error("Auth hook email delivery failed: %s", exc)


def broadcast_email(
    payload: BroadcastEmailRequest,
    *,
    db: DbClient,
    settings: Settings,
    mailer: Optional[EmailClient],
) -> dict:
    if not payload.title or not payload.message:
        raise ApiError(400, "Missing title or message")
    if mailer is None or not settings.contact_from_email:
        logger.warning("Broadcast skipped: email is not configured")
        return {"ok": True, "sent": 0, "skipped": "Email not configured"}

    recipients = db.list_profiles(
        only_receiving_updates=True,
        tiers=None if payload.target_all else payload.target_tier,
        require_email=True,
    )
    rendered = render_broadcast_email(payload.title, payload.message)
    sender = display_sender(BRAND_NAME, settings.contact_from_email)
    sent = 0
    for profile in recipients:
        try:
            mailer.send(
                EmailMessage(
                    sender=sender,
                    to=[profile.email],
                    subject=payload.title,
                    html=rendered.html,
                    text=rendered.text,
                )
            )
        except EmailDeliveryError as exc:
            logger.warning("Broadcast to %s failed: %s", profile.user_id, exc)
            continue
        sent += 1
    logger.info("Broadcast %r sent to %d of %d recipients", payload.title, sent, len(recipients))
    return {"ok": True, "sent": sent}
