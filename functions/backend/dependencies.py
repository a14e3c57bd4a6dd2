"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends

from backend.billing import BillingService
from backend.config import Settings, get_settings
from backend.db import DbClient, InMemoryDbClient
from backend.db_postgres import PostgresDbClient
from backend.gateway import InMemoryGateway, PaymentGateway, TakbullGateway
from backend.identity import IdentityClient, InMemoryIdentityClient, SupabaseIdentityClient
from backend.mailer import EmailClient, InMemoryEmailClient, ResendEmailClient
from backend.rate_limit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_identity_client: IdentityClient | None = None
_payment_gateway: PaymentGateway | None = None
_email_client: EmailClient | None = None
_contact_rate_limiter: RateLimiter | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_identity_client() -> Optional[IdentityClient]:
    global _identity_client
    if _identity_client:
        return _identity_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _identity_client = InMemoryIdentityClient()
    elif settings.supabase_url and settings.supabase_service_role_key:
        _identity_client = SupabaseIdentityClient(
            base_url=settings.supabase_url,
            service_role_key=settings.supabase_service_role_key,
            timeout=settings.http_timeout_seconds,
        )
    else:
        logger.warning("Identity provider is not configured")
    return _identity_client


def get_payment_gateway() -> Optional[PaymentGateway]:
    global _payment_gateway
    if _payment_gateway:
        return _payment_gateway

    settings = get_settings()
    if settings.use_in_memory_backends:
        _payment_gateway = InMemoryGateway()
    elif settings.gateway_configured:
        _payment_gateway = TakbullGateway(
            api_key=settings.takbull_api_key or "",
            api_secret=settings.takbull_api_secret or "",
            base_url=settings.takbull_base_url,
            timeout=settings.http_timeout_seconds,
        )
    return _payment_gateway


def get_email_client() -> Optional[EmailClient]:
    global _email_client
    if _email_client:
        return _email_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _email_client = InMemoryEmailClient()
    elif settings.resend_api_key:
        _email_client = ResendEmailClient(
            api_key=settings.resend_api_key, timeout=settings.http_timeout_seconds
        )
    return _email_client


def get_contact_rate_limiter() -> RateLimiter:
    """
    Return the contact-form limiter; shared through Redis when configured.
    """
    global _contact_rate_limiter
    if _contact_rate_limiter:
        return _contact_rate_limiter

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _contact_rate_limiter = RedisRateLimiter(
            url=settings.redis_url,
            max_requests=settings.contact_rate_limit_max_requests,
            window_seconds=settings.contact_rate_limit_window_seconds,
            key_prefix=f"{settings.redis_key_prefix}:contact",
        )
    else:
        _contact_rate_limiter = InMemoryRateLimiter(
            max_requests=settings.contact_rate_limit_max_requests,
            window_seconds=settings.contact_rate_limit_window_seconds,
        )
    return _contact_rate_limiter


def get_billing_service(
    db: DbClient = Depends(get_db_client),
    gateway: Optional[PaymentGateway] = Depends(get_payment_gateway),
    mailer: Optional[EmailClient] = Depends(get_email_client),
    settings: Settings = Depends(get_settings),
) -> BillingService:
    return BillingService(db=db, settings=settings, gateway=gateway, mailer=mailer)
