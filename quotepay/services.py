"""Service container — every external client is built here, once, at startup.

The FastAPI lifespan builds a Services instance, stores it on ``app.state``
and closes it at shutdown. Route handlers reach it through ``get_services``;
tests swap in their own instance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
import redis.asyncio as aioredis
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quotepay.config import Settings
from quotepay.delivery.dispatcher import DeliveryDispatcher
from quotepay.delivery.providers import build_providers
from quotepay.documents.composer import DocumentComposer
from quotepay.payments.checkout import CheckoutSessionIssuer
from quotepay.payments.gateway import StripeGateway
from quotepay.payments.webhooks import WebhookReconciler
from quotepay.policy import PolicyStore
from quotepay.quotes.pipeline import QuoteSendPipeline
from quotepay.quotes.store import QuoteStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: QuoteStore
    policy: PolicyStore
    issuer: CheckoutSessionIssuer
    composer: DocumentComposer
    dispatcher: DeliveryDispatcher
    reconciler: WebhookReconciler
    pipeline: QuoteSendPipeline
    http_client: httpx.AsyncClient | None = None
    redis: aioredis.Redis | None = None

    async def aclose(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()
        if self.redis is not None:
            await self.redis.aclose()
        logger.info("Service clients closed")


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> Services:
    """Wire store, gateway, providers and pipeline from settings."""
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.email.email_timeout, connect=5.0))
    redis_client: aioredis.Redis = aioredis.from_url(settings.db.redis_url, decode_responses=True)

    store = QuoteStore(session_factory)
    policy = PolicyStore(settings.pipeline.policy_file)
    gateway = StripeGateway(
        settings.stripe.stripe_secret_key,
        settings.stripe.stripe_webhook_secret,
        api_version=settings.stripe.stripe_api_version,
        timeout=settings.stripe.checkout_timeout,
        webhook_tolerance=settings.stripe.webhook_tolerance,
    )
    issuer = CheckoutSessionIssuer(
        store,
        gateway,
        policy,
        base_url=settings.branding.app_base_url,
        success_path=settings.stripe.success_path,
        cancel_path=settings.stripe.cancel_path,
        currency=settings.stripe.currency,
        business_name=settings.branding.business_name,
    )
    composer = DocumentComposer(settings.branding, pdf_timeout=settings.pipeline.pdf_timeout)
    dispatcher = DeliveryDispatcher(
        store, build_providers(settings.email, http_client), policy, settings.email
    )
    reconciler = WebhookReconciler(
        store, gateway, redis_client, dedup_ttl=settings.stripe.webhook_dedup_ttl
    )
    pipeline = QuoteSendPipeline(store, policy, issuer, composer, dispatcher)

    if not settings.stripe.stripe_secret_key:
        logger.warning("STRIPE_SECRET_KEY not set — checkout sessions will fail")
    if not settings.stripe.stripe_webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET not set — every webhook will be rejected")

    return Services(
        store=store,
        policy=policy,
        issuer=issuer,
        composer=composer,
        dispatcher=dispatcher,
        reconciler=reconciler,
        pipeline=pipeline,
        http_client=http_client,
        redis=redis_client,
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the container built at startup."""
    return request.app.state.services
