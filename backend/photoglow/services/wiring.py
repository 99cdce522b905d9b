"""Builds the service graph from settings.

The API and the Celery worker share one lazily created ``Services`` bundle
per process; tests build their own with fakes.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from photoglow.config import Settings, get_settings
from photoglow.database import get_session_factory
from photoglow.services.auth import AuthGateway
from photoglow.services.credits import CreditLedger
from photoglow.services.guards import IdempotencyCache, SlidingWindowRateLimiter
from photoglow.services.http import get_http_client
from photoglow.services.job_driver import PollingDriver
from photoglow.services.job_store import JobStore
from photoglow.services.orchestrator import Orchestrator
from photoglow.services.output_persister import OutputPersister
from photoglow.services.preview import PreviewService
from photoglow.services.providers.kie import KieClient
from photoglow.services.providers.pollinations import PollinationsClient
from photoglow.services.providers.replicate import ReplicateClient
from photoglow.services.pubsub import publish_job_update
from photoglow.services.reference_resolver import ReferenceResolver
from photoglow.services.storage import StorageClient
from photoglow.services.webhook_driver import WebhookDriver


@dataclass
class Services:
    settings: Settings
    auth: AuthGateway
    ledger: CreditLedger
    storage: StorageClient
    store: JobStore
    replicate: ReplicateClient
    webhooks: WebhookDriver
    orchestrator: Orchestrator
    preview: PreviewService


def build_services(
    settings: Settings,
    http_client: httpx.AsyncClient,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    publish=publish_job_update,
    store: JobStore | None = None,
) -> Services:
    storage = StorageClient(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY, http_client)
    ledger = CreditLedger(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY, http_client)
    if store is None:
        store = JobStore(session_factory)
    persister = OutputPersister(storage, http_client, settings)
    replicate = ReplicateClient(settings.REPLICATE_API_TOKEN, http_client, settings.REPLICATE_BASE_URL)
    kie = KieClient(
        settings.KIE_API_KEY,
        http_client,
        base_url=settings.KIE_BASE_URL,
        create_path=settings.KIE_SORA2_CREATE_PATH,
        detail_path=settings.KIE_SORA2_DETAIL_PATH,
    )
    webhooks = WebhookDriver(kie, store, persister, settings, publish=publish)

    # one cache and one limiter per process, shared by both paths
    idempotency = IdempotencyCache(ttl=settings.IDEMPOTENCY_TTL_S)
    limiter = SlidingWindowRateLimiter(settings.RATE_LIMIT_MAX, settings.RATE_LIMIT_WINDOW_S)

    orchestrator = Orchestrator(
        settings=settings,
        ledger=ledger,
        resolver=ReferenceResolver(storage, settings),
        persister=persister,
        polling=PollingDriver(replicate, interval=settings.POLL_INTERVAL_S, budget=settings.poll_budget_s),
        webhooks=webhooks,
        store=store,
        idempotency=idempotency,
        rate_limiter=limiter,
        publish=publish,
    )
    preview = PreviewService(
        PollinationsClient(http_client, settings.POLLINATIONS_URL, settings.POLLINATIONS_TOKEN),
        persister,
        idempotency,
        limiter,
    )
    return Services(
        settings=settings,
        auth=AuthGateway(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY, http_client),
        ledger=ledger,
        storage=storage,
        store=store,
        replicate=replicate,
        webhooks=webhooks,
        orchestrator=orchestrator,
        preview=preview,
    )


_services: Services | None = None


def get_services() -> Services:
    """Return the process-wide service bundle, creating it on first use."""
    global _services
    if _services is None:
        _services = build_services(get_settings(), get_http_client(), get_session_factory())
    return _services


def reset_services() -> None:
    global _services
    _services = None
