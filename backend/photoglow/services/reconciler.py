"""Reconciliation of jobs left non-terminal by the request path.

A sync request that hits its polling deadline answers ``prediction_timeout``
(refunded) and leaves its row ``processing``.  Here such predictions are
canceled at the provider and the row marked ``canceled``.  Async jobs whose
callback never arrived are re-read from Kie.  Reconciliation never touches
credits.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from photoglow.config import Settings
from photoglow.models import JobStatus
from photoglow.services.errors import GenerationError
from photoglow.services.job_store import JobStore
from photoglow.services.providers.replicate import ReplicateClient
from photoglow.services.webhook_driver import WebhookDriver

logger = logging.getLogger(__name__)

_OPEN = (JobStatus.QUEUED.value, JobStatus.PROCESSING.value)


async def reconcile_stale_jobs(
    store: JobStore,
    replicate: ReplicateClient,
    webhooks: WebhookDriver,
    settings: Settings,
) -> dict[str, int]:
    counts = {"canceled": 0, "completed": 0, "failed": 0, "pending": 0, "errors": 0}

    sync_jobs = await store.list_stale(
        _OPEN, timedelta(seconds=settings.JOB_RECONCILE_AFTER_S), provider="replicate"
    )
    for job in sync_jobs:
        try:
            if job.provider_task_id:
                await replicate.cancel_prediction(job.provider_task_id)
            await store.update_job(job.id, status=JobStatus.CANCELED.value, error=job.error or "prediction_timeout")
            counts["canceled"] += 1
        except GenerationError as e:
            logger.warning("Could not cancel stale job %s: %s", job.id, e)
            counts["errors"] += 1

    async_jobs = await store.list_stale(
        _OPEN, timedelta(seconds=settings.ASYNC_JOB_MAX_AGE_S), provider="kie-sora2"
    )
    for job in async_jobs:
        if not job.provider_task_id:
            continue
        try:
            status = await webhooks.reconcile(job.id, job.user_id, job.provider_task_id)
        except GenerationError as e:
            logger.warning("Could not reconcile async job %s: %s", job.id, e)
            counts["errors"] += 1
            continue
        if status == JobStatus.COMPLETED.value:
            counts["completed"] += 1
        elif status == JobStatus.FAILED.value:
            counts["failed"] += 1
        else:
            counts["pending"] += 1

    if any(counts.values()):
        logger.info("Reconciliation: %s", counts)
    return counts
