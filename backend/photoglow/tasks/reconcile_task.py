from __future__ import annotations
"""Celery Beat task that closes out stale generation jobs."""

import logging

from celery import shared_task

from photoglow.services import reconciler
from photoglow.services.wiring import get_services
from photoglow.tasks import run_async

logger = logging.getLogger(__name__)


@shared_task(name="photoglow.tasks.reconcile_task.reconcile_stale_jobs")
def reconcile_stale_jobs() -> dict[str, int]:
    """Cancel timed-out sync predictions and re-read silent async tasks."""
    services = get_services()
    return run_async(
        reconciler.reconcile_stale_jobs(
            services.store,
            services.replicate,
            services.webhooks,
            services.settings,
        )
    )
