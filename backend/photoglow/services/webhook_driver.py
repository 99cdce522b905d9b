"""Asynchronous webhook driver (Kie Sora-2).

Submission returns as soon as the provider accepts the task.  Completion
arrives later, zero or more times, through the callback endpoint:

  submit   → create task with signed callBackUrl → row ``processing`` → 202
  callback → task id must match the job
             ``success``: claim row (``persisting``) + download + persist
             + row ``completed``
             anything else: status update only
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
import uuid
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode

from photoglow.config import Settings
from photoglow.models import JobStatus, TERMINAL_STATUSES
from photoglow.services.credits import CreditReservation
from photoglow.services.errors import ForbiddenError, GenerationError, JobNotFound, ValidationFailed
from photoglow.services.job_store import JobStore, best_effort
from photoglow.services.normalizer import MEDIA_VIDEO, GenerationRequest
from photoglow.services.output_persister import OutputPersister
from photoglow.services.providers.kie import KieClient
from photoglow.services.providers.router import RoutedCall

logger = logging.getLogger(__name__)

Publisher = Callable[..., Awaitable[None]]

# Kie callback status -> job status
_CALLBACK_STATUS = {
    "success": JobStatus.COMPLETED.value,
    "fail": JobStatus.FAILED.value,
    "failed": JobStatus.FAILED.value,
    "generating": JobStatus.PROCESSING.value,
}


def sign_callback(job_id: str, uid: str, t: str, secret: str) -> str:
    message = f"{job_id}:{uid}:{t}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def build_callback_url(base_url: str, job_id: str, uid: str, t: str, secret: str = "") -> str:
    params = {"job_id": job_id, "uid": uid, "t": t}
    if secret:
        params["sig"] = sign_callback(job_id, uid, t, secret)
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode(params)}"


def verify_callback(params: dict[str, str], secret: str) -> None:
    """Raise 403 unless ``sig`` matches; no-op when no secret is configured."""
    if not secret:
        return
    expected = sign_callback(
        params.get("job_id", ""), params.get("uid", ""), params.get("t", ""), secret
    )
    if not hmac.compare_digest(expected, params.get("sig") or ""):
        raise ForbiddenError("invalid_signature")


def new_job_id(now_ms: int) -> str:
    return f"sora2_{now_ms}_{uuid.uuid4().hex[:8]}"


class WebhookDriver:

    def __init__(
        self,
        kie: KieClient,
        store: JobStore,
        persister: OutputPersister,
        settings: Settings,
        publish: Publisher | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.kie = kie
        self.store = store
        self.persister = persister
        self.settings = settings
        self._publish = publish
        self._clock = clock

    async def _notify(self, job_id: str, status: str, **extra: Any) -> None:
        if self._publish is not None:
            await self._publish(job_id, status, **extra)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        request: GenerationRequest,
        routed: RoutedCall,
        reservation: CreditReservation,
    ) -> dict[str, Any]:
        """Create the provider task and record the job; returns the 202 body."""
        now_ms = int(self._clock() * 1000)
        job_id = new_job_id(now_ms)

        payload = dict(routed.input)
        if self.settings.KIE_WEBHOOK_URL:
            payload["callBackUrl"] = build_callback_url(
                self.settings.KIE_WEBHOOK_URL,
                job_id,
                request.user_id,
                str(now_ms),
                self.settings.WEBHOOK_SHARED_SECRET,
            )

        task_id = await self.kie.create_task(payload)
        reservation.settle()

        job = await best_effort(
            self.store.create_job(
                id=job_id,
                user_id=request.user_id,
                provider=routed.variant.provider,
                provider_task_id=task_id,
                model=routed.target,
                mode=request.wire_mode,
                prompt=request.prompt,
                status=JobStatus.PROCESSING.value,
                idempotency_key=request.idempotency_key,
                credit_amount=reservation.amount,
                credit_state=reservation.state,
            ),
            f"insert job {job_id}",
        )
        if job is None:
            logger.error("Kie task %s accepted but job %s was not recorded", task_id, job_id)
        await self._notify(job_id, JobStatus.QUEUED.value)

        return {
            "ok": True,
            "job_id": job_id,
            "provider_task_id": task_id,
            "status": JobStatus.QUEUED.value,
            "idempotency_key": request.idempotency_key,
        }

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def handle_callback(self, job_id: str | None, body: dict[str, Any]) -> dict[str, Any]:
        """Apply one provider callback; safe to call any number of times."""
        if not job_id:
            raise ValidationFailed("missing_job_id", status_code=422)
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFound(details=job_id)

        task_id = body.get("taskId")
        if not task_id or task_id != job.provider_task_id:
            logger.warning("Callback for job %s carries task %s, expected %s", job_id, task_id, job.provider_task_id)
            raise ForbiddenError("task_mismatch", details=job_id)

        if job.status == JobStatus.COMPLETED.value:
            logger.info("Duplicate callback for completed job %s ignored", job_id)
            return {"ok": True, "noop": True, "video_url": job.output_url}

        status = str(body.get("status") or "")
        video_url = body.get("videoUrl")
        if status != "success" or not video_url:
            return await self._apply_status(job_id, job.status, status, body)

        return await self.complete(job_id, job.user_id, video_url, job.prompt, job.model, job.mode)

    async def _apply_status(
        self,
        job_id: str,
        current: str,
        reported: str,
        body: dict[str, Any],
    ) -> dict[str, Any]:
        new_status = _CALLBACK_STATUS.get(reported, JobStatus.PROCESSING.value)
        if new_status == JobStatus.COMPLETED.value:
            # success without a video URL
            new_status = JobStatus.FAILED.value
        if current == JobStatus.PERSISTING.value:
            return {"ok": True, "noop": True}
        if current in TERMINAL_STATUSES and new_status not in TERMINAL_STATUSES:
            return {"ok": True, "noop": True}

        fields: dict[str, Any] = {"status": new_status}
        if new_status == JobStatus.FAILED.value:
            fields["error"] = str(body.get("failMsg") or body.get("msg") or reported or "no_output_from_model")[:500]
        await self.store.update_job(job_id, **fields)
        await self._notify(job_id, new_status)
        logger.info("Job %s callback status %s -> %s", job_id, reported, new_status)
        return {"ok": True, "noop": True}

    async def complete(
        self,
        job_id: str,
        user_id: str,
        video_url: str,
        prompt: str | None = None,
        model: str | None = None,
        mode: str | None = None,
    ) -> dict[str, Any]:
        """Persist the provider's video and mark the job completed.

        Only the caller that claims the job persists; a concurrent duplicate
        gets the noop body.  A failed persist hands the job back to
        ``processing`` so a later callback or reconcile can retry.
        """
        if not await self.store.claim_for_completion(job_id):
            job = await self.store.get_job(job_id)
            logger.info("Job %s already claimed for completion, callback ignored", job_id)
            return {"ok": True, "noop": True, "video_url": job.output_url if job else None}

        try:
            asset = await self.persister.persist_url(video_url, user_id, MEDIA_VIDEO)
        except GenerationError:
            await best_effort(
                self.store.update_job(job_id, status=JobStatus.PROCESSING.value),
                f"release job {job_id}",
            )
            raise

        await self.store.update_job(
            job_id,
            status=JobStatus.COMPLETED.value,
            output_url=asset.url,
            output_path=f"{asset.bucket}/{asset.path}",
            error=None,
        )
        await best_effort(
            self.store.log_generation(
                user_id=user_id,
                job_id=job_id,
                image_url=asset.url,
                prompt=prompt,
                mode=mode,
                model=model,
                source="kie-sora2",
            ),
            f"generation log for {job_id}",
        )
        await self._notify(job_id, JobStatus.COMPLETED.value, video_url=asset.url)
        return {"ok": True, "video_url": asset.url}

    async def reconcile(self, job_id: str, user_id: str, task_id: str) -> str:
        """Re-read a stale task from the provider and apply its record."""
        record = await self.kie.get_record(task_id)
        if record["status"] == "success" and record["video_url"]:
            await self.complete(job_id, user_id, record["video_url"])
            return JobStatus.COMPLETED.value
        if record["status"] == "fail":
            await self.store.update_job(job_id, status=JobStatus.FAILED.value, error="provider_failed")
            await self._notify(job_id, JobStatus.FAILED.value)
            return JobStatus.FAILED.value
        return JobStatus.PROCESSING.value
