"""Generation job orchestrator.

Request flow:
  normalize → idempotency → rate limit → reserve credits →
  resolve references → route → sync poll or async submit → persist → respond

A batch runs that flow once per requested output.  Everything after the
reservation runs inside its scope, so any error that escapes it is
refunded exactly once.
"""

from __future__ import annotations

import base64
import logging
import time
import uuid
from typing import Any, Awaitable, Callable

from photoglow.config import Settings
from photoglow.models import JobStatus
from photoglow.services.credits import CreditLedger, CreditReservation
from photoglow.services.errors import (
    ForbiddenError,
    GenerationError,
    InsufficientCredits,
    RateLimited,
    ValidationFailed,
)
from photoglow.services.guards import IdempotencyCache, SlidingWindowRateLimiter
from photoglow.services.job_driver import PollingDriver, PredictionTimeout
from photoglow.services.job_store import JobStore, best_effort
from photoglow.services.normalizer import (
    MEDIA_IMAGE,
    MEDIA_VIDEO,
    GenerationRequest,
    normalize_request,
)
from photoglow.services.output_persister import OutputPersister
from photoglow.services.providers.router import KNOWN_MODELS, RoutedCall, is_async_model, route
from photoglow.services.reference_resolver import ReferenceResolver
from photoglow.services.webhook_driver import WebhookDriver

logger = logging.getLogger(__name__)

ONE_BY_ONE_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mP8/x8AAwMCAO4B2E0AAAAASUVORK5CYII="
)

Publisher = Callable[..., Awaitable[None]]
Result = tuple[int, dict[str, Any]]

MAX_BATCH_PROMPTS = 10
MAX_BATCH_OUTPUTS = 4


def _meta(request: GenerationRequest) -> dict[str, Any]:
    return {
        "prompt_final": request.prompt,
        "prompt_negative": request.negative_prompt,
        "preset_id": request.preset_id,
        "preset_version": request.preset_version,
        "guidance": request.guidance,
        "prompt_strength": request.prompt_strength,
        "seed": request.seed,
    }


def batch_prompts(body: dict[str, Any]) -> list[str]:
    """Non-empty ``prompts`` entries, else the single ``prompt``."""
    raw = body.get("prompts")
    prompts: list[str] = []
    if isinstance(raw, list):
        prompts = [str(p).strip() for p in raw if p is not None and str(p).strip()]
    if not prompts and body.get("prompt"):
        prompts = [str(body["prompt"]).strip()]
    return prompts


def clamp_outputs(value: Any) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 1
    return min(max(count, 1), MAX_BATCH_OUTPUTS)


class Orchestrator:

    def __init__(
        self,
        *,
        settings: Settings,
        ledger: CreditLedger,
        resolver: ReferenceResolver,
        persister: OutputPersister,
        polling: PollingDriver,
        webhooks: WebhookDriver,
        store: JobStore,
        idempotency: IdempotencyCache,
        rate_limiter: SlidingWindowRateLimiter,
        publish: Publisher | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.ledger = ledger
        self.resolver = resolver
        self.persister = persister
        self.polling = polling
        self.webhooks = webhooks
        self.store = store
        self.idempotency = idempotency
        self.rate_limiter = rate_limiter
        self._publish = publish
        self._clock = clock

    async def _notify(self, job_id: str, status: str, **extra: Any) -> None:
        if self._publish is not None:
            await self._publish(job_id, status, **extra)

    def price_for(self, request: GenerationRequest) -> int:
        return self.settings.VIDEO_PRICE if request.media == MEDIA_VIDEO else self.settings.IMAGE_PRICE

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def generate(
        self,
        body: Any,
        *,
        user_id: str,
        idempotency_key: str | None = None,
        client_id: str | None = None,
        default_mode: str = "text2img",
        default_model: str = "flux",
    ) -> Result:
        """Run one generation request and return ``(status_code, body)``."""
        request = normalize_request(
            body,
            user_id=user_id,
            idempotency_key=idempotency_key,
            default_mode=default_mode,
            default_model=default_model,
            known_models=KNOWN_MODELS,
        )

        if request.test_mode:
            return await self._run_test_mode(request)

        if is_async_model(request):
            return await self.idempotency.run_once(
                user_id,
                request.idempotency_key,
                lambda: self._submit_once(request),
                remember=False,
            )

        async def run_sync() -> Result:
            if client_id is not None and not self.rate_limiter.allow(client_id):
                raise RateLimited()
            return await self._run_reserved(request)

        return await self.idempotency.run_once(user_id, request.idempotency_key, run_sync)

    async def _submit_once(self, request: GenerationRequest) -> Result:
        existing = await self._find_async_duplicate(request)
        if existing is not None:
            return 200, existing
        return await self._run_reserved(request)

    async def _find_async_duplicate(self, request: GenerationRequest) -> dict[str, Any] | None:
        if not request.idempotency_key:
            return None
        job = await best_effort(
            self.store.find_by_idempotency(request.user_id, request.idempotency_key),
            "idempotency lookup",
        )
        if job is None:
            return None
        return {
            "ok": True,
            "job_id": job.id,
            "status": job.status,
            "video_url": job.output_url,
            "idempotency_key": request.idempotency_key,
            "dedup": True,
        }

    async def _run_reserved(self, request: GenerationRequest) -> Result:
        job_id = uuid.uuid4().hex
        submitted: list[str] = []
        reservation = self.ledger.reservation(request.user_id, self.price_for(request))
        try:
            async with reservation as credits:
                refs = await self.resolver.resolve(request.references, request.user_id)
                routed = route(request, refs)
                if routed.is_async:
                    return 202, await self.webhooks.submit(request, routed, credits)
                return 200, await self._run_sync(job_id, request, routed, credits, submitted)
        except GenerationError as e:
            if submitted:
                await self._record_failure(job_id, e, reservation)
            raise

    # ------------------------------------------------------------------
    # Synchronous path
    # ------------------------------------------------------------------

    async def _run_sync(
        self,
        job_id: str,
        request: GenerationRequest,
        routed: RoutedCall,
        credits: CreditReservation,
        submitted: list[str],
    ) -> dict[str, Any]:
        started = self._clock()

        async def on_submitted(prediction_id: str) -> None:
            submitted.append(prediction_id)
            await best_effort(
                self.store.create_job(
                    id=job_id,
                    user_id=request.user_id,
                    provider=routed.variant.provider,
                    provider_task_id=prediction_id,
                    model=routed.target,
                    mode=request.wire_mode,
                    prompt=request.prompt,
                    status=JobStatus.PROCESSING.value,
                    idempotency_key=request.idempotency_key,
                    credit_amount=credits.amount,
                    credit_state=credits.state,
                ),
                f"insert job {job_id}",
            )
            await self._notify(job_id, JobStatus.PROCESSING.value)

        outcome = await self.polling.run(routed.target, routed.input, on_submitted=on_submitted)
        asset = await self.persister.persist_url(outcome.output_url, request.user_id, MEDIA_IMAGE)
        credits.settle()

        await best_effort(
            self.store.update_job(
                job_id,
                status=JobStatus.SUCCEEDED.value,
                output_url=asset.url,
                output_path=f"{asset.bucket}/{asset.path}",
                credit_state=credits.state,
            ),
            f"update job {job_id}",
        )
        await best_effort(
            self.store.log_generation(
                user_id=request.user_id,
                job_id=job_id,
                image_url=asset.url,
                prompt=request.prompt,
                mode=request.wire_mode,
                model=routed.target,
                source=routed.variant.kind.value,
                duration_ms=int((self._clock() - started) * 1000),
            ),
            f"generation log for {job_id}",
        )
        await self._notify(job_id, JobStatus.SUCCEEDED.value, image_url=asset.url)

        return {
            "ok": True,
            "job_id": job_id,
            "status": JobStatus.SUCCEEDED.value,
            "image_url": asset.url,
            "model": routed.target,
            "mode": request.wire_mode,
            "idempotency_key": request.idempotency_key,
            "meta": _meta(request),
        }

    async def _record_failure(
        self,
        job_id: str,
        error: GenerationError,
        reservation: CreditReservation,
    ) -> None:
        fields: dict[str, Any] = {"error": error.code, "credit_state": reservation.state}
        # A timed-out prediction may still finish; reconciliation owns it.
        if not isinstance(error, PredictionTimeout):
            fields["status"] = JobStatus.FAILED.value
        await best_effort(self.store.update_job(job_id, **fields), f"update job {job_id}")
        await self._notify(job_id, fields.get("status", JobStatus.PROCESSING.value), error=error.code)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def generate_batch(
        self,
        body: Any,
        *,
        user_id: str,
        idempotency_key: str | None = None,
        client_id: str | None = None,
    ) -> Result:
        """Run each prompt ``num_outputs`` times, one reservation per output.

        Every prompt is validated before anything is reserved.  Items then
        fail independently; running out of credits stops the batch and the
        response is 402 with the items produced so far.
        """
        if not isinstance(body, dict):
            raise ValidationFailed("invalid_body")
        prompts = batch_prompts(body)
        if not prompts:
            raise ValidationFailed("missing_prompt")
        if len(prompts) > MAX_BATCH_PROMPTS:
            raise ValidationFailed("too_many_prompts", details=len(prompts), status_code=422)
        num_outputs = clamp_outputs(body.get("num_outputs", 1))

        requests = [
            normalize_request(
                {**body, "prompt": prompt, "prompt_final": None},
                user_id=user_id,
                idempotency_key=idempotency_key,
                default_mode="text2img",
                default_model="flux",
                known_models=KNOWN_MODELS,
            )
            for prompt in prompts
        ]
        first = requests[0]
        if first.media == MEDIA_VIDEO or is_async_model(first):
            raise ValidationFailed("batch_images_only", details=first.model, status_code=422)
        if first.test_mode and not self.settings.ALLOW_TEST_MODE:
            raise ForbiddenError("test_mode_disabled")

        async def run_batch() -> Result:
            if client_id is not None and not self.rate_limiter.allow(client_id):
                raise RateLimited()
            return await self._run_batch(requests, num_outputs)

        key = f"batch:{first.idempotency_key}" if first.idempotency_key else None
        return await self.idempotency.run_once(user_id, key, run_batch)

    async def _run_batch(self, requests: list[GenerationRequest], num_outputs: int) -> Result:
        batch_id = uuid.uuid4().hex
        items: list[dict[str, Any]] = []
        out_of_credits = False

        for request in requests:
            for _ in range(num_outputs):
                run = self._run_test_mode if request.test_mode else self._run_reserved
                try:
                    _, result = await run(request)
                except InsufficientCredits as e:
                    items.append({"prompt": request.prompt, "error": e.code})
                    out_of_credits = True
                    break
                except GenerationError as e:
                    logger.warning("Batch %s item failed: %s", batch_id, e.code)
                    items.append({"prompt": request.prompt, "error": e.code})
                    continue
                items.append({
                    "prompt": request.prompt,
                    "job_id": result["job_id"],
                    "image_url": result["image_url"],
                    "model": result["model"],
                })
            if out_of_credits:
                break

        count = sum(1 for item in items if "image_url" in item)
        logger.info(
            "Batch %s for user %s: %d of %d outputs",
            batch_id, requests[0].user_id, count, len(requests) * num_outputs,
        )
        payload: dict[str, Any] = {
            "ok": not out_of_credits,
            "batch_id": batch_id,
            "mode": requests[0].wire_mode,
            "num_outputs": num_outputs,
            "count": count,
            "items": items,
        }
        if out_of_credits:
            payload["error"] = InsufficientCredits.default_code
            return 402, payload
        return 200, payload

    # ------------------------------------------------------------------
    # Test mode
    # ------------------------------------------------------------------

    async def _run_test_mode(self, request: GenerationRequest) -> Result:
        """Store a 1x1 PNG without touching credits or providers."""
        if not self.settings.ALLOW_TEST_MODE:
            raise ForbiddenError("test_mode_disabled")
        job_id = f"test_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
        asset = await self.persister.persist_bytes(ONE_BY_ONE_PNG, "image/png", request.user_id, MEDIA_IMAGE)
        return 200, {
            "ok": True,
            "job_id": job_id,
            "user_id": request.user_id,
            "model": "test_mode_dummy",
            "mode": request.wire_mode,
            "image_url": asset.url,
            "source_url": None,
            "test_mode": True,
            "idempotency_key": request.idempotency_key,
        }
