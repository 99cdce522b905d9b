"""Shared pytest fixtures for photoglow tests.

Remote services (auth, credit RPCs, storage, Replicate, Kie, Pollinations,
provider CDNs) are faked by one ``FakeRemote`` behind ``httpx.MockTransport``,
so the real gateway classes run against it.
"""

import json
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest
from sqlalchemy.exc import OperationalError

# Add backend directory to path for imports
backend_path = Path(__file__).parent.parent / "backend"
if str(backend_path) not in sys.path:
    sys.path.insert(0, str(backend_path))

from photoglow.config import Settings  # noqa: E402
from photoglow.models import GenerationJob, GenerationLog  # noqa: E402
from photoglow.services.job_driver import PollingDriver  # noqa: E402
from photoglow.services.wiring import build_services  # noqa: E402

SUPABASE = "https://sb.test"
REPLICATE = "https://replicate.test/v1"
KIE = "https://kie.test"
POLLINATIONS = "https://pollinations.test/prompt"

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"
MP4_BYTES = b"\x00\x00\x00\x18ftypmp42fake"


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeRemote:
    """In-memory stand-in for every HTTP collaborator."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.users = {"tok-1": "user-1", "tok-2": "user-2"}
        self.balances: dict[str, int] = {"user-1": 5, "user-2": 0}
        self.debit_calls = 0
        self.refund_calls = 0
        self.ledger_down = False

        self.buckets = ["photos", "generated_images", "videos"]
        self.objects: dict[tuple[str, str], bytes] = {}
        self.signed: list[tuple[str, str]] = []
        self.upload_fails = False
        self.sign_fails = False

        self.create_status = 201
        self.create_body: Any = None
        self.prediction_script = ["processing", "succeeded"]
        self.prediction_error: str | None = None
        self.prediction_output: Any = "https://replicate.delivery/out/abc.png"
        self.predictions: dict[str, list[str]] = {}
        self.prediction_inputs: list[dict[str, Any]] = []
        self.canceled: list[str] = []

        self.kie_fails = False
        self.kie_payloads: list[dict[str, Any]] = []
        self.kie_record: dict[str, Any] = {"state": "generating"}

        self.download_fails = False
        self.pollinations_script: list[str] = ["image"]
        self.pollinations_bodies: list[dict[str, Any]] = []

    # -- helpers -----------------------------------------------------------

    def calls_to(self, fragment: str) -> list[httpx.Request]:
        return [r for r in self.requests if fragment in str(r.url)]

    @property
    def provider_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host in ("replicate.test", "kie.test")]

    @property
    def storage_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith("/storage/")]

    # -- transport ---------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host, path = request.url.host, request.url.path
        if host == "sb.test":
            return self._supabase(request, path)
        if host == "replicate.test":
            return self._replicate(request, path)
        if host == "kie.test":
            return self._kie(request, path)
        if host == "pollinations.test":
            return self._pollinations(request)
        if host in ("replicate.delivery", "kie.cdn"):
            if self.download_fails:
                return httpx.Response(404, text="gone")
            if host == "kie.cdn":
                return httpx.Response(200, content=MP4_BYTES, headers={"content-type": "video/mp4"})
            return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})
        return httpx.Response(404, text=f"unexpected {request.url}")

    def _supabase(self, request: httpx.Request, path: str) -> httpx.Response:
        if path == "/auth/v1/user":
            token = request.headers.get("authorization", "")[len("Bearer "):]
            if token in self.users:
                return httpx.Response(200, json={"id": self.users[token]})
            return httpx.Response(401, json={"message": "invalid JWT"})

        if path.startswith("/rest/v1/rpc/"):
            if self.ledger_down:
                return httpx.Response(503, text="upstream unavailable")
            body = json.loads(request.content)
            user, amount = body["p_user_id"], body["p_amount"]
            if path.endswith("debit_credits"):
                if user not in self.balances:
                    return httpx.Response(400, json={"message": "no_credits_row"})
                if self.balances[user] < amount:
                    return httpx.Response(400, json={"message": "insufficient_credits"})
                self.balances[user] -= amount
                self.debit_calls += 1
                return httpx.Response(200, json=None)
            self.balances[user] = self.balances.get(user, 0) + amount
            self.refund_calls += 1
            return httpx.Response(200, json=None)

        if path == "/rest/v1/user_credits":
            user = request.url.params.get("user_id", "").removeprefix("eq.")
            if user in self.balances:
                return httpx.Response(200, json=[{"credits": self.balances[user]}])
            return httpx.Response(200, json=[])

        if path == "/storage/v1/bucket":
            return httpx.Response(200, json=[{"name": b} for b in self.buckets])

        prefix = "/storage/v1/object/"
        if path.startswith(prefix + "upload/sign/"):
            rest = path[len(prefix + "upload/sign/"):]
            return httpx.Response(200, json={"url": f"/object/upload/sign/{rest}?token=up-token"})
        if path.startswith(prefix + "sign/"):
            if self.sign_fails:
                return httpx.Response(400, json={"message": "Object not found"})
            bucket, _, key = path[len(prefix + "sign/"):].partition("/")
            self.signed.append((bucket, key))
            return httpx.Response(200, json={"signedURL": f"/object/sign/{bucket}/{key}?token=sig"})
        if path.startswith(prefix) and request.method == "POST":
            if self.upload_fails:
                return httpx.Response(500, json={"message": "storage down"})
            bucket, _, key = path[len(prefix):].partition("/")
            self.objects[(bucket, key)] = request.content
            return httpx.Response(200, json={"Key": f"{bucket}/{key}"})
        return httpx.Response(404, text=f"unexpected {path}")

    def _replicate(self, request: httpx.Request, path: str) -> httpx.Response:
        if request.method == "POST" and path.endswith("/predictions"):
            if self.create_status >= 400:
                return httpx.Response(self.create_status, json=self.create_body or {"detail": "Invalid model"})
            body = json.loads(request.content)
            self.prediction_inputs.append(body)
            pred_id = f"pred-{len(self.predictions) + 1}"
            self.predictions[pred_id] = list(self.prediction_script)
            return httpx.Response(201, json={"id": pred_id, "status": "starting"})

        if request.method == "POST" and path.endswith("/cancel"):
            pred_id = path.split("/")[-2]
            self.canceled.append(pred_id)
            return httpx.Response(200, json={"id": pred_id, "status": "canceled"})

        if request.method == "GET" and "/predictions/" in path:
            pred_id = path.rsplit("/", 1)[-1]
            script = self.predictions[pred_id]
            status = script.pop(0) if len(script) > 1 else script[0]
            body: dict[str, Any] = {"id": pred_id, "status": status}
            if status == "succeeded":
                body["output"] = self.prediction_output
            if status == "failed":
                body["error"] = self.prediction_error or "NSFW content detected"
            return httpx.Response(200, json=body)
        return httpx.Response(404, text=f"unexpected {path}")

    def _kie(self, request: httpx.Request, path: str) -> httpx.Response:
        if path == "/api/v1/sora/createTask":
            if self.kie_fails:
                return httpx.Response(500, json={"code": 500, "msg": "busy"})
            self.kie_payloads.append(json.loads(request.content))
            return httpx.Response(200, json={"code": 200, "data": {"taskId": f"task-{len(self.kie_payloads)}"}})
        if path == "/api/v1/sora/record-detail":
            return httpx.Response(200, json={"code": 200, "data": self.kie_record})
        return httpx.Response(404, text=f"unexpected {path}")

    def _pollinations(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            self.pollinations_bodies.append(json.loads(request.content))
        outcome = self.pollinations_script.pop(0) if len(self.pollinations_script) > 1 else self.pollinations_script[0]
        if outcome == "nsfw":
            return httpx.Response(400, json={"message": "NSFW content detected, safe mode"})
        if outcome == "error":
            return httpx.Response(500, text="internal")
        return httpx.Response(200, content=b"\xff\xd8jpeg", headers={"content-type": "image/jpeg"})


class FakeJobStore:
    """In-memory JobStore with the same async interface."""

    def __init__(self) -> None:
        self.jobs: dict[str, GenerationJob] = {}
        self.logs: list[GenerationLog] = []
        self.fail_writes = False
        self._tick = 0

    def _check(self) -> None:
        if self.fail_writes:
            raise OperationalError("INSERT", {}, Exception("database is down"))

    async def create_job(self, **fields: Any) -> GenerationJob:
        self._check()
        self._tick += 1
        fields.setdefault("created_at", datetime(2026, 1, 1) + timedelta(seconds=self._tick))
        fields.setdefault("credit_state", "pending")
        job = GenerationJob(**fields)
        self.jobs[job.id] = job
        return job

    async def get_job(self, job_id: str) -> GenerationJob | None:
        return self.jobs.get(job_id)

    async def find_by_idempotency(self, user_id: str, key: str) -> GenerationJob | None:
        matches = [j for j in self.jobs.values() if j.user_id == user_id and j.idempotency_key == key]
        return max(matches, key=lambda j: j.created_at) if matches else None

    async def update_job(self, job_id: str, **fields: Any) -> GenerationJob | None:
        self._check()
        job = self.jobs.get(job_id)
        if job is None:
            return None
        for key, value in fields.items():
            setattr(job, key, value)
        return job

    async def claim_for_completion(self, job_id: str) -> bool:
        self._check()
        job = self.jobs.get(job_id)
        if job is None or job.status in ("completed", "persisting"):
            return False
        job.status = "persisting"
        return True

    async def list_stale(self, statuses, older_than, provider=None, limit=100) -> list[GenerationJob]:
        return [
            j for j in self.jobs.values()
            if j.status in statuses and (provider is None or j.provider == provider)
        ][:limit]

    async def log_generation(self, **fields: Any) -> GenerationLog:
        self._check()
        entry = GenerationLog(**fields)
        self.logs.append(entry)
        return entry


class PublishRecorder:

    def __init__(self) -> None:
        self.messages: list[tuple[str, str, dict[str, Any]]] = []

    async def __call__(self, job_id: str, status: str, **extra: Any) -> None:
        self.messages.append((job_id, status, extra))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        SUPABASE_URL=SUPABASE,
        SUPABASE_ANON_KEY="anon",
        SUPABASE_SERVICE_ROLE_KEY="service",
        REPLICATE_API_TOKEN="r8_test",
        REPLICATE_BASE_URL=REPLICATE,
        KIE_BASE_URL=KIE,
        KIE_API_KEY="kie-key",
        KIE_WEBHOOK_URL="https://api.photoglow.test/api/webhooks/kie-sora2",
        WEBHOOK_SHARED_SECRET="hook-secret",
        POLLINATIONS_URL=POLLINATIONS,
        OUTPUT_PUBLIC=True,
        ALLOW_TEST_MODE=True,
    )


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def http_client(remote: FakeRemote) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(remote.handler))


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def job_store() -> FakeJobStore:
    return FakeJobStore()


@pytest.fixture
def published() -> PublishRecorder:
    return PublishRecorder()


@pytest.fixture
def services(settings, http_client, job_store, published, fake_clock):
    """Full service graph over the fakes, with a deterministic polling clock."""
    built = build_services(settings, http_client, publish=published, store=job_store)
    built.orchestrator.polling = PollingDriver(
        built.replicate,
        interval=settings.POLL_INTERVAL_S,
        budget=settings.poll_budget_s,
        clock=fake_clock,
        sleep=fake_clock.sleep,
    )
    return built
