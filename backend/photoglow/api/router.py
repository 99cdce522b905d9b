from __future__ import annotations
"""Master API router: mounts all sub-routers."""

from fastapi import APIRouter

from photoglow.api.credits import router as credits_router
from photoglow.api.generate import router as jobs_router
from photoglow.api.models import router as models_router
from photoglow.api.preview import router as preview_router
from photoglow.api.storage import router as storage_router
from photoglow.api.system import router as system_router
from photoglow.api.videos import router as videos_router
from photoglow.api.webhooks import router as webhooks_router

api_router = APIRouter(prefix="/api", redirect_slashes=False)

api_router.include_router(jobs_router, prefix="/v1/jobs", tags=["Jobs"])
api_router.include_router(videos_router, prefix="/v1/videos", tags=["Videos"])
api_router.include_router(models_router, prefix="/v1/models", tags=["Models"])
api_router.include_router(preview_router, prefix="/v1/preview", tags=["Preview"])
api_router.include_router(webhooks_router, prefix="/webhooks", tags=["Webhooks"])
api_router.include_router(storage_router, prefix="/storage", tags=["Storage"])
api_router.include_router(credits_router, prefix="/credits", tags=["Credits"])
api_router.include_router(system_router, prefix="/system", tags=["System"])
