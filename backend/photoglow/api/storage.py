"""Direct client uploads into the caller's upload prefix."""

from __future__ import annotations

import secrets
import time

from fastapi import APIRouter, Depends

from photoglow.api.deps import current_user
from photoglow.schemas import SignedUploadRequest, SignedUploadResponse
from photoglow.services.errors import ValidationFailed
from photoglow.services.storage_guard import PathRejected, sanitize_segment, tenant_prefix
from photoglow.services.wiring import Services, get_services

router = APIRouter()


@router.post("/signed-upload", response_model=SignedUploadResponse)
async def signed_upload(
    req: SignedUploadRequest,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    """Signed upload URL for ``<UPLOAD_PREFIX>/<user>/<ts>-<rand>-<filename>``."""
    settings = services.settings
    try:
        filename = sanitize_segment(req.filename)
        prefix = tenant_prefix(settings.BUCKET_UPLOADS, user_id, settings)
    except PathRejected as e:
        raise ValidationFailed("invalid_filename", details=str(e)) from e

    path = f"{prefix}{int(time.time() * 1000)}-{secrets.token_hex(4)}-{filename}"
    signed = await services.storage.create_signed_upload_url(settings.BUCKET_UPLOADS, path)
    return SignedUploadResponse(
        bucket=settings.BUCKET_UPLOADS,
        path=signed["path"],
        signed_url=signed["signed_url"],
        token=signed["token"],
    )
