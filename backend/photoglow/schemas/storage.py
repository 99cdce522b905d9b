from __future__ import annotations
"""Pydantic v2 schemas for direct client uploads."""

from pydantic import BaseModel, Field


class SignedUploadRequest(BaseModel):
    filename: str = Field("upload.jpg", min_length=1, max_length=255)
    content_type: str | None = Field(None, alias="contentType", max_length=100)

    model_config = {"populate_by_name": True}


class SignedUploadResponse(BaseModel):
    ok: bool = True
    bucket: str
    path: str
    signed_url: str
    token: str
