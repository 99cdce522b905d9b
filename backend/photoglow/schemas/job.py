from __future__ import annotations
"""Pydantic v2 schemas for generation jobs and provider callbacks."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class JobRead(BaseModel):
    """Schema for reading a generation job (owner view)."""

    id: str
    provider: str
    provider_task_id: str | None = None
    model: str | None = None
    mode: str | None = None
    status: str
    output_url: str | None = None
    error: str | None = None
    idempotency_key: str | None = None
    credit_state: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class KieCallback(BaseModel):
    """Callback body posted by Kie: ``{taskId, status, videoUrl}``."""

    model_config = ConfigDict(extra="allow")

    taskId: str | None = None
    status: str | None = None
    videoUrl: str | None = None
