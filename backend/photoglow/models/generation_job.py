from __future__ import annotations
"""GenerationJob ORM model: one provider job per generation request."""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from photoglow.database import Base


class JobStatus(str, enum.Enum):
    """Provider job lifecycle statuses."""

    QUEUED = "queued"
    PROCESSING = "processing"
    PERSISTING = "persisting"  # async output claimed by one completion
    SUCCEEDED = "succeeded"
    COMPLETED = "completed"    # async path, set by the callback handler
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_STATUSES = frozenset({
    JobStatus.SUCCEEDED.value,
    JobStatus.COMPLETED.value,
    JobStatus.FAILED.value,
    JobStatus.CANCELED.value,
})


class CreditState(str, enum.Enum):
    """Credit reservation states recorded alongside a job."""

    PENDING = "pending"
    RESERVED = "reserved"
    UNRESERVED = "unreserved"  # advisory reservation failure, nothing debited
    SETTLED = "settled"
    REFUNDED = "refunded"


class GenerationJob(Base):
    """A job submitted to a generation provider."""

    __tablename__ = "generation_jobs"
    __table_args__ = {
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=lambda: uuid.uuid4().hex,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_task_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    mode: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.QUEUED.value, index=True
    )
    output_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    output_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(160), nullable=True, index=True
    )
    credit_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credit_state: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CreditState.PENDING.value
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True, server_default=func.now(), onupdate=func.now()
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
