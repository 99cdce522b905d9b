"""ORM model package: registers all models with Base.metadata."""

from photoglow.models.generation_job import (
    CreditState,
    GenerationJob,
    JobStatus,
    TERMINAL_STATUSES,
)
from photoglow.models.generation_log import GenerationLog

__all__ = [
    "CreditState",
    "GenerationJob",
    "GenerationLog",
    "JobStatus",
    "TERMINAL_STATUSES",
]
