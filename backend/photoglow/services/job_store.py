"""Job store: ProviderJob and generation-log rows via SQLAlchemy async.

Methods raise ``SQLAlchemyError`` on failure; callers decide whether a
write is essential or best-effort.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from photoglow.models import GenerationJob, GenerationLog, JobStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNCLAIMABLE = (JobStatus.COMPLETED.value, JobStatus.PERSISTING.value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def best_effort(awaitable: Awaitable[T], what: str) -> T | None:
    """Await a metadata write, logging instead of raising on DB errors."""
    try:
        return await awaitable
    except SQLAlchemyError:
        logger.warning("Metadata write failed (%s)", what, exc_info=True)
        return None


class JobStore:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def create_job(self, **fields: Any) -> GenerationJob:
        job = GenerationJob(**fields)
        async with self._sessions() as session:
            session.add(job)
            await session.commit()
            await session.refresh(job)
        return job

    async def get_job(self, job_id: str) -> GenerationJob | None:
        async with self._sessions() as session:
            return await session.get(GenerationJob, job_id)

    async def find_by_idempotency(self, user_id: str, key: str) -> GenerationJob | None:
        """Newest job for (user, key), or None."""
        stmt = (
            select(GenerationJob)
            .where(GenerationJob.user_id == user_id, GenerationJob.idempotency_key == key)
            .order_by(GenerationJob.created_at.desc())
            .limit(1)
        )
        async with self._sessions() as session:
            return (await session.execute(stmt)).scalars().first()

    async def update_job(self, job_id: str, **fields: Any) -> GenerationJob | None:
        async with self._sessions() as session:
            job = await session.get(GenerationJob, job_id)
            if job is None:
                return None
            for key, value in fields.items():
                setattr(job, key, value)
            job.updated_at = utcnow()
            await session.commit()
            await session.refresh(job)
            return job

    async def claim_for_completion(self, job_id: str) -> bool:
        """Move a job to ``persisting`` unless another completion got there first.

        The conditional UPDATE is the lock: exactly one concurrent caller
        sees a matched row.
        """
        stmt = (
            update(GenerationJob)
            .where(GenerationJob.id == job_id, GenerationJob.status.not_in(_UNCLAIMABLE))
            .values(status=JobStatus.PERSISTING.value, updated_at=utcnow())
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def list_stale(
        self,
        statuses: tuple[str, ...],
        older_than: timedelta,
        provider: str | None = None,
        limit: int = 100,
    ) -> list[GenerationJob]:
        cutoff = utcnow() - older_than
        stmt = (
            select(GenerationJob)
            .where(GenerationJob.status.in_(statuses), GenerationJob.created_at < cutoff)
            .order_by(GenerationJob.created_at)
            .limit(limit)
        )
        if provider:
            stmt = stmt.where(GenerationJob.provider == provider)
        async with self._sessions() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def log_generation(self, **fields: Any) -> GenerationLog:
        entry = GenerationLog(**fields)
        async with self._sessions() as session:
            session.add(entry)
            await session.commit()
        return entry
