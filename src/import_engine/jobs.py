"""
Job tracker for long-running validation, publish and rollback runs.

Pure bookkeeping: pending -> running -> completed | failed. Every update
commits on its own so progress is visible while the operation runs.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .errors import InvalidStateError
from .models import ImportJob, JobStatus, JobType
from .repository import JobRepository

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)

ProgressCallback = Callable[[int], Awaitable[None]]
JobOperation = Callable[[ProgressCallback], Awaitable[Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _summary(result: Any) -> Optional[dict[str, Any]]:
    if result is None:
        return None
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, dict):
        return result
    return {"result": result}


class JobTracker:
    """Creates jobs and records their progress."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create_job(self, version_id: str, job_type: JobType) -> ImportJob:
        async with self.session_factory() as session, session.begin():
            return await JobRepository(session).create(version_id, job_type)

    async def get_job(self, job_id: str) -> ImportJob:
        async with self.session_factory() as session:
            return await JobRepository(session).get(job_id)

    async def update_job_progress(
        self,
        job_id: str,
        progress: int,
        status: Optional[JobStatus] = None,
        error_message: Optional[str] = None,
        result_summary: Optional[dict[str, Any]] = None
    ) -> ImportJob:
        """
        Record progress and optionally a status transition.

        Progress is clamped to 0..100. Moving to running sets started_at the
        first time; a terminal status sets completed_at.

        Raises:
            NotFoundError: If the job does not exist
            InvalidStateError: If the job already completed or failed
        """
        async with self.session_factory() as session, session.begin():
            row = await JobRepository(session).get_row(job_id)
            if JobStatus(row.status) in TERMINAL_STATUSES:
                raise InvalidStateError(f"Job {job_id} is already {row.status}")

            now = _utcnow()
            row.progress = max(0, min(100, int(progress)))
            if status is not None:
                row.status = status.value
                if status == JobStatus.RUNNING and row.started_at is None:
                    row.started_at = now
                if status in TERMINAL_STATUSES:
                    row.completed_at = now
                    if row.started_at is None:
                        row.started_at = now
            if error_message is not None:
                row.error_message = error_message
            if result_summary is not None:
                row.result_summary = result_summary

            await session.flush()
            return ImportJob.model_validate(row)

    async def run(
        self,
        version_id: str,
        job_type: JobType,
        operation: JobOperation
    ) -> ImportJob:
        """
        Run an operation under a new job.

        The operation receives a progress callback. Its result is stored as
        the job's result summary; an exception marks the job failed with the
        error message.

        Returns:
            The job in its terminal state
        """
        job = await self.create_job(version_id, job_type)
        await self.update_job_progress(job.id, 10, JobStatus.RUNNING)

        async def progress(percent: int) -> None:
            await self.update_job_progress(job.id, percent)

        try:
            result = await operation(progress)
        except Exception as e:
            logger.exception("%s job %s for %s failed", job_type.value, job.id, version_id)
            current = await self.get_job(job.id)
            return await self.update_job_progress(
                job.id, current.progress, JobStatus.FAILED, error_message=str(e)
            )

        return await self.update_job_progress(
            job.id, 100, JobStatus.COMPLETED, result_summary=_summary(result)
        )
