"""
Persistence for import versions, jobs and the snapshot registry.

Repositories operate on a caller-owned AsyncSession; the caller decides
transaction boundaries.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import NotFoundError
from .models import (
    ImportJob,
    ImportVersion,
    JobStatus,
    JobType,
    SnapshotReason,
    SnapshotRecord,
    VersionStatus,
)
from .tables import ImportJobRow, ImportSnapshotRow, ImportVersionRow, VersionCounterRow

VERSION_COUNTER = "import_versions"


def new_id(prefix: str) -> str:
    """Short opaque id such as 'IV-3f9a12c4'."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


class VersionRepository:
    """ImportVersion rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def next_version_number(self) -> int:
        """
        Allocate the next version number.

        Uses max(existing, last allocated) + 1 so numbers of deleted drafts
        are never handed out again.
        """
        counter = await self.session.get(VersionCounterRow, VERSION_COUNTER, with_for_update=True)
        max_existing = await self.session.scalar(
            select(func.coalesce(func.max(ImportVersionRow.version_number), 0))
        )
        next_number = max(max_existing or 0, counter.last_value if counter else 0) + 1

        if counter is None:
            self.session.add(VersionCounterRow(name=VERSION_COUNTER, last_value=next_number))
        else:
            counter.last_value = next_number
        await self.session.flush()
        return next_number

    async def create(self, **values: Any) -> ImportVersion:
        row = ImportVersionRow(**values)
        self.session.add(row)
        await self.session.flush()
        await self.session.refresh(row)
        return ImportVersion.model_validate(row)

    async def _get_row(self, version_id: str, for_update: bool = False) -> ImportVersionRow:
        stmt = select(ImportVersionRow).where(ImportVersionRow.id == version_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = await self.session.scalar(stmt)
        if row is None:
            raise NotFoundError("Version", version_id)
        return row

    async def get(self, version_id: str, for_update: bool = False) -> ImportVersion:
        return ImportVersion.model_validate(await self._get_row(version_id, for_update))

    async def list_versions(
        self,
        status: Optional[VersionStatus] = None,
        limit: int = 20,
        offset: int = 0
    ) -> tuple[list[ImportVersion], int]:
        """Versions newest first, plus the total matching count."""
        stmt = select(ImportVersionRow)
        count_stmt = select(func.count()).select_from(ImportVersionRow)
        if status is not None:
            stmt = stmt.where(ImportVersionRow.status == status.value)
            count_stmt = count_stmt.where(ImportVersionRow.status == status.value)

        stmt = stmt.order_by(ImportVersionRow.version_number.desc()).limit(limit).offset(offset)
        rows = (await self.session.scalars(stmt)).all()
        total = await self.session.scalar(count_stmt)
        return [ImportVersion.model_validate(r) for r in rows], total or 0

    async def update(self, version_id: str, **values: Any) -> ImportVersion:
        row = await self._get_row(version_id)
        for key, value in values.items():
            setattr(row, key, value)
        await self.session.flush()
        return ImportVersion.model_validate(row)

    async def delete(self, version_id: str) -> None:
        await self.session.execute(
            delete(ImportVersionRow).where(ImportVersionRow.id == version_id)
        )

    async def archive_published(self, except_id: str, at: datetime) -> list[str]:
        """
        Archive whichever other version is published.

        Flushed immediately so the subsequent publish never coexists with
        another published row.

        Returns:
            Ids of archived versions
        """
        rows = (await self.session.scalars(
            select(ImportVersionRow).where(
                ImportVersionRow.status == VersionStatus.PUBLISHED.value,
                ImportVersionRow.id != except_id,
            )
        )).all()
        for row in rows:
            row.status = VersionStatus.ARCHIVED.value
            row.archived_at = at
        await self.session.flush()
        return [row.id for row in rows]

    async def published(self) -> Optional[ImportVersion]:
        row = await self.session.scalar(
            select(ImportVersionRow).where(
                ImportVersionRow.status == VersionStatus.PUBLISHED.value
            )
        )
        return ImportVersion.model_validate(row) if row else None


class JobRepository:
    """ImportJob rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, version_id: str, job_type: JobType) -> ImportJob:
        row = ImportJobRow(
            id=new_id("IJ"),
            version_id=version_id,
            job_type=job_type.value,
            status=JobStatus.PENDING.value,
            progress=0,
        )
        self.session.add(row)
        await self.session.flush()
        await self.session.refresh(row)
        return ImportJob.model_validate(row)

    async def get_row(self, job_id: str) -> ImportJobRow:
        row = await self.session.get(ImportJobRow, job_id)
        if row is None:
            raise NotFoundError("Job", job_id)
        return row

    async def get(self, job_id: str) -> ImportJob:
        return ImportJob.model_validate(await self.get_row(job_id))


class SnapshotRepository:
    """Registry of snapshot files in capture order."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def register(
        self,
        snapshot_id: str,
        version_id: str,
        reason: SnapshotReason,
        path: str,
        scope: str,
        created_at: datetime
    ) -> SnapshotRecord:
        row = ImportSnapshotRow(
            id=snapshot_id,
            version_id=version_id,
            reason=reason.value,
            path=path,
            scope=scope,
            created_at=created_at,
        )
        self.session.add(row)
        await self.session.flush()
        await self.session.refresh(row)
        return SnapshotRecord.model_validate(row)

    async def latest_for_version(self, version_id: str) -> Optional[SnapshotRecord]:
        """Most recent snapshot taken while making this version published."""
        row = await self.session.scalar(
            select(ImportSnapshotRow)
            .where(ImportSnapshotRow.version_id == version_id)
            .order_by(ImportSnapshotRow.sequence.desc())
            .limit(1)
        )
        return SnapshotRecord.model_validate(row) if row else None

    async def first_after(self, sequence: int, scope: str) -> Optional[SnapshotRecord]:
        """Earliest snapshot of a scope captured after the given sequence number."""
        row = await self.session.scalar(
            select(ImportSnapshotRow)
            .where(ImportSnapshotRow.sequence > sequence)
            .where(ImportSnapshotRow.scope == scope)
            .order_by(ImportSnapshotRow.sequence.asc())
            .limit(1)
        )
        return SnapshotRecord.model_validate(row) if row else None
