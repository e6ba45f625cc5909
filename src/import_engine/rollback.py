"""
Rollback: restore the dataset state a previously published version left.

Snapshots are taken immediately before each publish or rollback, so the
state a version established in its scope is captured by the first snapshot
of that scope registered after the version last became published. Rollback
upserts every record of that snapshot, overwriting every field, deactivates
in-scope roads the snapshot does not know, then re-publishes the version.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .errors import InvalidStateError
from .models import RollbackResult, SnapshotReason, SnapshotRecord, VersionStatus
from .repository import SnapshotRepository, VersionRepository
from .road_store import RoadAssetStore
from .scope import resolve_scope
from .snapshot import create_snapshot, read_snapshot
from .storage import ImportFileStore

logger = logging.getLogger(__name__)


async def find_restore_snapshot(
    snapshots: SnapshotRepository,
    version_id: str,
    scope: str
) -> Optional[SnapshotRecord]:
    """
    Snapshot holding the state the version established in its scope.

    Returns None when nothing was published to the scope since, in which
    case the scope still holds the version's state.

    Raises:
        InvalidStateError: If the version was never published
    """
    own = await snapshots.latest_for_version(version_id)
    if own is None:
        raise InvalidStateError(f"Version {version_id} has no snapshot to roll back to")
    return await snapshots.first_after(own.sequence, scope)


async def rollback(
    session: AsyncSession,
    store: RoadAssetStore,
    files: ImportFileStore,
    version_id: str,
    now: datetime
) -> RollbackResult:
    """
    Roll the dataset back to a version. Runs in the caller's transaction.

    Raises:
        NotFoundError: If the version does not exist
        InvalidStateError: If there is no usable snapshot, or the version
            is still the live state of the dataset
    """
    versions = VersionRepository(session)
    snapshots = SnapshotRepository(session)

    target = await versions.get(version_id)
    if not target.snapshot_path or not files.exists(target.snapshot_path):
        raise InvalidStateError(f"Version {version_id} has no snapshot file")

    scope = target.import_scope
    source = await find_restore_snapshot(snapshots, version_id, scope)
    if source is None and target.status == VersionStatus.PUBLISHED:
        raise InvalidStateError(
            f"Version {version_id} is still the live state; nothing to roll back"
        )
    if source is not None and not files.exists(source.path):
        raise InvalidStateError(f"Snapshot file {source.path} is missing")

    # The current state becomes undoable before it is overwritten
    pre_rollback = await create_snapshot(
        store, files, snapshots, version_id, scope, SnapshotReason.ROLLBACK, now
    )

    restored = 0
    deactivated = 0
    if source is not None:
        records = read_snapshot(files, source.path)
        for record in records:
            await store.upsert_road(record, now)
        restored = len(records)

        # Roads added to the scope after the snapshot did not exist then
        known = {record.id for record in records}
        absent = [r.id for r in await resolve_scope(store, scope) if r.id not in known]
        deactivated = await store.deactivate_roads(absent, now)
    else:
        logger.info(
            "Scope %s unchanged since %s was published; re-publishing only", scope, version_id
        )

    archived = await versions.archive_published(except_id=version_id, at=now)
    await versions.update(
        version_id,
        status=VersionStatus.PUBLISHED.value,
        published_at=now,
        archived_at=None,
    )

    logger.info(
        "Rolled back to %s from snapshot %s: %d records restored, %d deactivated; archived %s",
        version_id, source.id if source else pre_rollback.id, restored, deactivated,
        archived or "none",
    )
    return RollbackResult(
        version_id=version_id,
        restored=restored,
        deactivated=deactivated,
        snapshot_path=source.path if source else pre_rollback.path,
        pre_rollback_snapshot_path=pre_rollback.path,
        rolled_back_at=now,
    )
