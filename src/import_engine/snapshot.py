"""
Snapshots: immutable exports of a scope taken before any mutation.

A snapshot file is the undo log for the mutation that follows it. It is
written with exclusive create and fsynced before the caller may write to
the authoritative store.
"""

import logging
from datetime import datetime
from pathlib import Path

from .models import RoadRecord, SnapshotReason, SnapshotRecord
from .repository import SnapshotRepository, new_id
from .road_store import RoadAssetStore
from .scope import resolve_scope
from .storage import ImportFileStore

logger = logging.getLogger(__name__)


async def create_snapshot(
    store: RoadAssetStore,
    files: ImportFileStore,
    snapshots: SnapshotRepository,
    version_id: str,
    scope: str,
    reason: SnapshotReason,
    created_at: datetime
) -> SnapshotRecord:
    """
    Export every record in scope, active or not, to a new snapshot file.

    Returns:
        SnapshotRecord registered for the file
    """
    records = await resolve_scope(store, scope, include_inactive=True)
    snapshot_id = new_id("RAS")
    path = files.snapshot_path(snapshot_id)

    files.write_once(path, {
        "type": "FeatureCollection",
        "metadata": {
            "snapshotId": snapshot_id,
            "versionId": version_id,
            "scope": scope,
            "reason": reason.value,
            "createdAt": created_at.isoformat(),
            "featureCount": len(records),
        },
        "features": [record.to_feature() for record in records],
    })
    logger.info(
        "Snapshot %s: %d records in scope %s before %s of %s",
        snapshot_id, len(records), scope, reason.value, version_id,
    )

    return await snapshots.register(
        snapshot_id=snapshot_id,
        version_id=version_id,
        reason=reason,
        path=str(path),
        scope=scope,
        created_at=created_at,
    )


def read_snapshot(files: ImportFileStore, path: Path | str) -> list[RoadRecord]:
    """Load the records of a snapshot file."""
    data = files.read_json(path)
    return [RoadRecord.from_feature(feature) for feature in data.get("features", [])]
