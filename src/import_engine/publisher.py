"""
Publisher: apply a draft version to the authoritative road store.

The caller runs ``publish`` inside one database transaction; nothing here
commits. The snapshot is written durably before the first mutation.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from .diff import compute_road_diff
from .geometry import GEOMETRY_TOLERANCE
from .jobs import ProgressCallback
from .models import (
    DataSource,
    ImportVersion,
    PublishResult,
    RoadFeature,
    RoadRecord,
    RoadStatus,
    RoadType,
    SnapshotReason,
    VersionStatus,
)
from .repository import SnapshotRepository, VersionRepository
from .road_store import RoadAssetStore
from .scope import resolve_scope
from .snapshot import create_snapshot
from .storage import ImportFileStore

logger = logging.getLogger(__name__)

DEFAULT_ROAD_TYPE = RoadType.LOCAL.value
DEFAULT_LANES = 2
DEFAULT_DIRECTION = "both"

# Import fields written on update when the feature asserts them
UPDATABLE_FIELDS = (
    "name", "name_ja", "display_name", "road_type",
    "lanes", "direction", "region", "data_source",
)


def new_road_record(
    feature: RoadFeature,
    default_data_source: DataSource,
    now: datetime
) -> RoadRecord:
    """Record for an unseen id, defaults filling unsupplied fields."""
    props = feature.properties
    return RoadRecord(
        id=feature.id,
        name=props.name,
        name_ja=props.name_ja,
        display_name=props.display_name or props.name,
        road_type=props.road_type or DEFAULT_ROAD_TYPE,
        lanes=props.lanes if props.lanes is not None else DEFAULT_LANES,
        direction=props.direction or DEFAULT_DIRECTION,
        status=RoadStatus.ACTIVE,
        region=props.region,
        data_source=props.data_source or default_data_source.value,
        valid_from=now,
        updated_at=now,
        geometry=feature.geometry,
    )


def supplied_values(feature: RoadFeature) -> dict[str, Any]:
    """Only the fields the import explicitly asserts."""
    return {
        field: getattr(feature.properties, field)
        for field in UPDATABLE_FIELDS
        if feature.asserts(field)
    }


async def publish(
    session: AsyncSession,
    store: RoadAssetStore,
    files: ImportFileStore,
    version: ImportVersion,
    features: list[dict[str, Any]],
    now: datetime,
    published_by: Optional[str] = None,
    tolerance: float = GEOMETRY_TOLERANCE,
    progress: Optional[ProgressCallback] = None
) -> PublishResult:
    """
    Publish a draft version.

    Steps: snapshot the scope, re-read it, insert unseen ids and update
    seen ones, deactivate absent records under regional refresh, archive the
    published version, then mark this one published.

    Args:
        session: AsyncSession owning the transaction
        store: Authoritative road store bound to the same session
        files: File store for the snapshot and the saved diff
        version: Draft version to publish
        features: Raw features of the version's canonical file
        now: Publish timestamp
        published_by: Operator name
        tolerance: Geometry tolerance used for the diff
        progress: Optional async callback receiving a percentage

    Returns:
        PublishResult with per-category counts
    """
    versions = VersionRepository(session)
    snapshots = SnapshotRepository(session)
    scope = version.import_scope

    async def report(percent: int) -> None:
        if progress is not None:
            await progress(percent)

    # (a) durable snapshot before any write
    snapshot = await create_snapshot(
        store, files, snapshots, version.id, scope, SnapshotReason.PUBLISH, now
    )
    await report(30)

    # (b) re-read the scope the writes are applied against
    current = await resolve_scope(store, scope)
    diff = compute_road_diff(
        features, current, scope,
        regional_refresh=version.regional_refresh,
        tolerance=tolerance,
    )
    await report(45)

    # (c) inserts and updates
    seen = {record.id for record in current}
    skipped = 0
    for raw in features:
        try:
            feature = RoadFeature.from_geojson(raw)
        except ValidationError as e:
            logger.warning("Skipping feature with invalid properties in %s: %s", version.id, e)
            skipped += 1
            continue
        if feature.id is None:
            skipped += 1
            continue

        if feature.id in seen:
            await store.update_road(feature.id, supplied_values(feature), feature.geometry, now)
        else:
            await store.insert_road(new_road_record(feature, version.default_data_source, now))
            seen.add(feature.id)
    await report(75)

    # (d) regional refresh soft-deletes records the import omits
    deactivated = 0
    if version.regional_refresh:
        absent = [f["properties"]["id"] for f in diff.deactivated]
        deactivated = await store.deactivate_roads(absent, now)
    await report(85)

    diff_path = files.write_json(files.diff_path(version.id), diff.model_dump(mode="json"))

    # (e) then (f): archive first so two rows are never published at once
    archived = await versions.archive_published(except_id=version.id, at=now)
    await versions.update(
        version.id,
        status=VersionStatus.PUBLISHED.value,
        published_at=now,
        published_by=published_by,
        snapshot_path=snapshot.path,
        diff_path=str(diff_path),
        added_count=len(diff.added),
        updated_count=len(diff.updated),
        deactivated_count=deactivated,
    )

    logger.info(
        "Published %s (scope %s): %d added, %d updated, %d deactivated, %d unchanged, "
        "%d skipped; archived %s",
        version.id, scope, len(diff.added), len(diff.updated), deactivated,
        diff.unchanged, skipped, archived or "none",
    )
    return PublishResult(
        added=len(diff.added),
        updated=len(diff.updated),
        deactivated=deactivated,
        unchanged=diff.unchanged,
        skipped=skipped,
        snapshot_path=snapshot.path,
        published_at=now,
        scope=scope,
    )
