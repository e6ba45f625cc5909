"""
Import Version Service.

Entry point for the versioning workflow: upload -> draft -> configure ->
validate -> diff preview -> publish -> optional rollback. Publish and
rollback are serialized by a single-writer lock and each runs in one
database transaction.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .converter import VectorConverter
from .diff import compute_road_diff
from .errors import (
    EmptyImportError,
    InvalidStateError,
    PersistenceError,
    ValidationRejectedError,
)
from .geometry import GEOMETRY_TOLERANCE, JAPAN_BOUNDS, Envelope, features_envelope
from .ingestion import (
    canonical_path,
    detect_file_type,
    list_layers,
    load_features,
    normalize_upload,
    upload_extension,
)
from .jobs import JobTracker, ProgressCallback
from .models import (
    DiffResult,
    ImportConfig,
    ImportJob,
    ImportVersion,
    JobStatus,
    JobType,
    LayerInfo,
    PublishResult,
    RollbackResult,
    ValidationResult,
    VersionStatus,
)
from .publisher import publish
from .repository import VersionRepository, new_id
from .road_store import PostGISRoadStore, RoadAssetStore
from .rollback import rollback
from .scope import encode_scope, parse_scope_strict, resolve_scope, scope_from_envelope
from .storage import ImportFileStore
from .validation import validate_features

logger = logging.getLogger(__name__)

RoadStoreFactory = Callable[[AsyncSession], RoadAssetStore]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImportVersionService:
    """
    Versioned road imports against an authoritative road store.

    Args:
        session_factory: async_sessionmaker for the version/job tables
        files: Storage for uploads, snapshots and diffs
        converter: Vector format/CRS converter
        road_store_factory: Builds the road store bound to a session
        tolerance: Geometry equality tolerance in CRS units
        bounds: Envelope used for coordinate sanity warnings
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        files: ImportFileStore,
        converter: VectorConverter,
        road_store_factory: RoadStoreFactory = PostGISRoadStore,
        tolerance: float = GEOMETRY_TOLERANCE,
        bounds: Envelope = JAPAN_BOUNDS,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.session_factory = session_factory
        self.files = files
        self.converter = converter
        self.road_store_factory = road_store_factory
        self.tolerance = tolerance
        self.bounds = bounds
        self.clock = clock
        self.jobs = JobTracker(session_factory)
        self._write_lock = asyncio.Lock()

    # --- Versions ---

    async def create_draft(
        self,
        file_bytes: bytes,
        file_name: str,
        uploaded_by: Optional[str] = None
    ) -> ImportVersion:
        """Store an upload and register it as the next draft version."""
        file_type = detect_file_type(file_name)
        version_id = new_id("IV")
        path = self.files.save_upload(version_id, upload_extension(file_type), file_bytes)

        try:
            async with self.session_factory() as session, session.begin():
                versions = VersionRepository(session)
                version = await versions.create(
                    id=version_id,
                    version_number=await versions.next_version_number(),
                    status=VersionStatus.DRAFT.value,
                    file_name=file_name,
                    file_type=file_type.value,
                    file_path=str(path),
                    import_scope="full",
                    file_size_mb=round(len(file_bytes) / (1024 * 1024), 2),
                    feature_count=0,
                    uploaded_by=uploaded_by,
                    uploaded_at=self.clock(),
                )
        except SQLAlchemyError as e:
            self.files.delete_version(version_id)
            raise PersistenceError(f"Could not register upload {file_name}: {e}") from e

        logger.info("Created draft %s (v%d) from %s", version.id, version.version_number, file_name)
        return version

    async def get_version(self, version_id: str) -> ImportVersion:
        async with self.session_factory() as session:
            return await VersionRepository(session).get(version_id)

    async def list_versions(
        self,
        status: Optional[VersionStatus] = None,
        limit: int = 20,
        offset: int = 0
    ) -> tuple[list[ImportVersion], int]:
        async with self.session_factory() as session:
            return await VersionRepository(session).list_versions(status, limit, offset)

    async def delete_version(self, version_id: str) -> None:
        """
        Delete a draft and its files.

        Raises:
            InvalidStateError: If the version is not a draft
        """
        async with self.session_factory() as session, session.begin():
            versions = VersionRepository(session)
            version = await versions.get(version_id, for_update=True)
            if version.status != VersionStatus.DRAFT:
                raise InvalidStateError(
                    f"Version {version_id} is {version.status.value}; only drafts can be deleted"
                )
            await versions.delete(version_id)

        self.files.delete_version(version_id)
        logger.info("Deleted draft %s", version_id)

    # --- Ingestion ---

    async def list_layers(self, version_id: str) -> list[LayerInfo]:
        version = await self.get_version(version_id)
        return await list_layers(version, self.files, self.converter)

    async def configure(self, version_id: str, config: ImportConfig) -> ImportVersion:
        """
        Normalize a draft's upload and store its import options.

        Raises:
            InvalidScopeError: If config.import_scope is malformed
            ConversionError: If the conversion tool fails
            EmptyImportError: If no scope is given and the file has no coordinates
        """
        scope = None
        if config.import_scope:
            scope = encode_scope(parse_scope_strict(config.import_scope))

        version = await self.get_version(version_id)
        if version.status != VersionStatus.DRAFT:
            raise InvalidStateError(f"Version {version_id} is not in draft status")

        canonical = await normalize_upload(
            version, self.files, self.converter, config.layer_name, config.source_crs
        )
        features = load_features(canonical)

        if scope is None:
            envelope = features_envelope(features)
            if envelope is None:
                raise EmptyImportError(
                    f"{version.file_name} has no coordinates to derive an import scope from"
                )
            scope = encode_scope(scope_from_envelope(envelope))
            logger.info("Derived scope %s for %s", scope, version_id)

        # A cached validation result describes the previous canonical file
        self.files.validation_path(version_id).unlink(missing_ok=True)

        async with self.session_factory() as session, session.begin():
            return await VersionRepository(session).update(
                version_id,
                file_path=str(canonical),
                feature_count=len(features),
                layer_name=config.layer_name,
                source_crs=config.source_crs,
                import_scope=scope,
                default_data_source=config.default_data_source.value,
                regional_refresh=config.regional_refresh,
            )

    # --- Review ---

    async def validate(self, version_id: str) -> ValidationResult:
        """Validate the canonical file and cache the result beside it."""
        version = await self.get_version(version_id)
        features = load_features(canonical_path(version))
        result = validate_features(features, version.default_data_source, self.bounds)
        self.files.write_json(self.files.validation_path(version_id), result.model_dump(mode="json"))
        return result

    async def get_cached_validation(self, version_id: str) -> Optional[ValidationResult]:
        path = self.files.validation_path(version_id)
        if not path.exists():
            return None
        return ValidationResult.model_validate(self.files.read_json(path))

    async def generate_diff(self, version_id: str) -> DiffResult:
        """Preview what publishing the version would change. Read-only."""
        async with self.session_factory() as session:
            version = await VersionRepository(session).get(version_id)
            features = load_features(canonical_path(version))
            current = await resolve_scope(self.road_store_factory(session), version.import_scope)

        return compute_road_diff(
            features, current, version.import_scope,
            regional_refresh=version.regional_refresh,
            tolerance=self.tolerance,
        )

    async def get_historical_diff(self, version_id: str) -> Optional[DiffResult]:
        """Diff saved when the version was published, if any."""
        version = await self.get_version(version_id)
        if not self.files.exists(version.diff_path):
            return None
        return DiffResult.model_validate(self.files.read_json(version.diff_path))

    # --- Mutations ---

    async def publish_version(
        self,
        version_id: str,
        published_by: Optional[str] = None,
        require_validation: bool = False,
        progress: Optional[ProgressCallback] = None
    ) -> PublishResult:
        """
        Publish a draft version in one transaction.

        Raises:
            NotFoundError: If the version does not exist
            InvalidStateError: If the version is not a draft
            ValidationRejectedError: If require_validation and the import is invalid
            PersistenceError: If the datastore fails; nothing is written
        """
        async with self._write_lock:
            try:
                async with self.session_factory() as session, session.begin():
                    version = await VersionRepository(session).get(version_id, for_update=True)
                    if version.status != VersionStatus.DRAFT:
                        raise InvalidStateError(f"Version {version_id} is not in draft status")

                    features = load_features(canonical_path(version))
                    if require_validation:
                        result = validate_features(
                            features, version.default_data_source, self.bounds
                        )
                        if not result.valid:
                            raise ValidationRejectedError(len(result.errors))

                    return await publish(
                        session,
                        self.road_store_factory(session),
                        self.files,
                        version,
                        features,
                        now=self.clock(),
                        published_by=published_by,
                        tolerance=self.tolerance,
                        progress=progress,
                    )
            except SQLAlchemyError as e:
                logger.error("Publish of %s rolled back: %s", version_id, e)
                raise PersistenceError(f"Publish of {version_id} failed: {e}") from e

    async def rollback_to_version(self, version_id: str) -> RollbackResult:
        """
        Restore the state a version established and make it published again.

        Raises:
            NotFoundError: If the version does not exist
            InvalidStateError: If there is no snapshot to restore
            PersistenceError: If the datastore fails; nothing is written
        """
        async with self._write_lock:
            try:
                async with self.session_factory() as session, session.begin():
                    return await rollback(
                        session,
                        self.road_store_factory(session),
                        self.files,
                        version_id,
                        now=self.clock(),
                    )
            except SQLAlchemyError as e:
                logger.error("Rollback to %s rolled back: %s", version_id, e)
                raise PersistenceError(f"Rollback to {version_id} failed: {e}") from e

    # --- Jobs ---

    async def create_job(self, version_id: str, job_type: JobType) -> ImportJob:
        return await self.jobs.create_job(version_id, job_type)

    async def update_job_progress(
        self,
        job_id: str,
        progress: int,
        status: Optional[JobStatus] = None,
        error_message: Optional[str] = None,
        result_summary: Optional[dict] = None
    ) -> ImportJob:
        return await self.jobs.update_job_progress(
            job_id, progress, status, error_message, result_summary
        )

    async def get_job(self, job_id: str) -> ImportJob:
        return await self.jobs.get_job(job_id)

    async def run_validation_job(self, version_id: str) -> ImportJob:
        async def operation(progress: ProgressCallback) -> ValidationResult:
            return await self.validate(version_id)

        return await self.jobs.run(version_id, JobType.VALIDATION, operation)

    async def run_publish_job(
        self,
        version_id: str,
        published_by: Optional[str] = None,
        require_validation: bool = False
    ) -> ImportJob:
        async def operation(progress: ProgressCallback) -> PublishResult:
            return await self.publish_version(
                version_id, published_by, require_validation, progress
            )

        return await self.jobs.run(version_id, JobType.PUBLISH, operation)

    async def run_rollback_job(self, version_id: str) -> ImportJob:
        async def operation(progress: ProgressCallback) -> RollbackResult:
            return await self.rollback_to_version(version_id)

        return await self.jobs.run(version_id, JobType.ROLLBACK, operation)
