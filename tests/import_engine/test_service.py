"""
End-to-end tests for the import version workflow.

Upload -> configure -> validate -> diff -> publish -> rollback against an
in-memory road store and a SQLite version database.
"""

import json

import pytest
from sqlalchemy.exc import OperationalError
from src.import_engine import (
    ConversionError,
    EmptyImportError,
    ImportConfig,
    ImportVersionService,
    InvalidScopeError,
    InvalidStateError,
    PersistenceError,
    ValidationRejectedError,
)
from src.import_engine.models import JobStatus, LayerInfo, RoadStatus, VersionStatus

from factories import NAGOYA, NAGOYA_EAST, collection, line, road
from fakes import FakeRoadStore


def naka_road(n, name, **props):
    """Road n in region naka with a distinct geometry."""
    offset = n * 0.001
    geometry = line((136.90 + offset, 35.17), (136.905 + offset, 35.175))
    return road(f"R{n}", geometry, name=name, region="naka", dataSource="manual", **props)


async def published_count(service):
    _, total = await service.list_versions(status=VersionStatus.PUBLISHED)
    return total


class TestConfigure:
    """Normalization and scope handling."""

    @pytest.mark.asyncio
    async def test_draft_defaults(self, service):
        draft = await service.create_draft(b"{}", "roads.geojson", uploaded_by="alice")
        assert draft.status == VersionStatus.DRAFT
        assert draft.feature_count == 0
        assert draft.import_scope == "full"
        assert draft.default_data_source.value == "official_ledger"
        assert draft.uploaded_by == "alice"
        assert draft.id.startswith("IV-")

    @pytest.mark.asyncio
    async def test_scope_derived_from_extent(self, make_version):
        version = await make_version([road("R1", NAGOYA), road("R2", NAGOYA_EAST)], scope=None)
        assert version.import_scope == "bbox:136.9,35.17,136.96,35.18"
        assert version.feature_count == 2

    @pytest.mark.asyncio
    async def test_legacy_ward_scope_is_normalized(self, make_version):
        version = await make_version([road("R1", NAGOYA)], scope="ward:naka")
        assert version.import_scope == "region:naka"

    @pytest.mark.asyncio
    async def test_invalid_scope_is_never_stored(self, service):
        draft = await service.create_draft(json.dumps(collection()).encode(), "roads.geojson")
        with pytest.raises(InvalidScopeError):
            await service.configure(draft.id, ImportConfig(import_scope="bbox:1,2"))
        assert (await service.get_version(draft.id)).import_scope == "full"

    @pytest.mark.asyncio
    async def test_empty_import_without_scope(self, make_version):
        with pytest.raises(EmptyImportError):
            await make_version([], scope=None)

    @pytest.mark.asyncio
    async def test_geopackage_is_converted(self, service, converter):
        converter.output = collection(road("R1", NAGOYA))
        converter.layers = [LayerInfo(name="roads", geometry_type="Line String")]
        draft = await service.create_draft(b"gpkg-bytes", "roads.gpkg")

        layers = await service.list_layers(draft.id)
        version = await service.configure(
            draft.id, ImportConfig(layer_name="roads", source_crs="EPSG:6675")
        )

        assert [layer.name for layer in layers] == ["roads"]
        assert version.file_path.endswith("converted.geojson")
        assert version.feature_count == 1
        assert version.layer_name == "roads"
        assert version.source_crs == "EPSG:6675"

    @pytest.mark.asyncio
    async def test_conversion_failure_propagates(self, service, converter):
        converter.error = ConversionError("ogr2ogr failed", returncode=1)
        draft = await service.create_draft(b"gpkg-bytes", "roads.gpkg")
        with pytest.raises(ConversionError):
            await service.configure(draft.id, ImportConfig(import_scope="full"))

    @pytest.mark.asyncio
    async def test_reconfigure_clears_cached_validation(self, service, make_version):
        version = await make_version([road("R1", NAGOYA)])
        await service.validate(version.id)
        assert await service.get_cached_validation(version.id) is not None

        await service.configure(version.id, ImportConfig(import_scope="full"))
        assert await service.get_cached_validation(version.id) is None


class TestReview:
    """Validation and diff preview."""

    @pytest.mark.asyncio
    async def test_validation_is_cached(self, service, make_version, files):
        version = await make_version([road("R1", NAGOYA), road(None, NAGOYA)])
        result = await service.validate(version.id)

        assert not result.valid
        assert result.missing_id_count == 1
        cached = files.read_json(files.validation_path(version.id))
        assert cached["missing_id_count"] == 1
        assert (await service.get_cached_validation(version.id)) == result

    @pytest.mark.asyncio
    async def test_diff_is_read_only(self, service, make_version, road_store):
        road_store.add(id="A", name="x", geometry=NAGOYA)
        road_store.add(id="B", name="y", geometry=NAGOYA_EAST)
        before = dict(road_store.records)

        version = await make_version(
            [road("A", NAGOYA, name="x2"), road("C", NAGOYA, name="z")],
            regional_refresh=True,
        )
        diff = await service.generate_diff(version.id)

        assert [f["properties"]["id"] for f in diff.updated] == ["A"]
        assert [f["properties"]["id"] for f in diff.added] == ["C"]
        assert [f["properties"]["id"] for f in diff.deactivated] == ["B"]
        assert road_store.records == before


class TestPublish:
    """Applying a draft to the road store."""

    @pytest.mark.asyncio
    async def test_insert_defaults(self, service, make_version, road_store):
        version = await make_version([road("R1", NAGOYA), road("R2", NAGOYA, dataSource="manual")])
        result = await service.publish_version(version.id, published_by="bob")

        assert result.added == 2
        r1 = road_store.records["R1"]
        assert r1.road_type == "local"
        assert r1.lanes == 2
        assert r1.direction == "both"
        assert r1.status == RoadStatus.ACTIVE
        assert r1.data_source == "official_ledger"
        assert road_store.records["R2"].data_source == "manual"

        published = await service.get_version(version.id)
        assert published.status == VersionStatus.PUBLISHED
        assert published.published_by == "bob"
        assert published.added_count == 2

    @pytest.mark.asyncio
    async def test_update_writes_supplied_fields_only(self, service, make_version, road_store):
        road_store.add(id="R1", name="old", road_type="arterial", lanes=4, geometry=NAGOYA)
        version = await make_version([road("R1", NAGOYA_EAST, name="new")])

        result = await service.publish_version(version.id)

        assert result.updated == 1
        r1 = road_store.records["R1"]
        assert r1.name == "new"
        assert r1.road_type == "arterial"
        assert r1.lanes == 4
        assert r1.geometry == NAGOYA_EAST
        assert r1.updated_at is not None

    @pytest.mark.asyncio
    async def test_unusable_features_are_skipped(self, service, make_version, road_store):
        version = await make_version([
            road("R1", NAGOYA),
            road(None, NAGOYA),
            road("R2", NAGOYA, lanes="many"),
            {"type": "Feature", "properties": ["R3"], "geometry": NAGOYA},
            road("R4", "oops"),
        ])
        result = await service.publish_version(version.id)

        assert result.skipped == 4
        assert set(road_store.records) == {"R1"}

    @pytest.mark.asyncio
    async def test_snapshot_written_before_changes(self, service, make_version, road_store, files):
        road_store.add(id="R1", name="before", geometry=NAGOYA)
        version = await make_version([road("R1", NAGOYA, name="after")])

        result = await service.publish_version(version.id)

        snapshot = files.read_json(result.snapshot_path)
        assert snapshot["metadata"]["versionId"] == version.id
        assert snapshot["metadata"]["reason"] == "publish"
        assert [f["properties"]["name"] for f in snapshot["features"]] == ["before"]

    @pytest.mark.asyncio
    async def test_regional_refresh_soft_deletes(self, service, make_version, road_store):
        road_store.add(id="A", region="naka", geometry=NAGOYA)
        road_store.add(id="B", region="naka", geometry=NAGOYA)
        road_store.add(id="C", region="higashi", geometry=NAGOYA)
        version = await make_version(
            [road("A", NAGOYA, region="naka")], scope="region:naka", regional_refresh=True
        )

        result = await service.publish_version(version.id)

        assert result.deactivated == 1
        assert road_store.records["B"].status == RoadStatus.INACTIVE
        assert road_store.records["B"].valid_to is not None
        assert road_store.records["C"].status == RoadStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_incremental_publish_never_deactivates(self, service, make_version, road_store):
        road_store.add(id="A", region="naka", geometry=NAGOYA)
        road_store.add(id="B", region="naka", geometry=NAGOYA)
        version = await make_version([road("A", NAGOYA, region="naka")], scope="region:naka")

        result = await service.publish_version(version.id)

        assert result.deactivated == 0
        assert result.unchanged == 1
        assert road_store.records["B"].status == RoadStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_publish_non_draft_rejected(self, service, make_version):
        version = await make_version([road("R1", NAGOYA)])
        await service.publish_version(version.id)
        with pytest.raises(InvalidStateError):
            await service.publish_version(version.id)

    @pytest.mark.asyncio
    async def test_single_published_version(self, service, make_version):
        v1 = await make_version([road("R1", NAGOYA)])
        v2 = await make_version([road("R2", NAGOYA_EAST)])

        await service.publish_version(v1.id)
        await service.publish_version(v2.id)

        assert await published_count(service) == 1
        archived = await service.get_version(v1.id)
        assert archived.status == VersionStatus.ARCHIVED
        assert archived.archived_at is not None

    @pytest.mark.asyncio
    async def test_historical_diff_saved(self, service, make_version):
        version = await make_version([road("R1", NAGOYA)])
        assert await service.get_historical_diff(version.id) is None

        await service.publish_version(version.id)
        diff = await service.get_historical_diff(version.id)

        assert diff.stats.added_count == 1

    @pytest.mark.asyncio
    async def test_validation_gate(self, service, make_version, road_store):
        version = await make_version([road(None, NAGOYA)])
        with pytest.raises(ValidationRejectedError) as exc_info:
            await service.publish_version(version.id, require_validation=True)

        assert exc_info.value.error_count == 1
        assert (await service.get_version(version.id)).status == VersionStatus.DRAFT

    @pytest.mark.asyncio
    async def test_datastore_failure_rolls_back(self, session_factory, files, converter, make_version):
        class FailingStore(FakeRoadStore):
            async def insert_road(self, record):
                raise OperationalError("INSERT INTO road_assets", {}, Exception("disk full"))

        failing = ImportVersionService(
            session_factory=session_factory,
            files=files,
            converter=converter,
            road_store_factory=lambda session: FailingStore(),
        )
        version = await make_version([road("R1", NAGOYA)])

        with pytest.raises(PersistenceError):
            await failing.publish_version(version.id)
        assert (await failing.get_version(version.id)).status == VersionStatus.DRAFT

    @pytest.mark.asyncio
    async def test_publish_job(self, service, make_version):
        version = await make_version([road("R1", NAGOYA)])
        job = await service.run_publish_job(version.id, published_by="carol")

        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.result_summary["added"] == 1

        failed = await service.run_publish_job(version.id)
        assert failed.status == JobStatus.FAILED
        assert "not in draft status" in failed.error_message


class TestRollback:
    """Restoring the state a version established."""

    @pytest.mark.asyncio
    async def test_rollback_scenario(self, service, make_version, road_store):
        """V2 deactivates two of V1's roads; rolling back to V1 restores them."""
        v1 = await make_version(
            [naka_road(n, f"v1-{n}") for n in range(1, 6)], scope="region:naka"
        )
        first = await service.publish_version(v1.id)
        assert first.added == 5

        v2 = await make_version(
            [naka_road(n, f"v2-{n}") for n in range(1, 4)],
            scope="region:naka", regional_refresh=True,
        )
        second = await service.publish_version(v2.id)
        assert second.updated == 3
        assert second.deactivated == 2
        assert road_store.records["R4"].status == RoadStatus.INACTIVE

        result = await service.rollback_to_version(v1.id)

        assert result.restored == 5
        for n in range(1, 6):
            record = road_store.records[f"R{n}"]
            assert record.status == RoadStatus.ACTIVE
            assert record.name == f"v1-{n}"
        assert (await service.get_version(v1.id)).status == VersionStatus.PUBLISHED
        assert (await service.get_version(v2.id)).status == VersionStatus.ARCHIVED
        assert await published_count(service) == 1

    @pytest.mark.asyncio
    async def test_rollback_forward_again(self, service, make_version, road_store):
        """The pre-rollback snapshot lets a later rollback return to V2's state."""
        v1 = await make_version([naka_road(n, f"v1-{n}") for n in range(1, 4)], scope="region:naka")
        await service.publish_version(v1.id)
        v2 = await make_version(
            [naka_road(1, "v2-1")], scope="region:naka", regional_refresh=True
        )
        await service.publish_version(v2.id)
        await service.rollback_to_version(v1.id)

        result = await service.rollback_to_version(v2.id)

        assert road_store.records["R1"].name == "v2-1"
        assert road_store.records["R2"].status == RoadStatus.INACTIVE
        assert result.pre_rollback_snapshot_path != result.snapshot_path
        assert (await service.get_version(v2.id)).status == VersionStatus.PUBLISHED

    @pytest.mark.asyncio
    async def test_rollback_of_live_version_rejected(self, service, make_version):
        version = await make_version([road("R1", NAGOYA)])
        await service.publish_version(version.id)
        with pytest.raises(InvalidStateError):
            await service.rollback_to_version(version.id)

    @pytest.mark.asyncio
    async def test_rollback_without_snapshot_rejected(self, service, make_version):
        version = await make_version([road("R1", NAGOYA)])
        with pytest.raises(InvalidStateError):
            await service.rollback_to_version(version.id)

    @pytest.mark.asyncio
    async def test_rollback_job_records_failure(self, service, make_version):
        version = await make_version([road("R1", NAGOYA)])
        job = await service.run_rollback_job(version.id)
        assert job.status == JobStatus.FAILED
        assert "snapshot" in job.error_message

    @pytest.mark.asyncio
    async def test_rollback_ignores_other_scopes(self, service, make_version, road_store):
        """A publish to another region in between does not become the restore source."""
        v1 = await make_version([naka_road(1, "v1")], scope="region:naka")
        await service.publish_version(v1.id)
        v2 = await make_version(
            [road("H1", NAGOYA_EAST, name="east", region="higashi", dataSource="manual")],
            scope="region:higashi",
        )
        await service.publish_version(v2.id)
        v3 = await make_version([naka_road(1, "v3")], scope="region:naka")
        await service.publish_version(v3.id)

        result = await service.rollback_to_version(v1.id)

        assert result.restored == 1
        assert road_store.records["R1"].name == "v1"
        assert road_store.records["H1"].status == RoadStatus.ACTIVE
        assert (await service.get_version(v1.id)).status == VersionStatus.PUBLISHED
        assert (await service.get_version(v3.id)).status == VersionStatus.ARCHIVED

    @pytest.mark.asyncio
    async def test_rollback_deactivates_later_additions(self, service, make_version, road_store):
        v1 = await make_version([naka_road(1, "first")], scope="region:naka")
        await service.publish_version(v1.id)
        v2 = await make_version([naka_road(2, "second")], scope="region:naka")
        await service.publish_version(v2.id)
        assert road_store.records["R2"].status == RoadStatus.ACTIVE

        result = await service.rollback_to_version(v1.id)

        assert result.deactivated == 1
        assert road_store.records["R1"].status == RoadStatus.ACTIVE
        assert road_store.records["R2"].status == RoadStatus.INACTIVE

    @pytest.mark.asyncio
    async def test_rollback_when_scope_untouched_only_republishes(
        self, service, make_version, road_store
    ):
        v1 = await make_version([naka_road(1, "v1")], scope="region:naka")
        await service.publish_version(v1.id)
        v2 = await make_version(
            [road("H1", NAGOYA_EAST, name="east", region="higashi", dataSource="manual")],
            scope="region:higashi",
        )
        await service.publish_version(v2.id)

        result = await service.rollback_to_version(v1.id)

        assert result.restored == 0
        assert result.deactivated == 0
        assert road_store.records["H1"].status == RoadStatus.ACTIVE
        assert (await service.get_version(v1.id)).status == VersionStatus.PUBLISHED
        assert (await service.get_version(v2.id)).status == VersionStatus.ARCHIVED


class TestUnreadableUploads:
    """Uploads that cannot be read surface as engine errors."""

    @pytest.mark.asyncio
    async def test_non_utf8_geojson(self, service):
        draft = await service.create_draft(b"\xff\xfe{bad", "roads.geojson")
        with pytest.raises(ConversionError):
            await service.validate(draft.id)
        with pytest.raises(ConversionError):
            await service.configure(draft.id, ImportConfig(import_scope="full"))

    @pytest.mark.asyncio
    async def test_unconfigured_geopackage(self, service):
        draft = await service.create_draft(b"gpkg-bytes", "roads.gpkg")
        with pytest.raises(InvalidStateError):
            await service.validate(draft.id)
        with pytest.raises(InvalidStateError):
            await service.generate_diff(draft.id)
        with pytest.raises(InvalidStateError):
            await service.publish_version(draft.id)
        assert (await service.get_version(draft.id)).status == VersionStatus.DRAFT
