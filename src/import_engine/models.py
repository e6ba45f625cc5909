"""
Pydantic models for road import versioning.

Covers the version/job lifecycle records, the validated road feature
schema, and the transient validation, diff, publish and rollback results.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


class VersionStatus(str, Enum):
    """ImportVersion lifecycle states."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class FileType(str, Enum):
    """Accepted upload formats."""

    GEOPACKAGE = "geopackage"
    GEOJSON = "geojson"


class DataSource(str, Enum):
    """Provenance tag written to road records."""

    OSM_TEST = "osm_test"
    OFFICIAL_LEDGER = "official_ledger"
    MANUAL = "manual"


class RoadType(str, Enum):
    """Road classification accepted from imports."""

    ARTERIAL = "arterial"
    COLLECTOR = "collector"
    LOCAL = "local"


class RoadStatus(str, Enum):
    """Authoritative record status (soft delete via INACTIVE)."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class JobType(str, Enum):
    VALIDATION = "validation"
    PUBLISH = "publish"
    ROLLBACK = "rollback"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SnapshotReason(str, Enum):
    """Which mutation a snapshot was captured ahead of."""

    PUBLISH = "publish"
    ROLLBACK = "rollback"


# --- Version and job records ---

class ImportVersion(BaseModel):
    """One uploaded file and its position in the publish history."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    version_number: int
    status: VersionStatus
    file_name: str
    file_type: FileType
    file_path: str
    layer_name: Optional[str] = None
    source_crs: Optional[str] = None
    import_scope: str = "full"
    default_data_source: DataSource = DataSource.OFFICIAL_LEDGER
    regional_refresh: bool = False
    file_size_mb: float = 0.0
    feature_count: int = 0
    uploaded_by: Optional[str] = None
    uploaded_at: datetime
    published_by: Optional[str] = None
    published_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    snapshot_path: Optional[str] = None
    diff_path: Optional[str] = None
    added_count: Optional[int] = None
    updated_count: Optional[int] = None
    deactivated_count: Optional[int] = None
    notes: Optional[str] = None


class ImportJob(BaseModel):
    """Progress record for a validation, publish or rollback run."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    version_id: str
    job_type: JobType
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result_summary: Optional[dict[str, Any]] = None


class ImportConfig(BaseModel):
    """Options supplied when configuring a draft version."""

    layer_name: Optional[str] = Field(
        default=None,
        description="GeoPackage layer to import (all layers when omitted)"
    )
    source_crs: Optional[str] = Field(
        default=None,
        description="Source CRS such as 'EPSG:6675'; WGS 84 when omitted"
    )
    import_scope: Optional[str] = Field(
        default=None,
        description="Scope selector; derived from the file extent when omitted"
    )
    default_data_source: DataSource = Field(
        default=DataSource.OFFICIAL_LEDGER,
        description="dataSource applied to features that do not supply one"
    )
    regional_refresh: bool = Field(
        default=False,
        description="Deactivate in-scope records missing from the import"
    )


class LayerInfo(BaseModel):
    """One layer of a packaged vector file."""

    name: str
    geometry_type: str
    feature_count: int = 0


# --- Road feature schema ---

def normalize_id(value: Any) -> Optional[str]:
    """GIS exports emit numeric ids; compare everything as strings."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("id must be a string or integer")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class RoadProperties(BaseModel):
    """
    Known road fields of an import feature.

    Unknown properties are kept in ``extensions``. Only the fields present
    in the source feature are considered asserted; see ``asserted_fields``.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Optional[str] = None
    name: Optional[str] = None
    name_ja: Optional[str] = Field(default=None, alias="nameJa")
    display_name: Optional[str] = Field(default=None, alias="displayName")
    road_type: Optional[str] = Field(default=None, alias="roadType")
    lanes: Optional[int] = None
    direction: Optional[str] = None
    region: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("region", "ward"),
    )
    data_source: Optional[str] = Field(default=None, alias="dataSource")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Optional[str]:
        return normalize_id(v)

    @property
    def extensions(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    @property
    def asserted_fields(self) -> set[str]:
        return set(self.model_fields_set) - set(self.model_extra or {})


class RoadFeature(BaseModel):
    """An import feature parsed into the road schema."""

    properties: RoadProperties
    geometry: Optional[dict[str, Any]] = None

    @classmethod
    def from_geojson(cls, feature: dict[str, Any]) -> "RoadFeature":
        return cls(
            properties=RoadProperties.model_validate(feature.get("properties") or {}),
            geometry=feature.get("geometry"),
        )

    @property
    def id(self) -> Optional[str]:
        return self.properties.id

    def asserts(self, field: str) -> bool:
        return field in self.properties.asserted_fields


# Scalar fields compared by the diff engine when the import asserts them
COMPARED_FIELDS = ("name", "road_type", "region", "lanes", "direction")


class RoadRecord(BaseModel):
    """A row of the authoritative road table, geometry as GeoJSON."""

    id: str
    name: Optional[str] = None
    name_ja: Optional[str] = None
    display_name: Optional[str] = None
    road_type: Optional[str] = None
    lanes: Optional[int] = None
    direction: Optional[str] = None
    status: RoadStatus = RoadStatus.ACTIVE
    region: Optional[str] = None
    data_source: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    geometry: Optional[dict[str, Any]] = None

    def to_feature(self) -> dict[str, Any]:
        """Serialize as a GeoJSON feature using the import property names."""
        return {
            "type": "Feature",
            "geometry": self.geometry,
            "properties": {
                "id": self.id,
                "name": self.name,
                "nameJa": self.name_ja,
                "displayName": self.display_name,
                "roadType": self.road_type,
                "lanes": self.lanes,
                "direction": self.direction,
                "status": self.status.value,
                "region": self.region,
                "dataSource": self.data_source,
                "validFrom": self.valid_from.isoformat() if self.valid_from else None,
                "validTo": self.valid_to.isoformat() if self.valid_to else None,
                "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            },
        }

    @classmethod
    def from_feature(cls, feature: dict[str, Any]) -> "RoadRecord":
        props = feature.get("properties") or {}
        return cls(
            id=str(props["id"]),
            name=props.get("name"),
            name_ja=props.get("nameJa"),
            display_name=props.get("displayName"),
            road_type=props.get("roadType"),
            lanes=props.get("lanes"),
            direction=props.get("direction"),
            status=props.get("status") or RoadStatus.ACTIVE,
            region=props.get("region", props.get("ward")),
            data_source=props.get("dataSource"),
            valid_from=props.get("validFrom"),
            valid_to=props.get("validTo"),
            updated_at=props.get("updatedAt"),
            geometry=feature.get("geometry"),
        )


# --- Validation ---

class ValidationIssue(BaseModel):
    """A validation error tied to one feature."""

    feature_index: int = Field(description="Index of the feature in the file")
    feature_id: Optional[str] = Field(default=None, description="Feature id, if any")
    field: str = Field(description="Property or 'geometry'")
    error: str = Field(description="Error message")
    hint: str = Field(default="", description="How to fix it in the GIS tool")


class ValidationWarning(BaseModel):
    """A non-blocking finding. feature_index is -1 for file-level warnings."""

    feature_index: int
    feature_id: Optional[str] = None
    message: str


class ValidationResult(BaseModel):
    """Outcome of validating a canonical feature collection."""

    valid: bool
    feature_count: int
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationWarning] = Field(default_factory=list)
    geometry_types: list[str] = Field(default_factory=list)
    missing_id_count: int = 0
    missing_data_source_count: int = 0


# --- Diff ---

class DegradedComparison(BaseModel):
    """A feature whose comparison failed and was counted as unchanged."""

    feature_id: str
    reason: str


class DiffStats(BaseModel):
    scope_current_count: int = 0
    import_count: int = 0
    added_count: int = 0
    updated_count: int = 0
    deactivated_count: int = 0
    deactivation_candidate_count: int = 0
    degraded_count: int = 0


class DiffResult(BaseModel):
    """Read-only preview of what publishing a version would change."""

    scope: str
    regional_refresh: bool
    added: list[dict[str, Any]] = Field(default_factory=list)
    updated: list[dict[str, Any]] = Field(default_factory=list)
    deactivated: list[dict[str, Any]] = Field(default_factory=list)
    unchanged: int = 0
    degraded: list[DegradedComparison] = Field(default_factory=list)
    stats: DiffStats = Field(default_factory=DiffStats)


# --- Publish / rollback ---

class PublishResult(BaseModel):
    added: int
    updated: int
    deactivated: int
    unchanged: int
    skipped: int = Field(default=0, description="Features without a usable id or schema")
    snapshot_path: str
    published_at: datetime
    scope: str


class RollbackResult(BaseModel):
    version_id: str
    restored: int
    deactivated: int = 0
    snapshot_path: str = Field(description="Snapshot the dataset was restored from")
    pre_rollback_snapshot_path: str
    rolled_back_at: datetime


class SnapshotRecord(BaseModel):
    """Registry entry for one snapshot file."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    sequence: int
    version_id: str
    reason: SnapshotReason
    path: str
    scope: str
    created_at: datetime
