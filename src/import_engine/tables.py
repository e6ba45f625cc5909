"""SQLAlchemy table models for import versions, jobs and snapshots."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


JSONType = JSON().with_variant(JSONB(), "postgresql")

_PUBLISHED_ONLY = text("status = 'published'")


class ImportVersionRow(Base):
    __tablename__ = "import_versions"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft", index=True)

    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(String(20), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    layer_name: Mapped[Optional[str]] = mapped_column(String(100))
    source_crs: Mapped[Optional[str]] = mapped_column(String(100))

    import_scope: Mapped[str] = mapped_column(String(255), nullable=False, default="full")
    default_data_source: Mapped[str] = mapped_column(
        String(20), nullable=False, default="official_ledger"
    )
    regional_refresh: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    file_size_mb: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    feature_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    uploaded_by: Mapped[Optional[str]] = mapped_column(String(100))
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    published_by: Mapped[Optional[str]] = mapped_column(String(100))
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    snapshot_path: Mapped[Optional[str]] = mapped_column(String(500))
    diff_path: Mapped[Optional[str]] = mapped_column(String(500))
    added_count: Mapped[Optional[int]] = mapped_column(Integer)
    updated_count: Mapped[Optional[int]] = mapped_column(Integer)
    deactivated_count: Mapped[Optional[int]] = mapped_column(Integer)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'published', 'archived')",
            name="chk_import_versions_status",
        ),
        CheckConstraint(
            "file_type IN ('geojson', 'geopackage')",
            name="chk_import_versions_file_type",
        ),
        # At most one published version system-wide
        Index(
            "uq_import_versions_single_published",
            "status",
            unique=True,
            postgresql_where=_PUBLISHED_ONLY,
            sqlite_where=_PUBLISHED_ONLY,
        ),
    )


class ImportJobRow(Base):
    __tablename__ = "import_jobs"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    version_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("import_versions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    job_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    result_summary: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType)

    __table_args__ = (
        CheckConstraint(
            "job_type IN ('validation', 'publish', 'rollback')",
            name="chk_import_jobs_type",
        ),
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed')",
            name="chk_import_jobs_status",
        ),
        CheckConstraint("progress >= 0 AND progress <= 100", name="chk_import_jobs_progress"),
    )


class ImportSnapshotRow(Base):
    """One immutable snapshot file, ordered by sequence."""

    __tablename__ = "import_snapshots"

    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    version_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(20), nullable=False)
    path: Mapped[str] = mapped_column(String(500), nullable=False)
    scope: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class VersionCounterRow(Base):
    """Last allocated version number; survives deletion of drafts."""

    __tablename__ = "import_version_counters"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
