"""Initial schema for the Road Import Version Service

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "postgis"')

    # ==========================================================================
    # ROAD ASSETS (authoritative dataset)
    # ==========================================================================
    op.execute("""
        CREATE TABLE road_assets (
            id VARCHAR(50) PRIMARY KEY,
            name VARCHAR(255),
            name_ja VARCHAR(255),
            display_name VARCHAR(255),
            geometry GEOMETRY(Geometry, 4326) NOT NULL,
            road_type VARCHAR(50) NOT NULL DEFAULT 'local',
            lanes INTEGER NOT NULL DEFAULT 2,
            direction VARCHAR(50) NOT NULL DEFAULT 'both',
            status VARCHAR(20) NOT NULL DEFAULT 'active',
            region VARCHAR(100),
            data_source VARCHAR(20) NOT NULL DEFAULT 'official_ledger',
            valid_from TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            valid_to TIMESTAMPTZ,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),

            CONSTRAINT chk_road_assets_status CHECK (status IN ('active', 'inactive')),
            CONSTRAINT chk_road_assets_data_source
                CHECK (data_source IN ('osm_test', 'official_ledger', 'manual'))
        )
    """)
    op.execute("CREATE INDEX idx_road_assets_geometry ON road_assets USING GIST (geometry)")
    op.execute("CREATE INDEX idx_road_assets_status ON road_assets(status)")
    op.execute("CREATE INDEX idx_road_assets_region ON road_assets(region) WHERE status = 'active'")

    # ==========================================================================
    # IMPORT VERSIONS
    # ==========================================================================
    op.execute("""
        CREATE TABLE import_versions (
            id VARCHAR(50) PRIMARY KEY,
            version_number INTEGER NOT NULL UNIQUE,
            status VARCHAR(20) NOT NULL DEFAULT 'draft',

            file_name VARCHAR(255) NOT NULL,
            file_type VARCHAR(20) NOT NULL,
            file_path VARCHAR(500) NOT NULL,
            layer_name VARCHAR(100),
            source_crs VARCHAR(100),

            import_scope VARCHAR(255) NOT NULL DEFAULT 'full',
            default_data_source VARCHAR(20) NOT NULL DEFAULT 'official_ledger',
            regional_refresh BOOLEAN NOT NULL DEFAULT FALSE,

            file_size_mb DOUBLE PRECISION NOT NULL DEFAULT 0,
            feature_count INTEGER NOT NULL DEFAULT 0,

            uploaded_by VARCHAR(100),
            uploaded_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            published_by VARCHAR(100),
            published_at TIMESTAMPTZ,
            archived_at TIMESTAMPTZ,

            snapshot_path VARCHAR(500),
            diff_path VARCHAR(500),
            added_count INTEGER,
            updated_count INTEGER,
            deactivated_count INTEGER,
            notes TEXT,

            CONSTRAINT chk_import_versions_status
                CHECK (status IN ('draft', 'published', 'archived')),
            CONSTRAINT chk_import_versions_file_type
                CHECK (file_type IN ('geojson', 'geopackage'))
        )
    """)
    op.execute("CREATE INDEX ix_import_versions_status ON import_versions(status)")
    # At most one published version system-wide
    op.execute("""
        CREATE UNIQUE INDEX uq_import_versions_single_published
            ON import_versions(status) WHERE status = 'published'
    """)

    op.execute("""
        CREATE TABLE import_version_counters (
            name VARCHAR(50) PRIMARY KEY,
            last_value INTEGER NOT NULL DEFAULT 0
        )
    """)

    # ==========================================================================
    # IMPORT JOBS
    # ==========================================================================
    op.execute("""
        CREATE TABLE import_jobs (
            id VARCHAR(50) PRIMARY KEY,
            version_id VARCHAR(50) NOT NULL REFERENCES import_versions(id) ON DELETE CASCADE,
            job_type VARCHAR(20) NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            progress INTEGER NOT NULL DEFAULT 0,
            started_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            error_message TEXT,
            result_summary JSONB,

            CONSTRAINT chk_import_jobs_type CHECK (job_type IN ('validation', 'publish', 'rollback')),
            CONSTRAINT chk_import_jobs_status
                CHECK (status IN ('pending', 'running', 'completed', 'failed')),
            CONSTRAINT chk_import_jobs_progress CHECK (progress >= 0 AND progress <= 100)
        )
    """)
    op.execute("CREATE INDEX ix_import_jobs_version_id ON import_jobs(version_id)")
    op.execute("CREATE INDEX ix_import_jobs_status ON import_jobs(status)")

    # ==========================================================================
    # SNAPSHOT REGISTRY
    # ==========================================================================
    op.execute("""
        CREATE TABLE import_snapshots (
            sequence SERIAL PRIMARY KEY,
            id VARCHAR(50) NOT NULL UNIQUE,
            version_id VARCHAR(50) NOT NULL,
            reason VARCHAR(20) NOT NULL,
            path VARCHAR(500) NOT NULL,
            scope VARCHAR(255) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_import_snapshots_version_id ON import_snapshots(version_id)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS import_snapshots")
    op.execute("DROP TABLE IF EXISTS import_jobs")
    op.execute("DROP TABLE IF EXISTS import_version_counters")
    op.execute("DROP TABLE IF EXISTS import_versions")
    op.execute("DROP TABLE IF EXISTS road_assets")
