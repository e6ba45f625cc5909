"""
Access to the authoritative road table.

The engine only reads scoped records and writes the fields it owns.
Geometry crosses this boundary as GeoJSON; PostGIS does the conversion.
"""

import json
from datetime import datetime
from typing import Any, Optional, Protocol, runtime_checkable

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from .models import RoadRecord
from .scope import BBoxScope, FullScope, ImportScope, RegionScope


@runtime_checkable
class RoadAssetStore(Protocol):
    """Operations the import engine needs from the authoritative store."""

    async def fetch_scope(
        self,
        scope: ImportScope,
        include_inactive: bool = False
    ) -> list[RoadRecord]:
        """Records in scope (active only unless include_inactive)."""
        ...

    async def insert_road(self, record: RoadRecord) -> None:
        """Insert a new record; an id collision merges supplied fields and reactivates."""
        ...

    async def update_road(
        self,
        road_id: str,
        values: dict[str, Any],
        geometry: Optional[dict[str, Any]],
        updated_at: datetime
    ) -> None:
        """Overwrite only the given columns; geometry when not None."""
        ...

    async def deactivate_roads(self, road_ids: list[str], at: datetime) -> int:
        """Soft delete: status=inactive, valid_to=at."""
        ...

    async def upsert_road(self, record: RoadRecord, updated_at: datetime) -> None:
        """Insert or overwrite every field of a record."""
        ...


# Columns the engine may write through update_road
WRITABLE_COLUMNS = frozenset({
    "name", "name_ja", "display_name", "road_type", "lanes",
    "direction", "status", "region", "data_source", "valid_to",
})

_SELECT_COLUMNS = """
    id, name, name_ja, display_name, road_type, lanes, direction, status,
    region, data_source, valid_from, valid_to, updated_at,
    ST_AsGeoJSON(geometry) AS geometry_json
"""


class PostGISRoadStore:
    """
    RoadAssetStore backed by the PostGIS ``road_assets`` table.

    Runs on the caller's session so all writes share its transaction.
    """

    def __init__(self, session: AsyncSession, srid: int = 4326):
        self.session = session
        self.srid = srid

    def _scope_clause(self, scope: ImportScope) -> tuple[str, dict[str, Any]]:
        if isinstance(scope, FullScope):
            return "TRUE", {}
        if isinstance(scope, RegionScope):
            return "region = :region", {"region": scope.name}
        if isinstance(scope, BBoxScope):
            return (
                "ST_Intersects(geometry, ST_MakeEnvelope(:min_x, :min_y, :max_x, :max_y, :srid))",
                {
                    "min_x": scope.min_x, "min_y": scope.min_y,
                    "max_x": scope.max_x, "max_y": scope.max_y,
                    "srid": self.srid,
                },
            )
        return "FALSE", {}

    async def fetch_scope(
        self,
        scope: ImportScope,
        include_inactive: bool = False
    ) -> list[RoadRecord]:
        where, params = self._scope_clause(scope)
        if not include_inactive:
            where = f"status = 'active' AND {where}"

        result = await self.session.execute(
            text(f"SELECT {_SELECT_COLUMNS} FROM road_assets WHERE {where} ORDER BY id"),
            params,
        )
        records = []
        for row in result.mappings():
            data = dict(row)
            geometry_json = data.pop("geometry_json")
            data["geometry"] = json.loads(geometry_json) if geometry_json else None
            records.append(RoadRecord.model_validate(data))
        return records

    async def insert_road(self, record: RoadRecord) -> None:
        await self.session.execute(
            text("""
                INSERT INTO road_assets (
                    id, name, name_ja, display_name, geometry, road_type, lanes,
                    direction, status, region, data_source, valid_from, updated_at
                ) VALUES (
                    :id, :name, :name_ja, :display_name,
                    ST_SetSRID(ST_GeomFromGeoJSON(:geometry), :srid),
                    :road_type, :lanes, :direction, 'active', :region,
                    :data_source, :valid_from, :updated_at
                )
                ON CONFLICT (id) DO UPDATE SET
                    geometry = EXCLUDED.geometry,
                    name = COALESCE(EXCLUDED.name, road_assets.name),
                    name_ja = COALESCE(EXCLUDED.name_ja, road_assets.name_ja),
                    display_name = COALESCE(EXCLUDED.display_name, road_assets.display_name),
                    road_type = COALESCE(EXCLUDED.road_type, road_assets.road_type),
                    lanes = COALESCE(EXCLUDED.lanes, road_assets.lanes),
                    direction = COALESCE(EXCLUDED.direction, road_assets.direction),
                    status = 'active',
                    valid_to = NULL,
                    region = COALESCE(EXCLUDED.region, road_assets.region),
                    data_source = COALESCE(EXCLUDED.data_source, road_assets.data_source),
                    updated_at = EXCLUDED.updated_at
            """),
            self._record_params(record),
        )

    async def update_road(
        self,
        road_id: str,
        values: dict[str, Any],
        geometry: Optional[dict[str, Any]],
        updated_at: datetime
    ) -> None:
        unknown = set(values) - WRITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot write road columns: {sorted(unknown)}")

        assignments = [f"{column} = :{column}" for column in values]
        params: dict[str, Any] = dict(values)
        if geometry is not None:
            assignments.append("geometry = ST_SetSRID(ST_GeomFromGeoJSON(:geometry), :srid)")
            params["geometry"] = json.dumps(geometry)
            params["srid"] = self.srid
        assignments.append("updated_at = :updated_at")
        params["updated_at"] = updated_at
        params["road_id"] = road_id

        await self.session.execute(
            text(f"UPDATE road_assets SET {', '.join(assignments)} WHERE id = :road_id"),
            params,
        )

    async def deactivate_roads(self, road_ids: list[str], at: datetime) -> int:
        if not road_ids:
            return 0
        stmt = text("""
            UPDATE road_assets
            SET status = 'inactive', valid_to = :at, updated_at = :at
            WHERE id IN :road_ids AND status = 'active'
        """).bindparams(bindparam("road_ids", expanding=True))
        result = await self.session.execute(stmt, {"at": at, "road_ids": list(road_ids)})
        return result.rowcount

    async def upsert_road(self, record: RoadRecord, updated_at: datetime) -> None:
        params = self._record_params(record)
        params["status"] = record.status.value
        params["valid_to"] = record.valid_to
        params["updated_at"] = updated_at
        await self.session.execute(
            text("""
                INSERT INTO road_assets (
                    id, name, name_ja, display_name, geometry, road_type, lanes,
                    direction, status, region, data_source, valid_from, valid_to,
                    updated_at
                ) VALUES (
                    :id, :name, :name_ja, :display_name,
                    ST_SetSRID(ST_GeomFromGeoJSON(:geometry), :srid),
                    :road_type, :lanes, :direction, :status, :region,
                    :data_source, :valid_from, :valid_to, :updated_at
                )
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    name_ja = EXCLUDED.name_ja,
                    display_name = EXCLUDED.display_name,
                    geometry = EXCLUDED.geometry,
                    road_type = EXCLUDED.road_type,
                    lanes = EXCLUDED.lanes,
                    direction = EXCLUDED.direction,
                    status = EXCLUDED.status,
                    region = EXCLUDED.region,
                    data_source = EXCLUDED.data_source,
                    valid_from = EXCLUDED.valid_from,
                    valid_to = EXCLUDED.valid_to,
                    updated_at = EXCLUDED.updated_at
            """),
            params,
        )

    def _record_params(self, record: RoadRecord) -> dict[str, Any]:
        return {
            "id": record.id,
            "name": record.name,
            "name_ja": record.name_ja,
            "display_name": record.display_name,
            "geometry": json.dumps(record.geometry) if record.geometry else None,
            "srid": self.srid,
            "road_type": record.road_type,
            "lanes": record.lanes,
            "direction": record.direction,
            "region": record.region,
            "data_source": record.data_source,
            "valid_from": record.valid_from or record.updated_at,
            "updated_at": record.updated_at,
        }
