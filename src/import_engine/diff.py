"""
Diff engine: classify import features against the current scoped dataset.

Strictly read-only. Features are keyed by id; a feature's scalar fields
are compared only when the import asserts them, so an omitted property
never reads as "cleared".
"""

import logging
from typing import Any, Optional

from pydantic import ValidationError

from .geometry import GEOMETRY_TOLERANCE, geometries_equal
from .models import (
    COMPARED_FIELDS,
    DegradedComparison,
    DiffResult,
    DiffStats,
    RoadFeature,
    RoadRecord,
    normalize_id,
)

logger = logging.getLogger(__name__)

# Raised by malformed properties or geometry during one feature's comparison
COMPARISON_ERRORS = (ValidationError, KeyError, TypeError, IndexError, ValueError)


def feature_id(feature: dict[str, Any]) -> Optional[str]:
    """String id of a raw GeoJSON feature, None when absent or unusable."""
    props = feature.get("properties")
    if not isinstance(props, dict):
        return None
    try:
        return normalize_id(props.get("id"))
    except ValueError:
        return None


def has_changes(
    feature: RoadFeature,
    record: RoadRecord,
    tolerance: float = GEOMETRY_TOLERANCE
) -> bool:
    """
    Whether an import feature differs from the stored record.

    Raises:
        KeyError, TypeError: If either geometry is malformed
    """
    for field in COMPARED_FIELDS:
        if feature.asserts(field) and getattr(feature.properties, field) != getattr(record, field):
            return True

    if feature.geometry and record.geometry:
        return not geometries_equal(feature.geometry, record.geometry, tolerance)
    return False


def compute_road_diff(
    import_features: list[dict[str, Any]],
    current: list[RoadRecord],
    scope: str,
    regional_refresh: bool = False,
    tolerance: float = GEOMETRY_TOLERANCE
) -> DiffResult:
    """
    Compare import features with the current records of their scope.

    Args:
        import_features: Raw GeoJSON features of the canonical file
        current: Active records of the version's scope
        scope: Encoded scope selector, echoed in the result
        regional_refresh: Materialize deactivation candidates
        tolerance: Per-axis geometry tolerance in CRS units

    Returns:
        DiffResult. Unchanged features are counted, not listed. A feature
        whose comparison fails is listed under ``degraded`` and counted as
        unchanged.
    """
    lookup = {record.id: record for record in current}
    import_ids: set[str] = set()

    added: list[dict[str, Any]] = []
    updated: list[dict[str, Any]] = []
    degraded: list[DegradedComparison] = []
    unchanged = 0

    for raw in import_features:
        road_id = feature_id(raw)
        if road_id is None:
            continue
        import_ids.add(road_id)

        existing = lookup.get(road_id)
        if existing is None:
            added.append(raw)
            continue

        try:
            changed = has_changes(RoadFeature.from_geojson(raw), existing, tolerance)
        except COMPARISON_ERRORS as e:
            logger.warning("Comparison of feature %s failed: %s", road_id, e)
            degraded.append(DegradedComparison(feature_id=road_id, reason=str(e)))
            unchanged += 1
            continue

        if changed:
            updated.append(raw)
        else:
            unchanged += 1

    candidates = [record for record in current if record.id not in import_ids]
    deactivated = [record.to_feature() for record in candidates] if regional_refresh else []

    return DiffResult(
        scope=scope,
        regional_refresh=regional_refresh,
        added=added,
        updated=updated,
        deactivated=deactivated,
        unchanged=unchanged,
        degraded=degraded,
        stats=DiffStats(
            scope_current_count=len(current),
            import_count=len(import_features),
            added_count=len(added),
            updated_count=len(updated),
            deactivated_count=len(deactivated),
            deactivation_candidate_count=len(candidates),
            degraded_count=len(degraded),
        ),
    )
