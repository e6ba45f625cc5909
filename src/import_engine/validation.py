"""
Rule checks for canonical road GeoJSON.

Validation never raises for bad data: every finding is returned in a
ValidationResult. Errors block a clean import; warnings never do.
"""

import logging
from typing import Any, Optional

from pydantic import ValidationError

from .geometry import JAPAN_BOUNDS, LINE_GEOMETRY_TYPES, Envelope
from .models import (
    DataSource,
    RoadProperties,
    RoadType,
    ValidationIssue,
    ValidationResult,
    ValidationWarning,
)

logger = logging.getLogger(__name__)

VALID_ROAD_TYPES = tuple(t.value for t in RoadType)

HINT_MISSING_GEOMETRY = "Each feature must have a valid geometry"
HINT_GEOMETRY_TYPE = (
    "Roads must be LineString or MultiLineString. Convert polygons to "
    "centerlines in ArcGIS/QGIS before import."
)
HINT_MISSING_ID = (
    'Each feature must have an "id" property for incremental update. '
    "Add IDs in ArcGIS/QGIS."
)
HINT_DUPLICATE_ID = "Feature IDs must be unique within the file. Check for duplicates."
HINT_ROAD_TYPE = f"roadType must be one of: {', '.join(VALID_ROAD_TYPES)}"
HINT_SCHEMA = "Fix the attribute type in the attribute table before export."
HINT_PROPERTIES = "Feature properties must be a JSON object of attributes."


def _raw_id(props: dict[str, Any]) -> Optional[str]:
    value = props.get("id")
    if value is None or value == "":
        return None
    return str(value)


def _parse_properties(
    index: int,
    props: dict[str, Any]
) -> tuple[Optional[RoadProperties], list[ValidationIssue]]:
    """Parse known fields once; schema failures become per-field errors."""
    try:
        return RoadProperties.model_validate(props), []
    except ValidationError as e:
        feature_id = _raw_id(props)
        issues = [
            ValidationIssue(
                feature_index=index,
                feature_id=feature_id,
                field=str(err["loc"][0]) if err["loc"] else "properties",
                error=f"Invalid value {err.get('input')!r}: {err['msg']}",
                hint=HINT_SCHEMA,
            )
            for err in e.errors()
        ]
        return None, issues


def _first_outside(
    coordinates: list[Any],
    bounds: Envelope
) -> Optional[tuple[float, float]]:
    for coord in coordinates:
        if not isinstance(coord, (list, tuple)) or len(coord) < 2:
            continue
        lng, lat = coord[0], coord[1]
        if not isinstance(lng, (int, float)) or not isinstance(lat, (int, float)):
            continue
        if not bounds.contains(lng, lat):
            return lng, lat
    return None


def validate_features(
    features: list[dict[str, Any]],
    default_data_source: DataSource = DataSource.OFFICIAL_LEDGER,
    bounds: Envelope = JAPAN_BOUNDS
) -> ValidationResult:
    """
    Validate a canonical feature collection in one pass.

    Args:
        features: GeoJSON features as parsed from the canonical file
        default_data_source: Fallback named in the missing dataSource warning
        bounds: Envelope outside which LineString coordinates are suspicious

    Returns:
        ValidationResult; valid is True when there are no errors
    """
    errors: list[ValidationIssue] = []
    warnings: list[ValidationWarning] = []
    geometry_types: list[str] = []
    seen_ids: set[str] = set()
    missing_id_count = 0
    missing_data_source_count = 0

    for i, feature in enumerate(features):
        props = feature.get("properties")
        geometry = feature.get("geometry")
        if props is None:
            props = {}
        elif not isinstance(props, dict):
            errors.append(ValidationIssue(
                feature_index=i, field="properties",
                error=f"Properties must be an object, not {type(props).__name__}",
                hint=HINT_PROPERTIES,
            ))
            props = {}

        parsed, schema_issues = _parse_properties(i, props)
        errors.extend(schema_issues)
        failed_fields = {issue.field for issue in schema_issues}
        feature_id = parsed.id if parsed else _raw_id(props)

        # Geometry checks
        if not geometry:
            errors.append(ValidationIssue(
                feature_index=i, feature_id=feature_id, field="geometry",
                error="Missing geometry", hint=HINT_MISSING_GEOMETRY,
            ))
        elif not isinstance(geometry, dict):
            errors.append(ValidationIssue(
                feature_index=i, feature_id=feature_id, field="geometry",
                error=f"Geometry must be a GeoJSON object, not {type(geometry).__name__}",
                hint=HINT_MISSING_GEOMETRY,
            ))
        else:
            geometry_type = geometry.get("type")
            if not isinstance(geometry_type, str):
                geometry_type = None
            elif geometry_type not in geometry_types:
                geometry_types.append(geometry_type)
            if geometry_type not in LINE_GEOMETRY_TYPES:
                errors.append(ValidationIssue(
                    feature_index=i, feature_id=feature_id, field="geometry",
                    error=f"Invalid geometry type: {geometry_type}",
                    hint=HINT_GEOMETRY_TYPE,
                ))
            elif geometry_type == "LineString":
                coordinates = geometry.get("coordinates")
                if not isinstance(coordinates, list):
                    coordinates = []
                outside = _first_outside(coordinates, bounds)
                if outside is not None:
                    warnings.append(ValidationWarning(
                        feature_index=i, feature_id=feature_id,
                        message=(
                            f"Coordinates outside expected bounds "
                            f"({outside[0]:.4f}, {outside[1]:.4f})"
                        ),
                    ))

        # Id checks
        if "id" not in failed_fields:
            if feature_id is None:
                missing_id_count += 1
                errors.append(ValidationIssue(
                    feature_index=i, field="id",
                    error="Missing id property", hint=HINT_MISSING_ID,
                ))
            elif feature_id in seen_ids:
                errors.append(ValidationIssue(
                    feature_index=i, feature_id=feature_id, field="id",
                    error="Duplicate id", hint=HINT_DUPLICATE_ID,
                ))
            else:
                seen_ids.add(feature_id)

        if parsed is not None:
            if parsed.road_type and parsed.road_type not in VALID_ROAD_TYPES:
                errors.append(ValidationIssue(
                    feature_index=i, feature_id=feature_id, field="roadType",
                    error=f"Invalid roadType: {parsed.road_type}",
                    hint=HINT_ROAD_TYPE,
                ))
            if not parsed.data_source:
                missing_data_source_count += 1
        elif not props.get("dataSource"):
            missing_data_source_count += 1

    if missing_data_source_count:
        warnings.append(ValidationWarning(
            feature_index=-1,
            message=(
                f"{missing_data_source_count} features missing dataSource - "
                f"will use default: {default_data_source.value}"
            ),
        ))

    result = ValidationResult(
        valid=not errors,
        feature_count=len(features),
        errors=errors,
        warnings=warnings,
        geometry_types=geometry_types,
        missing_id_count=missing_id_count,
        missing_data_source_count=missing_data_source_count,
    )
    logger.debug(
        "Validated %d features: %d errors, %d warnings",
        result.feature_count, len(errors), len(warnings),
    )
    return result
