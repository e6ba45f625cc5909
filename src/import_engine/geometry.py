"""
GeoJSON geometry helpers.

Tolerant equality between stored and imported line geometries, plus
envelope utilities used for scope derivation and coordinate checks.
"""

import math
from typing import Any, Iterator, Optional

from pydantic import BaseModel

# Roughly 1 m in EPSG:4326 degrees. GIS exports often differ in the
# 6th-7th decimal place.
GEOMETRY_TOLERANCE = 1e-5

LINE_GEOMETRY_TYPES = frozenset({"LineString", "MultiLineString"})


class Envelope(BaseModel):
    """Axis-aligned bounding box in the canonical CRS."""

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    def contains(self, x: float, y: float) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    def intersects(self, other: "Envelope") -> bool:
        return not (
            other.max_x < self.min_x
            or other.min_x > self.max_x
            or other.max_y < self.min_y
            or other.min_y > self.max_y
        )


# Default coordinate sanity bounds for imported roads (Japan)
JAPAN_BOUNDS = Envelope(min_x=122.0, min_y=20.0, max_x=154.0, max_y=46.0)


def coords_equal(
    c1: list[float],
    c2: list[float],
    tolerance: float = GEOMETRY_TOLERANCE
) -> bool:
    """Per-axis comparison of two positions."""
    if len(c1) != len(c2):
        return False
    return all(abs(a - b) <= tolerance for a, b in zip(c1, c2))


def lines_equal(
    line1: list[list[float]],
    line2: list[list[float]],
    tolerance: float = GEOMETRY_TOLERANCE
) -> bool:
    """Ordered pairwise comparison of two coordinate sequences."""
    if len(line1) != len(line2):
        return False
    return all(coords_equal(a, b, tolerance) for a, b in zip(line1, line2))


def _is_single_line(geom: dict[str, Any]) -> bool:
    if geom.get("type") == "LineString":
        return True
    return geom.get("type") == "MultiLineString" and len(geom["coordinates"]) == 1


def _flatten_line(geom: dict[str, Any]) -> list[list[float]]:
    if geom["type"] == "LineString":
        return geom["coordinates"]
    return [coord for part in geom["coordinates"] for coord in part]


def geometries_equal(
    geom1: dict[str, Any],
    geom2: dict[str, Any],
    tolerance: float = GEOMETRY_TOLERANCE
) -> bool:
    """
    Compare two GeoJSON geometries with coordinate tolerance.

    A LineString and a single-component MultiLineString are interchangeable.
    When either side is a single line and the other is any line geometry,
    both are flattened to one ordered coordinate sequence. Two
    multi-component MultiLineStrings are compared component by component in
    their original order. Any other pairing falls back to exact equality.

    Raises:
        KeyError, TypeError: If a line geometry is malformed
    """
    type1 = geom1.get("type")
    type2 = geom2.get("type")

    if type1 in LINE_GEOMETRY_TYPES and type2 in LINE_GEOMETRY_TYPES:
        if _is_single_line(geom1) or _is_single_line(geom2):
            return lines_equal(_flatten_line(geom1), _flatten_line(geom2), tolerance)

        parts1 = geom1["coordinates"]
        parts2 = geom2["coordinates"]
        if len(parts1) != len(parts2):
            return False
        return all(lines_equal(p1, p2, tolerance) for p1, p2 in zip(parts1, parts2))

    return geom1 == geom2


def iter_positions(coordinates: Any) -> Iterator[tuple[float, float]]:
    """Yield every (x, y) position of a nested GeoJSON coordinate array."""
    if not isinstance(coordinates, list):
        return
    if (
        len(coordinates) >= 2
        and isinstance(coordinates[0], (int, float))
        and isinstance(coordinates[1], (int, float))
    ):
        yield float(coordinates[0]), float(coordinates[1])
        return
    for item in coordinates:
        yield from iter_positions(item)


def geometry_envelope(geometry: Optional[dict[str, Any]]) -> Optional[Envelope]:
    """Envelope of one geometry, or None when it has no finite positions."""
    if not geometry:
        return None
    return features_envelope([{"geometry": geometry}])


def features_envelope(features: list[dict[str, Any]]) -> Optional[Envelope]:
    """
    Envelope over all finite coordinates of a feature list.

    Returns:
        Envelope, or None if no finite coordinates were found
    """
    min_x = min_y = math.inf
    max_x = max_y = -math.inf

    for feature in features:
        geometry = feature.get("geometry") or {}
        for x, y in iter_positions(geometry.get("coordinates")):
            if not (math.isfinite(x) and math.isfinite(y)):
                continue
            min_x, max_x = min(min_x, x), max(max_x, x)
            min_y, max_y = min(min_y, y), max(max_y, y)

    if not all(math.isfinite(v) for v in (min_x, min_y, max_x, max_y)):
        return None
    return Envelope(min_x=min_x, min_y=min_y, max_x=max_x, max_y=max_y)
