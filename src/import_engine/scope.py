"""
Import scope selectors.

A scope narrows which authoritative records an import may affect. The
stored form is a short string (``full``, ``region:<name>``,
``bbox:<minX,minY,maxX,maxY>``); it is parsed once into a tagged union.
"""

import logging
import math
from typing import TYPE_CHECKING, Annotated, Literal, Union

from pydantic import BaseModel, Field

from .errors import InvalidScopeError
from .geometry import Envelope

if TYPE_CHECKING:
    from .models import RoadRecord
    from .road_store import RoadAssetStore

logger = logging.getLogger(__name__)


class FullScope(BaseModel):
    kind: Literal["full"] = "full"


class RegionScope(BaseModel):
    kind: Literal["region"] = "region"
    name: str


class BBoxScope(BaseModel):
    kind: Literal["bbox"] = "bbox"
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def envelope(self) -> Envelope:
        return Envelope(
            min_x=self.min_x, min_y=self.min_y,
            max_x=self.max_x, max_y=self.max_y,
        )


class UnrecognizedScope(BaseModel):
    """A stored selector that does not parse; resolves to no records."""

    kind: Literal["unrecognized"] = "unrecognized"
    raw: str


ImportScope = Annotated[
    Union[FullScope, RegionScope, BBoxScope, UnrecognizedScope],
    Field(discriminator="kind"),
]

# 'ward:' is the legacy spelling of 'region:'
REGION_PREFIXES = ("region:", "ward:")
BBOX_PREFIX = "bbox:"


def _parse_bbox(body: str) -> BBoxScope | None:
    parts = body.split(",")
    if len(parts) != 4:
        return None
    try:
        min_x, min_y, max_x, max_y = (float(p) for p in parts)
    except ValueError:
        return None
    if not all(math.isfinite(v) for v in (min_x, min_y, max_x, max_y)):
        return None
    if min_x > max_x or min_y > max_y:
        return None
    return BBoxScope(min_x=min_x, min_y=min_y, max_x=max_x, max_y=max_y)


def parse_scope(selector: str) -> ImportScope:
    """
    Parse a stored scope selector.

    Never raises: anything malformed becomes UnrecognizedScope.

    Example:
        >>> parse_scope("bbox:136.8,35.1,137.0,35.2").max_x
        137.0
    """
    if selector == "full":
        return FullScope()

    for prefix in REGION_PREFIXES:
        if selector.startswith(prefix):
            name = selector[len(prefix):]
            if name:
                return RegionScope(name=name)
            return UnrecognizedScope(raw=selector)

    if selector.startswith(BBOX_PREFIX):
        bbox = _parse_bbox(selector[len(BBOX_PREFIX):])
        if bbox is not None:
            return bbox

    return UnrecognizedScope(raw=selector)


def parse_scope_strict(selector: str) -> ImportScope:
    """
    Parse a selector supplied by a caller.

    Raises:
        InvalidScopeError: If the selector is not a recognized scope
    """
    scope = parse_scope(selector)
    if isinstance(scope, UnrecognizedScope):
        raise InvalidScopeError(
            f"Invalid import scope '{selector}': expected 'full', "
            "'region:<name>' or 'bbox:<minX,minY,maxX,maxY>'"
        )
    return scope


def encode_scope(scope: ImportScope) -> str:
    """Inverse of parse_scope for recognized scopes."""
    if isinstance(scope, FullScope):
        return "full"
    if isinstance(scope, RegionScope):
        return f"region:{scope.name}"
    if isinstance(scope, BBoxScope):
        return f"bbox:{scope.min_x},{scope.min_y},{scope.max_x},{scope.max_y}"
    return scope.raw


def scope_from_envelope(envelope: Envelope) -> BBoxScope:
    return BBoxScope(
        min_x=envelope.min_x, min_y=envelope.min_y,
        max_x=envelope.max_x, max_y=envelope.max_y,
    )


async def resolve_scope(
    store: "RoadAssetStore",
    selector: str,
    include_inactive: bool = False
) -> list["RoadRecord"]:
    """
    Fetch the authoritative records covered by a selector.

    Args:
        store: RoadAssetStore to query
        selector: Stored scope selector
        include_inactive: Also return inactive records (used by snapshots)

    Returns:
        List of RoadRecord with geometry as GeoJSON
    """
    scope = parse_scope(selector)
    if isinstance(scope, UnrecognizedScope):
        logger.warning("Unrecognized import scope %r resolves to no records", selector)
        return []
    return await store.fetch_scope(scope, include_inactive=include_inactive)
