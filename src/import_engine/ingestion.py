"""
Upload ingestion and CRS normalization.

Turns the original upload of a version into a canonical GeoJSON file in
EPSG:4326 and reads canonical feature collections back.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from .converter import VectorConverter, is_wgs84
from .errors import ConversionError, InvalidStateError
from .models import FileType, ImportVersion, LayerInfo
from .storage import ImportFileStore

logger = logging.getLogger(__name__)

GEOPACKAGE_EXTENSIONS = (".gpkg",)
CONVERTED_FILE = "converted.geojson"
TRANSFORMED_FILE = "transformed.geojson"


def detect_file_type(file_name: str) -> FileType:
    """Packaged vector files by extension; everything else is treated as GeoJSON."""
    if Path(file_name).suffix.lower() in GEOPACKAGE_EXTENSIONS:
        return FileType.GEOPACKAGE
    return FileType.GEOJSON


def upload_extension(file_type: FileType) -> str:
    return ".gpkg" if file_type == FileType.GEOPACKAGE else ".geojson"


def canonical_path(version: ImportVersion) -> Path:
    """
    Canonical GeoJSON file of a version.

    Raises:
        InvalidStateError: If a GeoPackage upload has not been converted yet
    """
    path = Path(version.file_path)
    if path.suffix.lower() in GEOPACKAGE_EXTENSIONS:
        raise InvalidStateError(
            f"Version {version.id} must be configured before its GeoPackage can be read"
        )
    return path


def load_features(path: Path | str) -> list[dict[str, Any]]:
    """
    Read the features of a GeoJSON file.

    A bare Feature is treated as a one-feature collection.

    Raises:
        ConversionError: If the file is not a GeoJSON Feature or FeatureCollection
    """
    with open(path, encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConversionError(f"{Path(path).name} is not valid JSON: {e}") from e
        except UnicodeDecodeError as e:
            raise ConversionError(f"{Path(path).name} is not UTF-8 encoded: {e}") from e

    if not isinstance(data, dict):
        raise ConversionError(f"{Path(path).name} is not a GeoJSON object")
    if data.get("type") == "Feature":
        return [data]
    features = data.get("features")
    if data.get("type") != "FeatureCollection" or not isinstance(features, list):
        raise ConversionError(f"{Path(path).name} is not a GeoJSON FeatureCollection")
    return [f for f in features if isinstance(f, dict)]


async def normalize_upload(
    version: ImportVersion,
    files: ImportFileStore,
    converter: VectorConverter,
    layer_name: Optional[str] = None,
    source_crs: Optional[str] = None
) -> Path:
    """
    Produce the canonical GeoJSON file for a version.

    GeoPackage uploads are always converted from the original upload, so
    configuring a version twice with a different layer works. GeoJSON in a
    non-WGS 84 CRS is reprojected; WGS 84 GeoJSON is used as uploaded.

    Returns:
        Path of the canonical file
    """
    version_dir = files.version_dir(version.id)
    original = version_dir / f"original{upload_extension(version.file_type)}"

    if version.file_type == FileType.GEOPACKAGE:
        destination = version_dir / CONVERTED_FILE
        await converter.to_geojson(original, destination, layer_name, source_crs)
        return destination

    if source_crs and not is_wgs84(source_crs):
        destination = version_dir / TRANSFORMED_FILE
        await converter.to_geojson(original, destination, None, source_crs)
        logger.info("Reprojected %s from %s", version.id, source_crs)
        return destination

    return original


async def list_layers(
    version: ImportVersion,
    files: ImportFileStore,
    converter: VectorConverter
) -> list[LayerInfo]:
    """Layers of a GeoPackage upload; other formats have none."""
    if version.file_type != FileType.GEOPACKAGE:
        return []
    original = files.version_dir(version.id) / f"original{upload_extension(version.file_type)}"
    return await converter.list_layers(original)
