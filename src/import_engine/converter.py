"""
Vector format and CRS conversion.

The conversion tool is an external capability hidden behind the
VectorConverter protocol. Ogr2OgrConverter drives GDAL's ogr2ogr/ogrinfo
as subprocesses; tests substitute an in-process fake.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .errors import ConversionError, ConversionTimeoutError
from .models import LayerInfo

logger = logging.getLogger(__name__)

CANONICAL_CRS = "EPSG:4326"

# "1: layer_name (Multi Line String)" - names may contain spaces and non-ASCII
_LAYER_LINE = re.compile(r"^\s*(\d+): (.+?) \(([^)]+)\)\s*$")

_WGS84_NAMES = ("EPSG:4326", "WGS84", "WGS_84", "CRS84", "OGC:CRS84")


@runtime_checkable
class VectorConverter(Protocol):
    """Converts uploaded vector files into canonical GeoJSON."""

    async def list_layers(self, source: Path) -> list[LayerInfo]:
        """Layers of a packaged vector file."""
        ...

    async def to_geojson(
        self,
        source: Path,
        destination: Path,
        layer_name: Optional[str] = None,
        source_crs: Optional[str] = None
    ) -> Path:
        """Write source as GeoJSON in the canonical CRS to destination."""
        ...


def is_wgs84(crs: Optional[str]) -> bool:
    """
    Whether a CRS string names WGS 84.

    GIS tools spell it in several ways, including WKT fragments.
    """
    if not crs:
        return False
    normalized = re.sub(r"\s+", "", crs).upper()
    if normalized in _WGS84_NAMES:
        return True
    return "WGS84" in normalized or "WGS_1984" in normalized or 'GEOGCS["WGS_84"' in normalized


def parse_layer_listing(stdout: str) -> list[LayerInfo]:
    """Parse ``ogrinfo -so`` output into LayerInfo entries."""
    layers = []
    for line in stdout.splitlines():
        match = _LAYER_LINE.match(line)
        if match:
            layers.append(LayerInfo(
                name=match.group(2).strip(),
                geometry_type=match.group(3).strip(),
            ))
    return layers


def build_conversion_args(
    source: Path,
    destination: Path,
    layer_name: Optional[str] = None,
    source_crs: Optional[str] = None,
    target_crs: str = CANONICAL_CRS
) -> list[str]:
    """
    ogr2ogr arguments for a conversion to canonical GeoJSON.

    A WGS 84 or unspecified source only gets the target CRS assigned;
    reprojecting non-standard WGS 84 definitions fails in GDAL.
    """
    args = ["-f", "GeoJSON", "-makevalid"]
    if source_crs and not is_wgs84(source_crs):
        args += ["-s_srs", source_crs, "-t_srs", target_crs]
    else:
        args += ["-a_srs", target_crs]
    args += [str(destination), str(source)]
    if layer_name:
        args.append(layer_name)
    return args


class Ogr2OgrConverter:
    """VectorConverter running GDAL command line tools."""

    def __init__(
        self,
        ogr2ogr_path: str = "ogr2ogr",
        ogrinfo_path: str = "ogrinfo",
        target_crs: str = CANONICAL_CRS,
        timeout_seconds: float = 300.0
    ):
        self.ogr2ogr_path = ogr2ogr_path
        self.ogrinfo_path = ogrinfo_path
        self.target_crs = target_crs
        self.timeout_seconds = timeout_seconds

    async def _run(self, program: str, args: list[str]) -> str:
        """
        Run a tool and return its stdout.

        Raises:
            ConversionTimeoutError: If the tool exceeds the timeout
            ConversionError: If the tool cannot start or exits nonzero
        """
        logger.debug("Running %s %s", program, " ".join(args))
        try:
            proc = await asyncio.create_subprocess_exec(
                program, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ConversionError(f"Cannot run {program}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout_seconds)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise ConversionTimeoutError(
                f"{program} timed out after {self.timeout_seconds:g}s"
            ) from e

        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise ConversionError(
                f"{program} failed with exit code {proc.returncode}: {message}",
                returncode=proc.returncode,
                stderr=message,
            )
        return stdout.decode("utf-8", errors="replace")

    async def list_layers(self, source: Path) -> list[LayerInfo]:
        stdout = await self._run(self.ogrinfo_path, ["-so", str(source)])
        return parse_layer_listing(stdout)

    async def to_geojson(
        self,
        source: Path,
        destination: Path,
        layer_name: Optional[str] = None,
        source_crs: Optional[str] = None
    ) -> Path:
        destination.unlink(missing_ok=True)
        args = build_conversion_args(
            source, destination, layer_name, source_crs, self.target_crs
        )
        await self._run(self.ogr2ogr_path, args)
        logger.info("Converted %s to %s", source.name, destination)
        return destination
