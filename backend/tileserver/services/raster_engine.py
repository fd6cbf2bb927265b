"""GDAL-backed raster engine used by the conversion pipeline.

The pipeline never touches pixels itself. Every raster operation is a call
on a RasterEngineProtocol, and GdalRasterEngine implements each call by
running one GDAL command-line tool:

===========================  ==================
operation                    tool
===========================  ==================
inspect                      gdalinfo -json
compute_statistics           gdalinfo -stats
reproject                    gdalwarp
repackage                    gdal_translate
apply_pointwise_formula      gdal_calc.py
rescale_range                gdal_translate -scale
apply_color_ramp             gdaldem color-relief
generate_tile_pyramid        gdal2tiles.py
version                      gdalinfo --version
===========================  ==================

Failures surface as gdal_helpers.CommandError; the orchestrator maps them
to ExternalToolError with the stage attached. Destination paths are chosen
by the caller so intermediate files can be registered before they exist.

Example:
    >>> engine = GdalRasterEngine.from_settings(get_settings())
    >>> info = engine.inspect(Path("/data/sample.tif"))
    >>> info.size, info.bands, info.coordinate_system[:20]
"""

from __future__ import annotations

import dataclasses
import json
import logging
from typing import TYPE_CHECKING, Any, Protocol

from tileserver.core import errors
from tileserver.db import models as db_models
from tileserver.services import statistics
from tileserver.utils import gdal_helpers

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Callable

    from tileserver.core import config

    LineCallback = Callable[[str], None]

logger = logging.getLogger(__name__)

MERCATOR_MARKERS: tuple[str, ...] = (
    "EPSG:3857",
    'EPSG",3857',
    'EPSG","3857"',
    "Pseudo-Mercator",
    "Pseudo Mercator",
    "Web Mercator",
    "Popular Visualisation",
)
GEODETIC_MARKERS: tuple[str, ...] = (
    "EPSG:4326",
    'EPSG",4326',
    'EPSG","4326"',
    "WGS 84",
    "WGS84",
)
TILE_NODATA_RGBA = "0,0,0,255"
_IGNORED_TILER_STDERR = ("Warning", "GDAL_DATA")


@dataclasses.dataclass(frozen=True)
class RasterInfo:
    """Structural description of a raster as reported by the engine.

    Attributes:
        size: Width and height in pixels.
        bands: Number of bands.
        data_type: Data type of the first band (e.g. "Float32").
        bounds: (west, south, east, north) from the corner coordinates,
            or the whole-earth extent when unavailable.
        coordinate_system: Coordinate system text (WKT) or "Unknown".
    """

    size: tuple[int, int]
    bands: int
    data_type: str
    bounds: db_models.BBox
    coordinate_system: str


@dataclasses.dataclass(frozen=True)
class TilingOptions:
    min_zoom: int
    max_zoom: int
    profile: db_models.Profile
    resampling: str
    tile_size: int
    processes: int
    resumable: bool = True
    web_viewer: bool = False


class RasterEngineProtocol(Protocol):
    """Operations the pipeline needs from a raster-processing engine."""

    def inspect(self, path: pathlib.Path) -> RasterInfo: ...

    def compute_statistics(
        self,
        path: pathlib.Path,
    ) -> statistics.RawStatistics: ...

    def reproject(
        self,
        source: pathlib.Path,
        destination: pathlib.Path,
        target_srs: str,
        resampling: str,
        on_line: LineCallback | None = None,
    ) -> pathlib.Path: ...

    def repackage(
        self,
        source: pathlib.Path,
        destination: pathlib.Path,
    ) -> pathlib.Path: ...

    def apply_pointwise_formula(
        self,
        source: pathlib.Path,
        destination: pathlib.Path,
        formula: str,
        on_line: LineCallback | None = None,
    ) -> pathlib.Path: ...

    def rescale_range(
        self,
        source: pathlib.Path,
        destination: pathlib.Path,
        src_min: float,
        src_max: float,
        dst_min: float,
        dst_max: float,
    ) -> pathlib.Path: ...

    def apply_color_ramp(
        self,
        source: pathlib.Path,
        ramp_table: pathlib.Path,
        destination: pathlib.Path,
    ) -> pathlib.Path: ...

    def generate_tile_pyramid(
        self,
        source: pathlib.Path,
        output_dir: pathlib.Path,
        options: TilingOptions,
        on_line: LineCallback | None = None,
    ) -> None: ...

    def version(self) -> str: ...


def extract_bounds(corner_coordinates: Any) -> db_models.BBox:
    """Read (west, south, east, north) from gdalinfo corner coordinates.

    Args:
        corner_coordinates: The ``cornerCoordinates`` object of
            ``gdalinfo -json`` output, possibly missing or malformed.

    Returns:
        The bounds, or the whole-earth extent if they cannot be read.
    """
    if not corner_coordinates:
        return db_models.WORLD_BOUNDS
    try:
        lower_left = corner_coordinates["lowerLeft"]
        upper_right = corner_coordinates["upperRight"]
        return (
            float(lower_left[0]),
            float(lower_left[1]),
            float(upper_right[0]),
            float(upper_right[1]),
        )
    except (KeyError, IndexError, TypeError, ValueError):
        logger.warning("Could not extract bounds from corner coordinates")
        return db_models.WORLD_BOUNDS


def parse_raster_info(text: str) -> RasterInfo:
    """Build RasterInfo from ``gdalinfo -json`` output.

    Raises:
        ParseError: if the output is not a JSON object.
    """
    try:
        info = json.loads(text)
    except json.JSONDecodeError as exc:
        raise errors.ParseError(
            f"Failed to parse gdalinfo output: {exc}",
        ) from exc
    if not isinstance(info, dict):
        raise errors.ParseError("Failed to parse gdalinfo output: not an object")

    size = info.get("size") or [0, 0]
    bands = info.get("bands") or []
    coordinate_system = info.get("coordinateSystem") or {}
    try:
        width, height = int(size[0]), int(size[1])
    except (IndexError, TypeError, ValueError) as exc:
        raise errors.ParseError(f"Unexpected raster size: {size!r}") from exc
    data_type = "Unknown"
    if bands and isinstance(bands[0], dict):
        data_type = str(bands[0].get("type") or "Unknown")
    return RasterInfo(
        size=(width, height),
        bands=len(bands) or 1,
        data_type=data_type,
        bounds=extract_bounds(info.get("cornerCoordinates")),
        coordinate_system=str(coordinate_system.get("wkt") or "Unknown"),
    )


def detect_profile(coordinate_system: str) -> db_models.Profile:
    """Classify coordinate-system text as ``mercator`` or ``geodetic``.

    Web Mercator markers are checked first because a projected Web Mercator
    WKT also names its WGS 84 base datum. Unrecognized systems default to
    ``geodetic``.
    """
    if any(marker in coordinate_system for marker in MERCATOR_MARKERS):
        logger.info("Detected EPSG:3857 (Web Mercator)")
        return "mercator"
    if any(marker in coordinate_system for marker in GEODETIC_MARKERS):
        logger.info("Detected EPSG:4326 (WGS 84)")
        return "geodetic"
    logger.info("Unknown projection, defaulting to geodetic")
    return "geodetic"


def build_tiling_command(
    executable: str,
    source: pathlib.Path,
    output_dir: pathlib.Path,
    options: TilingOptions,
) -> list[str]:
    """Assemble the gdal2tiles argument list for XYZ PNG tiles."""
    command = [
        executable,
        "-p",
        options.profile,
        "-z",
        f"{options.min_zoom}-{options.max_zoom}",
        "-r",
        options.resampling,
        f"--processes={options.processes}",
        "-a",
        TILE_NODATA_RGBA,
        "--tilesize",
        str(options.tile_size),
        "--xyz",
    ]
    if options.resumable:
        command.append("--resume")
    if not options.web_viewer:
        command.extend(["-w", "none"])
    command.extend([str(source), str(output_dir)])
    return command


def stderr_logger(tool: str) -> LineCallback:
    """Callback logging a tool's stderr lines at debug level.

    Stderr is drained on its own thread, so it never shares the stdout
    progress callback.
    """

    def _log(line: str) -> None:
        logger.debug("%s: %s", tool, line)

    return _log


class GdalRasterEngine(RasterEngineProtocol):
    """RasterEngineProtocol implemented with GDAL command-line tools."""

    def __init__(
        self,
        gdalinfo: str = "gdalinfo",
        gdalwarp: str = "gdalwarp",
        gdal_translate: str = "gdal_translate",
        gdal_calc: str = "gdal_calc.py",
        gdaldem: str = "gdaldem",
        gdal2tiles: str = "gdal2tiles.py",
    ) -> None:
        self.gdalinfo = gdalinfo
        self.gdalwarp = gdalwarp
        self.gdal_translate = gdal_translate
        self.gdal_calc = gdal_calc
        self.gdaldem = gdaldem
        self.gdal2tiles = gdal2tiles

    @classmethod
    def from_settings(cls, settings: config.Settings) -> GdalRasterEngine:
        return cls(
            gdalinfo=settings.gdalinfo_bin,
            gdalwarp=settings.gdalwarp_bin,
            gdal_translate=settings.gdal_translate_bin,
            gdal_calc=settings.gdal_calc_bin,
            gdaldem=settings.gdaldem_bin,
            gdal2tiles=settings.gdal2tiles_bin,
        )

    def inspect(self, path: pathlib.Path) -> RasterInfo:
        output = gdal_helpers.run_command((self.gdalinfo, "-json", path))
        return parse_raster_info(output)

    def compute_statistics(
        self,
        path: pathlib.Path,
    ) -> statistics.RawStatistics:
        output = gdal_helpers.run_command((self.gdalinfo, "-stats", path))
        return statistics.parse_statistics(output)

    def reproject(
        self,
        source: pathlib.Path,
        destination: pathlib.Path,
        target_srs: str,
        resampling: str,
        on_line: LineCallback | None = None,
    ) -> pathlib.Path:
        command = (
            self.gdalwarp,
            "-t_srs",
            target_srs,
            "-r",
            resampling,
            "-co",
            "COMPRESS=LZW",
            "-co",
            "TILED=YES",
            "-overwrite",
            source,
            destination,
        )
        gdal_helpers.stream_command(
            command,
            on_stdout=on_line,
            on_stderr=stderr_logger(self.gdalwarp),
        )
        return destination

    def repackage(
        self,
        source: pathlib.Path,
        destination: pathlib.Path,
    ) -> pathlib.Path:
        command = (
            self.gdal_translate,
            "-of",
            "GTiff",
            "-co",
            "COMPRESS=LZW",
            "-co",
            "TILED=YES",
            source,
            destination,
        )
        gdal_helpers.run_command(command)
        return destination

    def apply_pointwise_formula(
        self,
        source: pathlib.Path,
        destination: pathlib.Path,
        formula: str,
        on_line: LineCallback | None = None,
    ) -> pathlib.Path:
        command = (
            self.gdal_calc,
            "-A",
            source,
            f"--outfile={destination}",
            f"--calc={formula}",
            "--type=Float32",
            "--co=COMPRESS=LZW",
            "--co=TILED=YES",
            "--overwrite",
        )
        gdal_helpers.stream_command(
            command,
            on_stdout=on_line,
            on_stderr=stderr_logger(self.gdal_calc),
        )
        return destination

    def rescale_range(
        self,
        source: pathlib.Path,
        destination: pathlib.Path,
        src_min: float,
        src_max: float,
        dst_min: float,
        dst_max: float,
    ) -> pathlib.Path:
        command = (
            self.gdal_translate,
            "-ot",
            "Byte",
            "-scale",
            repr(float(src_min)),
            repr(float(src_max)),
            repr(float(dst_min)),
            repr(float(dst_max)),
            "-co",
            "COMPRESS=LZW",
            "-co",
            "TILED=YES",
            source,
            destination,
        )
        gdal_helpers.run_command(command)
        return destination

    def apply_color_ramp(
        self,
        source: pathlib.Path,
        ramp_table: pathlib.Path,
        destination: pathlib.Path,
    ) -> pathlib.Path:
        command = (
            self.gdaldem,
            "color-relief",
            source,
            ramp_table,
            destination,
            "-alpha",
            "-co",
            "COMPRESS=LZW",
            "-co",
            "TILED=YES",
        )
        gdal_helpers.run_command(command)
        return destination

    def generate_tile_pyramid(
        self,
        source: pathlib.Path,
        output_dir: pathlib.Path,
        options: TilingOptions,
        on_line: LineCallback | None = None,
    ) -> None:
        command = build_tiling_command(
            self.gdal2tiles,
            source,
            output_dir,
            options,
        )
        logger.info("Command: %s", " ".join(command))

        def _log_stderr(line: str) -> None:
            if not any(skip in line for skip in _IGNORED_TILER_STDERR):
                logger.warning("gdal2tiles: %s", line)

        gdal_helpers.stream_command(
            command,
            on_stdout=on_line,
            on_stderr=_log_stderr,
        )

    def version(self) -> str:
        try:
            output = gdal_helpers.run_command((self.gdalinfo, "--version"))
        except gdal_helpers.CommandError as exc:
            logger.warning("Could not determine GDAL version: %s", exc)
            return "unknown"
        return output.strip() or "unknown"
