"""Byte value to RGBA color ramp for colorizing normalized rasters.

The ramp is a fixed visual legend over the 0-255 byte range produced by the
log-scale normalization: black at 0 (made transparent by the tiler), blues
up to about the 95th percentile, green/cyan/yellow through the 99th, and
red/pink/white for the brightest 1%. Because the byte range is already
anchored on the 95th percentile, the stop values do not move with the
per-job statistics; the statistics only annotate the table header.
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import pathlib

    from tileserver.services import statistics

# (value, r, g, b, a); opaque black at 0 matches the tiler nodata value.
LEGEND_STOPS: tuple[tuple[int, int, int, int, int], ...] = (
    (0, 0, 0, 0, 255),
    (50, 0, 0, 10, 255),
    (100, 0, 0, 40, 255),
    (120, 0, 80, 160, 255),
    (150, 0, 140, 255, 255),
    (170, 100, 255, 180, 255),
    (180, 180, 255, 100, 255),
    (200, 255, 255, 0, 255),
    (220, 255, 80, 0, 255),
    (230, 255, 0, 0, 255),
    (240, 255, 160, 255, 255),
    (250, 255, 255, 255, 255),
    (255, 255, 255, 255, 255),
)


@dataclasses.dataclass(frozen=True)
class ColorStop:
    value: int
    r: int
    g: int
    b: int
    a: int = 255

    def components(self) -> tuple[int, int, int, int, int]:
        return (self.value, self.r, self.g, self.b, self.a)


@dataclasses.dataclass(frozen=True)
class ColorRamp:
    """Ordered color stops from byte value 0 to 255.

    Raises:
        ValueError: on construction if a component is outside [0, 255],
            values decrease, or the ramp does not start at 0 and end at 255.
    """

    stops: tuple[ColorStop, ...]
    description: str = ""

    def __post_init__(self) -> None:
        if len(self.stops) < 2:
            raise ValueError("A color ramp needs at least two stops")
        for stop in self.stops:
            if any(not 0 <= part <= 255 for part in stop.components()):
                raise ValueError(f"Color stop out of byte range: {stop}")
        values = [stop.value for stop in self.stops]
        if any(b < a for a, b in zip(values, values[1:], strict=False)):
            raise ValueError("Color stop values must be non-decreasing")
        if values[0] != 0 or values[-1] != 255:
            raise ValueError("Color ramp must start at 0 and end at 255")

    def to_gdaldem_table(self) -> str:
        """Render the ramp as a ``gdaldem color-relief`` color table."""
        lines = []
        if self.description:
            lines.extend(f"# {line}" for line in self.description.splitlines())
        lines.append("# value R G B A")
        lines.extend(
            " ".join(str(part) for part in stop.components())
            for stop in self.stops
        )
        return "\n".join(lines) + "\n"

    def write(self, path: pathlib.Path) -> pathlib.Path:
        path.write_text(self.to_gdaldem_table(), encoding="utf-8")
        return path


def build_color_ramp(stats: statistics.RasterStatistics) -> ColorRamp:
    """Build the colorize-stage ramp for one job.

    Args:
        stats: Statistics of the raster being colorized; recorded in the
            table header only.

    Returns:
        A new ColorRamp with the fixed legend stops.
    """
    description = (
        "Logarithmic light-intensity legend\n"
        f"Byte range 0-255 spans 0 to {stats.p95:.4g} (95th percentile)"
    )
    return ColorRamp(
        stops=tuple(ColorStop(*stop) for stop in LEGEND_STOPS),
        description=description,
    )
