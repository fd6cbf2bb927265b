"""Post-run inspection of a generated XYZ tileset directory."""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import pathlib

logger = logging.getLogger(__name__)

METADATA_FILENAME = "metadata.json"
TILE_SUFFIX = ".png"
_ZOOM_NAME = re.compile(r"[0-9]+")


@dataclasses.dataclass(frozen=True)
class TilesetVerification:
    """What a tileset directory contains.

    Attributes:
        output_exists: Whether the tileset directory exists.
        metadata_exists: Whether metadata.json exists inside it.
        zoom_levels: Zoom directories found, ascending.
        tiles_per_zoom: PNG tile count per zoom level.
        tile_count: Total PNG tiles across all zoom levels.
    """

    output_exists: bool = False
    metadata_exists: bool = False
    zoom_levels: tuple[int, ...] = ()
    tiles_per_zoom: dict[int, int] = dataclasses.field(default_factory=dict)
    tile_count: int = 0

    def to_record(self) -> dict[str, object]:
        return {
            "outputExists": self.output_exists,
            "metadataExists": self.metadata_exists,
            "zoomLevels": list(self.zoom_levels),
            "tilesPerZoom": {str(z): n for z, n in self.tiles_per_zoom.items()},
            "tileCount": self.tile_count,
        }


def _zoom_dirs(output_dir: pathlib.Path) -> dict[int, list[pathlib.Path]]:
    """Zoom directories keyed by level; ``01`` and ``1`` are both level 1."""
    found: dict[int, list[pathlib.Path]] = {}
    for entry in sorted(output_dir.iterdir()):
        if _ZOOM_NAME.fullmatch(entry.name) and entry.is_dir():
            found.setdefault(int(entry.name), []).append(entry)
    return dict(sorted(found.items()))


def _count_tiles(zoom_dir: pathlib.Path) -> int:
    count = 0
    for x_dir in zoom_dir.iterdir():
        if not x_dir.is_dir():
            continue
        count += sum(
            1
            for tile in x_dir.iterdir()
            if tile.is_file() and tile.name.endswith(TILE_SUFFIX)
        )
    return count


def verify_tileset(output_dir: pathlib.Path) -> TilesetVerification:
    """Scan a tileset directory for zoom levels and ``z/x/y.png`` tiles.

    A missing directory yields a zeroed result and a warning; this function
    only informs and never blocks completion.

    Args:
        output_dir: Tileset directory produced by the tiling stage.

    Returns:
        TilesetVerification snapshot of the directory.
    """
    if not output_dir.is_dir():
        logger.warning("Output directory not found: %s", output_dir)
        return TilesetVerification()

    metadata_exists = (output_dir / METADATA_FILENAME).is_file()
    zoom_dirs = _zoom_dirs(output_dir)
    zoom_levels = list(zoom_dirs)
    logger.info(
        "Found %d zoom levels: %s",
        len(zoom_levels),
        ", ".join(str(z) for z in zoom_levels),
    )

    tiles_per_zoom: dict[int, int] = {}
    for zoom in zoom_levels:
        tiles_per_zoom[zoom] = sum(_count_tiles(d) for d in zoom_dirs[zoom])
        logger.info("Zoom level %d: %d tiles", zoom, tiles_per_zoom[zoom])

    verification = TilesetVerification(
        output_exists=True,
        metadata_exists=metadata_exists,
        zoom_levels=tuple(zoom_levels),
        tiles_per_zoom=tiles_per_zoom,
        tile_count=sum(tiles_per_zoom.values()),
    )
    logger.info(
        "Verification results: %d tiles in %d zoom levels",
        verification.tile_count,
        len(verification.zoom_levels),
    )
    return verification
