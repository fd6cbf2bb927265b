"""Discovery of generated tilesets and lookup of individual tiles.

Every directory directly under the tiles root is a tileset. Its
metadata.json, when present and readable, supplies the description, zoom
range and bounds; otherwise defaults are reported.

Example:
    >>> for summary in list_tilesets(settings.tiles_dir):
    ...     print(summary.id, summary.max_zoom, summary.tile_url)
    sample 6 /tiles/sample/{z}/{x}/{y}.png
"""

from __future__ import annotations

import dataclasses
import datetime
import json
import logging
from typing import TYPE_CHECKING, Any

from tileserver.db import models as db_models
from tileserver.services import pipeline, verifier

if TYPE_CHECKING:
    import pathlib

logger = logging.getLogger(__name__)

DEFAULT_MIN_ZOOM = 0
DEFAULT_MAX_ZOOM = 12


@dataclasses.dataclass(frozen=True)
class TilesetSummary:
    """One tileset as listed by the API."""

    id: str
    name: str
    description: str
    min_zoom: int
    max_zoom: int
    bounds: list[float]
    tile_url: str
    created_at: str
    size: int

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "minZoom": self.min_zoom,
            "maxZoom": self.max_zoom,
            "bounds": self.bounds,
            "tileUrl": self.tile_url,
            "createdAt": self.created_at,
            "size": self.size,
        }


def directory_size(path: pathlib.Path) -> int:
    """Total size in bytes of every file below ``path``."""
    return sum(
        entry.stat().st_size for entry in path.rglob("*") if entry.is_file()
    )


def read_metadata(tileset_dir: pathlib.Path) -> dict[str, Any]:
    """Load a tileset's metadata.json; unreadable files yield ``{}``."""
    metadata_path = tileset_dir / verifier.METADATA_FILENAME
    if not metadata_path.is_file():
        return {}
    try:
        metadata = json.loads(metadata_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning(
            "Could not read metadata for %s: %s",
            tileset_dir.name,
            exc,
        )
        return {}
    return metadata if isinstance(metadata, dict) else {}


def summarize(tileset_dir: pathlib.Path) -> TilesetSummary:
    metadata = read_metadata(tileset_dir)
    tiles = metadata.get("tiles") or {}
    geographic = metadata.get("geographic") or {}
    processing = metadata.get("processing") or {}

    created_at = processing.get("processedAt")
    if not created_at:
        mtime = tileset_dir.stat().st_mtime
        created_at = datetime.datetime.fromtimestamp(
            mtime,
            tz=datetime.UTC,
        ).isoformat()

    return TilesetSummary(
        id=tileset_dir.name,
        name=metadata.get("name") or tileset_dir.name,
        description=metadata.get("description") or f"Tileset {tileset_dir.name}",
        min_zoom=tiles.get("minZoom", DEFAULT_MIN_ZOOM),
        max_zoom=tiles.get("maxZoom", DEFAULT_MAX_ZOOM),
        bounds=list(geographic.get("bounds") or db_models.WORLD_BOUNDS),
        tile_url=pipeline.tile_url_template(tileset_dir.name),
        created_at=created_at,
        size=directory_size(tileset_dir),
    )


def list_tilesets(tiles_dir: pathlib.Path) -> list[TilesetSummary]:
    """Summaries of every tileset under ``tiles_dir``, sorted by id."""
    if not tiles_dir.is_dir():
        return []
    return [
        summarize(entry)
        for entry in sorted(tiles_dir.iterdir())
        if entry.is_dir() and not entry.name.startswith(".")
    ]


def find_tile(
    tiles_dir: pathlib.Path,
    tileset: str,
    z: int,
    x: int,
    y: int,
) -> pathlib.Path | None:
    """Path of ``tileset/z/x/y.png`` under ``tiles_dir``, if it exists.

    Names that would resolve outside ``tiles_dir`` are treated as missing.
    """
    root = tiles_dir.resolve()
    tile_name = f"{y}{verifier.TILE_SUFFIX}"
    candidate = (root / tileset / str(z) / str(x) / tile_name).resolve()
    if not candidate.is_relative_to(root) or not candidate.is_file():
        return None
    return candidate
