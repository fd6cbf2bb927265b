"""XYZ tile serving for generated tilesets.

Tiles are static PNG files written by the pipeline under
``<tiles_dir>/<tileset>/<z>/<x>/<y>.png``.

Example:
    Request a tile:
        >>> response = client.get("/tiles/sample/3/4/2.png")
        >>> # Returns PNG bytes with Content-Type: image/png

    Use in MapLibre GL JS:
        >>> map.addSource('sample', {
        ...     type: 'raster',
        ...     tiles: ['http://api/tiles/sample/{z}/{x}/{y}.png'],
        ...     tileSize: 256
        ... });
"""

import fastapi
from fastapi import responses

from tileserver.core import config
from tileserver.services import tilesets

router = fastapi.APIRouter(prefix="/tiles", tags=["tiles"])

TILE_CACHE_CONTROL = "public, max-age=86400"


@router.get("/{tileset}/{z}/{x}/{y}.png")
async def get_tile(
    tileset: str,
    z: int,
    x: int,
    y: int,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> responses.FileResponse:
    """Serve one PNG tile of a generated tileset.

    Args:
        tileset: Tileset id (the input raster's file stem).
        z: Zoom level.
        x: Tile column.
        y: Tile row.
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        The tile file, cacheable for one day.

    Raises:
        HTTPException: If the tile does not exist (404).
    """
    path = tilesets.find_tile(settings.tiles_dir, tileset, z, x, y)
    if path is None:
        raise fastapi.HTTPException(status_code=404, detail="Tile not found")
    return responses.FileResponse(
        path,
        media_type="image/png",
        headers={"Cache-Control": TILE_CACHE_CONTROL},
    )
