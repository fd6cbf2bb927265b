"""Tileset listing endpoint.

Example:
    >>> client.get("/api/tilesets").json()
    >>> # Returns: {"status": "success", "count": 1, "tilesets": [
    >>> #     {"id": "sample", "minZoom": 0, "maxZoom": 6,
    >>> #      "tileUrl": "/tiles/sample/{z}/{x}/{y}.png", ...}]}
"""

from typing import Any

import fastapi

from tileserver.core import config
from tileserver.services import tilesets

router = fastapi.APIRouter(prefix="/api/tilesets", tags=["tilesets"])


@router.get("")
async def list_tilesets(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, Any]:
    """List every tileset found in the tiles directory.

    Zoom range, bounds and description come from each tileset's
    metadata.json, with defaults when it is missing.

    Args:
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        Dictionary with the tileset count and one summary per tileset,
        ordered by id.
    """
    summaries = tilesets.list_tilesets(settings.tiles_dir)
    return {
        "status": "success",
        "count": len(summaries),
        "tilesets": [summary.to_record() for summary in summaries],
    }
