"""API router subpackage for the tile server.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.

Submodules:
    - processing: Starting conversion jobs and polling their status.
    - uploads: Storing rasters in the data directory.
    - tilesets: Listing generated tilesets.
    - tiles: Serving XYZ PNG tiles.
"""
