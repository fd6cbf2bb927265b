"""Raster-to-XYZ tileset service.

This package converts single-band GeoTIFF rasters into colorized XYZ PNG
tile pyramids and serves them over HTTP.

- Staged conversion pipeline driving GDAL command-line tools
- Log-scaled, percentile-normalized color mapping of the input values
- Tracking of intermediate files so failed runs leave nothing behind
- Background jobs with persisted status snapshots (file, memory, PostgreSQL)
- FastAPI endpoints for uploads, job control, tileset listing and tiles
- A command-line tool for one-off conversions

See module sub-docstrings for details on architecture and usage.
"""
