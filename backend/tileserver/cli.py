"""Command-line entry point: convert one raster into an XYZ tileset.

Example:
    $ tileserver-process /data/sample.tif --max-zoom 6 --force-web-mercator
"""

from __future__ import annotations

import argparse
import logging
import pathlib
import sys

from tileserver.core import config, errors, log_setup
from tileserver.db import models as db_models
from tileserver.services import pipeline

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tileserver-process",
        description="Convert a GeoTIFF into colorized XYZ PNG tiles.",
    )
    parser.add_argument("input", type=pathlib.Path, help="Input raster file")
    parser.add_argument("--min-zoom", type=int, help="Minimum zoom level")
    parser.add_argument("--max-zoom", type=int, help="Maximum zoom level")
    parser.add_argument("--tile-size", type=int, help="Tile size in pixels")
    parser.add_argument(
        "--profile",
        choices=db_models.PROFILES,
        help="Tiling profile (auto-detected when omitted)",
    )
    parser.add_argument("--resampling", help="Resampling method")
    parser.add_argument("--processes", type=int, help="Parallel tiler workers")
    parser.add_argument(
        "--force-web-mercator",
        action="store_true",
        default=None,
        help="Reproject geodetic input to EPSG:3857 before tiling",
    )
    parser.add_argument(
        "--web-viewer",
        action="store_true",
        default=None,
        help="Also generate the tiler's HTML viewers",
    )
    parser.add_argument(
        "--tiles-dir",
        type=pathlib.Path,
        help="Root directory for generated tilesets",
    )
    parser.add_argument("--log-level", help="Log level (default from settings)")
    return parser


def _print_summary(result: pipeline.PipelineResult) -> None:
    verification = result.verification
    print("Processing completed successfully")
    print(f"Output directory: {result.output_dir}")
    print(f"Tile URL template: {result.tile_url}")
    print(f"Colorized raster: {result.colorized_path}")
    print(f"Total tiles: {verification.tile_count}")
    print(
        "Zoom levels: "
        + (", ".join(str(z) for z in verification.zoom_levels) or "none"),
    )


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = config.get_settings()
    log_setup.configure_logging(args.log_level or settings.log_level)
    if args.tiles_dir is not None:
        settings = settings.model_copy(update={"tiles_dir": args.tiles_dir})

    conversion_config = settings.conversion_defaults().merged(
        {
            "min_zoom": args.min_zoom,
            "max_zoom": args.max_zoom,
            "tile_size": args.tile_size,
            "profile": args.profile,
            "resampling": args.resampling,
            "processes": args.processes,
            "force_web_mercator": args.force_web_mercator,
            "web_viewer": args.web_viewer,
        },
    )

    conversion = pipeline.TilesetPipeline.from_settings(settings)
    try:
        result = conversion.run(args.input, conversion_config)
    except errors.PipelineError as exc:
        logger.error("Processing failed: %s", exc)
        if isinstance(exc, errors.ExternalToolError) and exc.captured_stderr:
            logger.error("Tool output:\n%s", exc.captured_stderr)
        return 1

    _print_summary(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
