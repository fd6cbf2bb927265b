"""Staged raster-to-tileset conversion pipeline.

TilesetPipeline.run drives one input raster through eleven numbered steps:

 1. Validate            input exists, is readable, configuration is sane
 2. PrepareOutput       tiles/<stem>/ created or emptied
 3. Analyze             size, bands, data type, bounds, coordinate system
 4. DetectProjection    geodetic or mercator
 5. Reproject           to EPSG:3857, only for geodetic input when forced
 6. Optimize            compressed, tiled GeoTIFF copy
 7. NormalizeAndColorize  log10 scale, rescale to bytes, apply color ramp
 8. Tile                gdal2tiles XYZ pyramid
 9. EmitMetadata        metadata.json beside the tiles
10. Cleanup             transient intermediates removed
11. Verify              zoom levels and tile counts

Intermediate rasters live in the staging directory and are registered with
an ArtifactManager before they are created. If any of steps 1-9 fails,
every artifact is removed (retained ones too), the output directory is
removed, and the error is re-raised with its stage attached. Steps 10 and
11 only log problems.

Example:
    >>> pipeline = TilesetPipeline.from_settings(get_settings())
    >>> result = pipeline.run(
    ...     Path("/data/sample.tif"),
    ...     ConversionConfig(max_zoom=6, force_web_mercator=True),
    ... )
    >>> result.tile_url
    '/tiles/sample/{z}/{x}/{y}.png'
"""

from __future__ import annotations

import contextlib
import dataclasses
import json
import logging
import math
import os
import shutil
from typing import TYPE_CHECKING, Any

from tileserver.core import errors
from tileserver.db import models as db_models
from tileserver.services import (
    artifacts,
    color_ramp,
    progress,
    raster_engine,
    statistics,
    verifier,
)
from tileserver.utils import gdal_helpers

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Callable, Iterator

    from tileserver.core import config as app_config

logger = logging.getLogger(__name__)

TOTAL_STEPS = 11
EPSILON = 0.001
LOG_FORMULA = "log10(A + 0.001) - 1"
TARGET_SRS = "EPSG:3857"
REPROJECT_RESAMPLING = "bilinear"
TIFF_EXTENSIONS = (".tif", ".tiff", ".geotiff")
METADATA_VERSION = "1.0.0"
BYTE_MIN = 0
BYTE_MAX = 255


def normalization_range(p95: float) -> tuple[float, float]:
    """Log-space source range mapped onto bytes 0-255.

    The lower bound is the log transform of zero; the upper bound is the
    log of the 95th percentile. Negative percentiles are treated as zero.
    """
    return math.log10(EPSILON) - 1, math.log10(max(p95, 0.0) + EPSILON)


def tile_url_template(tileset_name: str) -> str:
    return f"/tiles/{tileset_name}/{{z}}/{{x}}/{{y}}.png"


def prepare_output_dir(output_dir: pathlib.Path) -> None:
    """Create ``output_dir`` or delete everything inside it.

    The directory itself is kept. Safe to call repeatedly.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    for entry in output_dir.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink(missing_ok=True)


@dataclasses.dataclass
class PipelineResult:
    """Outcome of a successful run."""

    input_path: pathlib.Path
    output_dir: pathlib.Path
    metadata: dict[str, Any]
    verification: verifier.TilesetVerification
    tile_url: str
    colorized_path: pathlib.Path
    processed_at: str

    def to_record(self) -> dict[str, Any]:
        return {
            "success": True,
            "inputFile": str(self.input_path),
            "outputDir": str(self.output_dir),
            "metadata": self.metadata,
            "verification": self.verification.to_record(),
            "tileUrl": self.tile_url,
            "colorizedPath": str(self.colorized_path),
            "processingTime": self.processed_at,
        }


@dataclasses.dataclass
class _RunState:
    input_path: pathlib.Path
    output_dir: pathlib.Path
    config: db_models.ConversionConfig
    artifacts: artifacts.ArtifactManager
    stage: db_models.Stage = db_models.Stage.VALIDATE
    process_path: pathlib.Path | None = None
    info: raster_engine.RasterInfo | None = None
    profile: db_models.Profile = "geodetic"
    stats: statistics.RasterStatistics | None = None
    colorized_path: pathlib.Path | None = None
    metadata: dict[str, Any] = dataclasses.field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.input_path.stem


class TilesetPipeline:
    """Runs the conversion stages for one input raster at a time.

    Args:
        engine: Raster engine used for every pixel operation.
        tiles_dir: Root directory; each tileset goes to ``tiles_dir/<stem>``.
        work_dir: Staging directory for intermediate rasters.
        observer: Receives stage transitions and tool progress.
        large_file_warning_mb: Inputs above this size log a warning.
        now: Clock returning an ISO-8601 timestamp.
    """

    def __init__(
        self,
        engine: raster_engine.RasterEngineProtocol,
        tiles_dir: pathlib.Path,
        work_dir: pathlib.Path,
        observer: progress.ProgressObserver | None = None,
        large_file_warning_mb: float = 1000.0,
        now: Callable[[], str] = db_models.utc_now_iso,
    ) -> None:
        self.engine = engine
        self.tiles_dir = tiles_dir
        self.work_dir = work_dir
        self.observer = observer or progress.LoggingProgressObserver()
        self.large_file_warning_mb = large_file_warning_mb
        self.now = now

    @classmethod
    def from_settings(
        cls,
        settings: app_config.Settings,
        observer: progress.ProgressObserver | None = None,
    ) -> TilesetPipeline:
        return cls(
            engine=raster_engine.GdalRasterEngine.from_settings(settings),
            tiles_dir=settings.tiles_dir,
            work_dir=settings.work_dir,
            observer=observer,
            large_file_warning_mb=settings.large_file_warning_mb,
        )

    def with_observer(
        self,
        observer: progress.ProgressObserver,
    ) -> TilesetPipeline:
        """Copy of this pipeline reporting to ``observer`` instead."""
        return TilesetPipeline(
            engine=self.engine,
            tiles_dir=self.tiles_dir,
            work_dir=self.work_dir,
            observer=observer,
            large_file_warning_mb=self.large_file_warning_mb,
            now=self.now,
        )

    def output_dir_for(self, input_path: pathlib.Path) -> pathlib.Path:
        return self.tiles_dir / input_path.stem

    def run(
        self,
        input_path: pathlib.Path,
        config: db_models.ConversionConfig,
    ) -> PipelineResult:
        """Convert ``input_path`` into an XYZ tileset.

        Args:
            input_path: Raster to convert.
            config: Conversion options.

        Returns:
            PipelineResult with output directory, metadata and verification.

        Raises:
            ValidationError: input missing/unreadable or config invalid.
            ParseError: engine output could not be interpreted.
            ExternalToolError: a GDAL tool exited with a non-zero status.
            PipelineIOError: a filesystem operation failed.
            PipelineError: any other failure, tagged with its stage.
        """
        input_path = input_path.expanduser().resolve()
        state = _RunState(
            input_path=input_path,
            output_dir=self.output_dir_for(input_path),
            config=config,
            artifacts=artifacts.ArtifactManager(),
        )
        logger.info("Input file: %s", state.input_path)
        logger.info("Output directory: %s", state.output_dir)
        logger.info("Configuration: %s", dataclasses.asdict(config))

        try:
            self._validate(state)
            self._prepare_output(state)
            self._analyze(state)
            self._detect_projection(state)
            self._reproject(state)
            self._optimize(state)
            self._normalize_and_colorize(state)
            self._tile(state)
            self._emit_metadata(state)
        except Exception as exc:
            logger.error("Raster processing failed: %s", exc)
            self._rollback(state)
            raise

        self._cleanup(state)
        verification = self._verify(state)
        state.stage = db_models.Stage.DONE
        assert state.colorized_path is not None
        return PipelineResult(
            input_path=state.input_path,
            output_dir=state.output_dir,
            metadata=state.metadata,
            verification=verification,
            tile_url=tile_url_template(state.name),
            colorized_path=state.colorized_path,
            processed_at=self.now(),
        )

    @contextlib.contextmanager
    def _step(
        self,
        state: _RunState,
        step: int,
        stage: db_models.Stage,
        description: str,
    ) -> Iterator[None]:
        """Announce a step and translate its failures into PipelineErrors."""
        state.stage = stage
        self.observer.on_stage(step, TOTAL_STEPS, stage, description)
        try:
            yield
        except errors.PipelineError as exc:
            if exc.stage is None:
                exc.stage = stage
            raise
        except gdal_helpers.CommandError as exc:
            tool = exc.command[0] if exc.command else "command"
            raise errors.ExternalToolError(
                f"{description} failed: {tool} exited with code "
                f"{exc.returncode}: {exc}",
                stage=stage,
                exit_code=exc.returncode,
                captured_stderr=exc.stderr,
            ) from exc
        except OSError as exc:
            raise errors.PipelineIOError(
                f"{description} failed: {exc}",
                stage=stage,
            ) from exc
        except Exception as exc:
            raise errors.PipelineError(
                f"{description} failed: {type(exc).__name__}: {exc}",
                stage=stage,
            ) from exc

    def _validate(self, state: _RunState) -> None:
        with self._step(
            state, 1, db_models.Stage.VALIDATE, "Validating input file"
        ):
            problems = state.config.problems()
            if problems:
                raise errors.ValidationError(
                    "Invalid configuration: " + "; ".join(problems),
                )
            path = state.input_path
            if not path.exists():
                raise errors.ValidationError(
                    f"Input file does not exist: {path}",
                )
            if not path.is_file():
                raise errors.ValidationError(f"Input is not a file: {path}")
            if not os.access(path, os.R_OK):
                raise errors.ValidationError(
                    f"Input file is not readable: {path}",
                )

            size_mb = path.stat().st_size / (1024 * 1024)
            if size_mb > self.large_file_warning_mb:
                logger.warning(
                    "Large file detected: %.1fMB - processing may take "
                    "significant time",
                    size_mb,
                )
            extension = path.suffix.lower()
            if extension not in TIFF_EXTENSIONS:
                logger.warning(
                    "Unexpected file extension: %s - proceeding anyway",
                    extension or "(none)",
                )
            logger.info("File validation passed (%.1fMB)", size_mb)
            state.process_path = path

    def _prepare_output(self, state: _RunState) -> None:
        with self._step(
            state, 2, db_models.Stage.PREPARE_OUTPUT, "Preparing output directory"
        ):
            prepare_output_dir(state.output_dir)
            self.work_dir.mkdir(parents=True, exist_ok=True)

    def _analyze(self, state: _RunState) -> None:
        with self._step(
            state, 3, db_models.Stage.ANALYZE, "Analyzing input raster"
        ):
            assert state.process_path is not None
            info = self.engine.inspect(state.process_path)
            state.info = info
            logger.info("File size: %d x %d pixels", *info.size)
            logger.info("Bands: %d, Data type: %s", info.bands, info.data_type)

    def _detect_projection(self, state: _RunState) -> None:
        with self._step(
            state,
            4,
            db_models.Stage.DETECT_PROJECTION,
            "Detecting projection and tile profile",
        ):
            assert state.info is not None
            detected = raster_engine.detect_profile(state.info.coordinate_system)
            if state.config.profile is not None:
                if state.config.profile != detected:
                    logger.info(
                        "Profile %s requested, overriding detected %s",
                        state.config.profile,
                        detected,
                    )
                state.profile = state.config.profile
            else:
                state.profile = detected
            logger.info("Using tile profile: %s", state.profile)

    def _reproject(self, state: _RunState) -> None:
        if not (state.profile == "geodetic" and state.config.force_web_mercator):
            with self._step(
                state,
                5,
                db_models.Stage.REPROJECT,
                "Skipping reprojection - using existing projection",
            ):
                return

        with self._step(
            state,
            5,
            db_models.Stage.REPROJECT,
            "Converting to Web Mercator projection",
        ):
            assert state.process_path is not None
            destination = state.artifacts.register(
                self.work_dir / f"{state.name}_3857.tif",
            )
            self.engine.reproject(
                state.process_path,
                destination,
                TARGET_SRS,
                REPROJECT_RESAMPLING,
                on_line=progress.LineProgressAdapter(
                    self.observer,
                    db_models.Stage.REPROJECT,
                ),
            )
            state.process_path = destination
            state.profile = "mercator"

    def _optimize(self, state: _RunState) -> None:
        with self._step(
            state, 6, db_models.Stage.OPTIMIZE, "Creating optimized version"
        ):
            assert state.process_path is not None
            destination = state.artifacts.register(
                self.work_dir / f"{state.name}_optimized.tif",
            )
            self.engine.repackage(state.process_path, destination)
            state.process_path = destination

    def _normalize_and_colorize(self, state: _RunState) -> None:
        stage = db_models.Stage.NORMALIZE_AND_COLORIZE
        with self._step(
            state, 7, stage, "Converting to 8-bit with color mapping"
        ):
            assert state.process_path is not None
            source = state.process_path
            work = self.work_dir
            register = state.artifacts.register
            # gdalinfo -stats writes a PAM side-car next to the raster.
            register(source.with_name(source.name + ".aux.xml"))

            stats = statistics.derive_statistics(
                self.engine.compute_statistics(source),
            )
            state.stats = stats
            logger.info(
                "Min: %s, Max: %s, Mean: %.3f, 95th percentile: %.4f",
                stats.min,
                stats.max,
                stats.mean,
                stats.p95,
            )

            log_path = register(work / f"{state.name}_log.tif")
            scaled_path = register(work / f"{state.name}_scaled.tif")
            table_path = register(work / f"{state.name}_color_table.txt")
            colorized = register(
                work / f"{state.name}_8bit_color.tif",
                artifacts.ArtifactTag.RETAIN,
            )

            logger.info("Applying logarithmic transformation...")
            self.engine.apply_pointwise_formula(
                source,
                log_path,
                LOG_FORMULA,
                on_line=progress.LineProgressAdapter(self.observer, stage),
            )

            src_min, src_max = normalization_range(stats.p95)
            logger.info("Scaling log range %.3f to %.3f...", src_min, src_max)
            self.engine.rescale_range(
                log_path,
                scaled_path,
                src_min,
                src_max,
                BYTE_MIN,
                BYTE_MAX,
            )

            ramp = color_ramp.build_color_ramp(stats)
            ramp.write(table_path)
            self.engine.apply_color_ramp(scaled_path, table_path, colorized)

            scratch = {log_path, scaled_path, table_path}
            state.artifacts.purge(lambda path, _tag: path in scratch)
            state.colorized_path = colorized
            logger.info("8-bit color conversion completed")

    def _tile(self, state: _RunState) -> None:
        with self._step(
            state, 8, db_models.Stage.TILE, "Generating tile pyramid"
        ):
            assert state.colorized_path is not None
            config = state.config
            options = raster_engine.TilingOptions(
                min_zoom=config.min_zoom,
                max_zoom=config.max_zoom,
                profile=state.profile,
                resampling=config.resampling,
                tile_size=config.tile_size,
                processes=config.processes,
                resumable=True,
                web_viewer=config.web_viewer,
            )
            self.engine.generate_tile_pyramid(
                state.colorized_path,
                state.output_dir,
                options,
                on_line=progress.LineProgressAdapter(
                    self.observer,
                    db_models.Stage.TILE,
                    tiling=True,
                ),
            )
            logger.info("Tile generation completed successfully")

    def _emit_metadata(self, state: _RunState) -> None:
        with self._step(
            state, 9, db_models.Stage.EMIT_METADATA, "Creating tileset metadata"
        ):
            assert state.info is not None
            config = state.config
            path = state.input_path
            state.metadata = {
                "name": state.name,
                "description": f"Tileset generated from {path.name}",
                "source": {
                    "filename": path.name,
                    "path": str(path),
                    "size": path.stat().st_size,
                },
                "tiles": {
                    "minZoom": config.min_zoom,
                    "maxZoom": config.max_zoom,
                    "tileSize": config.tile_size,
                    "profile": state.profile,
                    "resampling": config.resampling,
                },
                "geographic": {
                    "bounds": list(state.info.bounds),
                    "projection": state.info.coordinate_system,
                    "size": list(state.info.size),
                },
                "processing": {
                    "processedAt": self.now(),
                    "version": METADATA_VERSION,
                    "engineVersion": self.engine.version(),
                },
            }
            metadata_path = state.output_dir / verifier.METADATA_FILENAME
            metadata_path.write_text(
                json.dumps(state.metadata, indent=2),
                encoding="utf-8",
            )
            logger.info("Metadata saved to: %s", metadata_path)

    def _cleanup(self, state: _RunState) -> None:
        state.stage = db_models.Stage.CLEANUP
        self.observer.on_stage(
            10,
            TOTAL_STEPS,
            db_models.Stage.CLEANUP,
            "Cleaning up intermediate files",
        )
        state.artifacts.purge_transient()
        leftover = state.artifacts.paths(artifacts.ArtifactTag.TRANSIENT)
        if leftover:
            logger.warning(
                "Intermediate files could not be removed: %s",
                ", ".join(str(p) for p in leftover),
            )
        for path in state.artifacts.paths(artifacts.ArtifactTag.RETAIN):
            logger.info("Kept %s", path.name)

    def _verify(self, state: _RunState) -> verifier.TilesetVerification:
        state.stage = db_models.Stage.VERIFY
        self.observer.on_stage(
            11,
            TOTAL_STEPS,
            db_models.Stage.VERIFY,
            "Verifying tile generation",
        )
        try:
            return verifier.verify_tileset(state.output_dir)
        except OSError as exc:
            logger.warning("Could not verify tile structure: %s", exc)
            return verifier.TilesetVerification(
                output_exists=state.output_dir.is_dir(),
            )

    def _rollback(self, state: _RunState) -> None:
        state.artifacts.purge_all()
        try:
            shutil.rmtree(state.output_dir)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not clean up %s: %s", state.output_dir, exc)
            return
        logger.info("Cleanup completed after error")
