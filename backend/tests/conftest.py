"""Shared fixtures: temporary settings and a GDAL-free raster engine.

FakeRasterEngine implements RasterEngineProtocol by writing small
placeholder files where GDAL would write rasters, so the pipeline can run
end to end inside ``tmp_path``. Each call is recorded; setting ``fail_at``
to an operation name makes that operation write its output and then fail
like a GDAL tool exiting with status 1.
"""

from __future__ import annotations

import dataclasses
import pathlib
from typing import TYPE_CHECKING

import pytest

from tileserver.core import config
from tileserver.services import pipeline, raster_engine, statistics
from tileserver.utils import gdal_helpers

if TYPE_CHECKING:
    from collections.abc import Callable

    from tileserver.db import models as db_models
    from tileserver.services import progress

GEODETIC_WKT = (
    'GEOGCRS["WGS 84",DATUM["World Geodetic System 1984"],'
    'CS[ellipsoidal,2],ID["EPSG",4326]]'
)
MERCATOR_WKT = (
    'PROJCRS["WGS 84 / Pseudo-Mercator",BASEGEOGCRS["WGS 84"],'
    'CONVERSION["Popular Visualisation Pseudo-Mercator"],ID["EPSG",3857]]'
)


class FakeRasterEngine(raster_engine.RasterEngineProtocol):
    """In-process stand-in for the GDAL command-line tools."""

    def __init__(self) -> None:
        self.coordinate_system = GEODETIC_WKT
        self.raw_statistics = statistics.RawStatistics(
            min=0,
            max=500,
            mean=0.5,
            std_dev=2,
        )
        self.zoom_levels: tuple[int, ...] = (0, 1, 2)
        self.fail_at: str | None = None
        self.calls: list[str] = []
        self.scale_args: tuple[float, float, float, float] | None = None
        self.formula: str | None = None
        self.ramp_table_text: str | None = None
        self.tiling_options: raster_engine.TilingOptions | None = None

    def _finish(self, name: str) -> None:
        if self.fail_at == name:
            raise gdal_helpers.CommandError(
                f"{name} failed",
                command=[name],
                returncode=1,
                stderr=f"ERROR 1: {name} failed",
            )

    def _write(self, path: pathlib.Path, content: bytes = b"raster") -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    def inspect(self, path: pathlib.Path) -> raster_engine.RasterInfo:
        self.calls.append("inspect")
        self._finish("inspect")
        return raster_engine.RasterInfo(
            size=(400, 200),
            bands=1,
            data_type="Float32",
            bounds=(-10.0, -5.0, 10.0, 5.0),
            coordinate_system=self.coordinate_system,
        )

    def compute_statistics(
        self,
        path: pathlib.Path,
    ) -> statistics.RawStatistics:
        self.calls.append("compute_statistics")
        self._write(path.with_name(path.name + ".aux.xml"), b"<PAMDataset/>")
        self._finish("compute_statistics")
        return self.raw_statistics

    def reproject(
        self,
        source: pathlib.Path,
        destination: pathlib.Path,
        target_srs: str,
        resampling: str,
        on_line: Callable[[str], None] | None = None,
    ) -> pathlib.Path:
        self.calls.append("reproject")
        self._write(destination)
        if on_line is not None:
            on_line("0...10...20...30...40...50...60...70...80...90...100 - done.")
        self._finish("reproject")
        return destination

    def repackage(
        self,
        source: pathlib.Path,
        destination: pathlib.Path,
    ) -> pathlib.Path:
        self.calls.append("repackage")
        self._write(destination)
        self._finish("repackage")
        return destination

    def apply_pointwise_formula(
        self,
        source: pathlib.Path,
        destination: pathlib.Path,
        formula: str,
        on_line: Callable[[str], None] | None = None,
    ) -> pathlib.Path:
        self.calls.append("apply_pointwise_formula")
        self.formula = formula
        self._write(destination)
        self._finish("apply_pointwise_formula")
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
        self.calls.append("rescale_range")
        self.scale_args = (src_min, src_max, dst_min, dst_max)
        self._write(destination)
        self._finish("rescale_range")
        return destination

    def apply_color_ramp(
        self,
        source: pathlib.Path,
        ramp_table: pathlib.Path,
        destination: pathlib.Path,
    ) -> pathlib.Path:
        self.calls.append("apply_color_ramp")
        self.ramp_table_text = ramp_table.read_text(encoding="utf-8")
        self._write(destination)
        self._finish("apply_color_ramp")
        return destination

    def generate_tile_pyramid(
        self,
        source: pathlib.Path,
        output_dir: pathlib.Path,
        options: raster_engine.TilingOptions,
        on_line: Callable[[str], None] | None = None,
    ) -> None:
        self.calls.append("generate_tile_pyramid")
        self.tiling_options = options
        for zoom in self.zoom_levels:
            if on_line is not None:
                on_line(f"Building zoom {zoom}")
            for x in range(2**zoom):
                self._write(output_dir / str(zoom) / str(x) / "0.png", b"png")
        self._finish("generate_tile_pyramid")

    def version(self) -> str:
        return "GDAL 3.8.4, released 2024/02/08"


@dataclasses.dataclass
class RecordingObserver:
    """ProgressObserver that keeps every callback for assertions."""

    stages: list[tuple[int, int, db_models.Stage, str]] = dataclasses.field(
        default_factory=list,
    )
    events: list[tuple[db_models.Stage, progress.ProgressEvent]] = (
        dataclasses.field(default_factory=list)
    )

    def on_stage(
        self,
        step: int,
        total: int,
        stage: db_models.Stage,
        description: str,
    ) -> None:
        self.stages.append((step, total, stage, description))

    def on_progress(
        self,
        stage: db_models.Stage,
        event: progress.ProgressEvent,
    ) -> None:
        self.events.append((stage, event))


@pytest.fixture
def settings(tmp_path: pathlib.Path) -> config.Settings:
    """Settings with every directory inside ``tmp_path``."""
    settings = config.Settings(
        data_dir=tmp_path / "data",
        tiles_dir=tmp_path / "tiles",
        work_dir=tmp_path / "work",
        status_dir=tmp_path / "logs",
        status_backend="memory",
    )
    settings.ensure_directories()
    return settings


@pytest.fixture
def sample_raster(settings: config.Settings) -> pathlib.Path:
    path = settings.data_dir / "sample.tif"
    path.write_bytes(b"II*\x00placeholder")
    return path


@pytest.fixture
def fake_engine() -> FakeRasterEngine:
    return FakeRasterEngine()


@pytest.fixture
def recorder() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def tileset_pipeline(
    settings: config.Settings,
    fake_engine: FakeRasterEngine,
    recorder: RecordingObserver,
) -> pipeline.TilesetPipeline:
    return pipeline.TilesetPipeline(
        engine=fake_engine,
        tiles_dir=settings.tiles_dir,
        work_dir=settings.work_dir,
        observer=recorder,
        now=lambda: "2024-06-01T12:00:00+00:00",
    )
