"""Tests for the tileserver-process command-line entry point."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tileserver import cli
from tileserver.core import config
from tileserver.services import pipeline

if TYPE_CHECKING:
    import pathlib

    from .conftest import FakeRasterEngine


@pytest.fixture
def patched(
    monkeypatch: pytest.MonkeyPatch,
    settings: config.Settings,
    fake_engine: FakeRasterEngine,
) -> list[config.Settings]:
    """Route the CLI to the temporary settings and the fake engine."""
    used: list[config.Settings] = []

    def from_settings(
        settings: config.Settings,
        **kwargs: object,
    ) -> pipeline.TilesetPipeline:
        used.append(settings)
        return pipeline.TilesetPipeline(
            engine=fake_engine,
            tiles_dir=settings.tiles_dir,
            work_dir=settings.work_dir,
        )

    monkeypatch.setattr(config, "get_settings", lambda: settings)
    monkeypatch.setattr(
        pipeline.TilesetPipeline,
        "from_settings",
        staticmethod(from_settings),
    )
    return used


def test_main_prints_summary(
    patched: list[config.Settings],
    sample_raster: pathlib.Path,
    fake_engine: FakeRasterEngine,
    capsys: pytest.CaptureFixture[str],
) -> None:
    exit_code = cli.main(
        [str(sample_raster), "--max-zoom", "2", "--force-web-mercator"],
    )

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "Processing completed successfully" in out
    assert "Tile URL template: /tiles/sample/{z}/{x}/{y}.png" in out
    assert "Total tiles: 7" in out
    assert "Zoom levels: 0, 1, 2" in out
    assert "reproject" in fake_engine.calls
    assert fake_engine.tiling_options is not None
    assert fake_engine.tiling_options.max_zoom == 2


def test_main_applies_tiles_dir(
    patched: list[config.Settings],
    sample_raster: pathlib.Path,
    tmp_path: pathlib.Path,
) -> None:
    exit_code = cli.main([str(sample_raster), "--tiles-dir", str(tmp_path)])

    assert exit_code == 0
    assert patched[0].tiles_dir == tmp_path
    assert (tmp_path / "sample" / "metadata.json").is_file()


def test_main_reports_failure(
    patched: list[config.Settings],
    sample_raster: pathlib.Path,
    fake_engine: FakeRasterEngine,
    caplog: pytest.LogCaptureFixture,
) -> None:
    fake_engine.fail_at = "generate_tile_pyramid"

    with caplog.at_level("ERROR", logger="tileserver"):
        exit_code = cli.main([str(sample_raster)])

    assert exit_code == 1
    assert "Processing failed: [tile]" in caplog.text
    assert "ERROR 1: generate_tile_pyramid failed" in caplog.text


def test_main_missing_input(
    patched: list[config.Settings],
    tmp_path: pathlib.Path,
) -> None:
    assert cli.main([str(tmp_path / "absent.tif")]) == 1


def test_parser_rejects_unknown_profile() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["in.tif", "--profile", "polar"])
