"""Tests for tileset discovery and tile lookup."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from tileserver.db import models as db_models
from tileserver.services import tilesets

if TYPE_CHECKING:
    import pathlib


def _write_tileset(tiles_dir: pathlib.Path, name: str) -> pathlib.Path:
    tileset = tiles_dir / name
    tile = tileset / "2" / "1" / "3.png"
    tile.parent.mkdir(parents=True)
    tile.write_bytes(b"12345")
    metadata = {
        "name": name,
        "description": f"Tileset generated from {name}.tif",
        "tiles": {"minZoom": 0, "maxZoom": 6},
        "geographic": {"bounds": [-10.0, -5.0, 10.0, 5.0]},
        "processing": {"processedAt": "2024-06-01T12:00:00+00:00"},
    }
    (tileset / "metadata.json").write_text(json.dumps(metadata))
    return tileset


def test_list_tilesets_reads_metadata(tmp_path: pathlib.Path) -> None:
    tileset = _write_tileset(tmp_path, "sample")

    [summary] = tilesets.list_tilesets(tmp_path)

    assert summary.id == "sample"
    assert summary.description == "Tileset generated from sample.tif"
    assert (summary.min_zoom, summary.max_zoom) == (0, 6)
    assert summary.bounds == [-10.0, -5.0, 10.0, 5.0]
    assert summary.tile_url == "/tiles/sample/{z}/{x}/{y}.png"
    assert summary.created_at == "2024-06-01T12:00:00+00:00"
    assert summary.size == tilesets.directory_size(tileset)
    assert summary.to_record()["tileUrl"] == summary.tile_url


def test_list_tilesets_defaults_without_metadata(
    tmp_path: pathlib.Path,
) -> None:
    (tmp_path / "bare").mkdir()
    (tmp_path / "broken").mkdir()
    (tmp_path / "broken" / "metadata.json").write_text("{not json")
    (tmp_path / "notes.txt").write_text("ignored")

    summaries = tilesets.list_tilesets(tmp_path)

    assert [s.id for s in summaries] == ["bare", "broken"]
    for summary in summaries:
        assert summary.max_zoom == tilesets.DEFAULT_MAX_ZOOM
        assert summary.bounds == list(db_models.WORLD_BOUNDS)
        assert summary.created_at


def test_list_tilesets_missing_root(tmp_path: pathlib.Path) -> None:
    assert tilesets.list_tilesets(tmp_path / "missing") == []


def test_find_tile(tmp_path: pathlib.Path) -> None:
    _write_tileset(tmp_path, "sample")

    found = tilesets.find_tile(tmp_path, "sample", 2, 1, 3)

    assert found is not None
    assert found.read_bytes() == b"12345"
    assert tilesets.find_tile(tmp_path, "sample", 2, 1, 4) is None
    assert tilesets.find_tile(tmp_path, "other", 2, 1, 3) is None


def test_find_tile_stays_inside_tiles_dir(tmp_path: pathlib.Path) -> None:
    tiles_dir = tmp_path / "tiles"
    tiles_dir.mkdir()
    outside = tmp_path / "2" / "1" / "3.png"
    outside.parent.mkdir(parents=True)
    outside.write_bytes(b"secret")

    assert tilesets.find_tile(tiles_dir, "..", 2, 1, 3) is None
