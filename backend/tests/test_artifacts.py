"""Tests for intermediate-file tracking in tileserver.services.artifacts."""

from __future__ import annotations

import pathlib

import pytest

from tileserver.services import artifacts


def _touch(path: pathlib.Path) -> pathlib.Path:
    path.write_bytes(b"data")
    return path


def test_register_keeps_insertion_order(tmp_path: pathlib.Path) -> None:
    manager = artifacts.ArtifactManager()
    first = manager.register(tmp_path / "a.tif")
    second = manager.register(tmp_path / "b.tif", artifacts.ArtifactTag.RETAIN)
    third = manager.register(tmp_path / "c.tif")

    assert manager.paths() == [first, second, third]
    assert manager.paths(artifacts.ArtifactTag.TRANSIENT) == [first, third]
    assert len(manager) == 3
    assert second in manager
    assert manager.tag_of(second) is artifacts.ArtifactTag.RETAIN


def test_reregistering_updates_tag(tmp_path: pathlib.Path) -> None:
    manager = artifacts.ArtifactManager()
    path = manager.register(tmp_path / "a.tif")
    manager.register(path, artifacts.ArtifactTag.RETAIN)

    assert len(manager) == 1
    assert manager.tag_of(path) is artifacts.ArtifactTag.RETAIN


def test_purge_transient_keeps_retained(tmp_path: pathlib.Path) -> None:
    manager = artifacts.ArtifactManager()
    transient = manager.register(_touch(tmp_path / "sample_optimized.tif"))
    retained = manager.register(
        _touch(tmp_path / "sample_8bit_color.tif"),
        artifacts.ArtifactTag.RETAIN,
    )

    purged = manager.purge_transient()

    assert purged == [transient]
    assert not transient.exists()
    assert retained.exists()
    assert list(manager) == [(retained, artifacts.ArtifactTag.RETAIN)]


def test_purge_all_removes_every_tag(tmp_path: pathlib.Path) -> None:
    manager = artifacts.ArtifactManager()
    manager.register(_touch(tmp_path / "a.tif"))
    manager.register(_touch(tmp_path / "b.tif"), artifacts.ArtifactTag.RETAIN)

    manager.purge_all()

    assert len(manager) == 0
    assert list(tmp_path.iterdir()) == []


def test_purge_tolerates_missing_files(tmp_path: pathlib.Path) -> None:
    """A path that was never created counts as purged."""
    manager = artifacts.ArtifactManager()
    missing = manager.register(tmp_path / "never_written.tif")

    assert manager.purge_all() == [missing]
    assert len(manager) == 0


def test_purge_removes_directories(tmp_path: pathlib.Path) -> None:
    manager = artifacts.ArtifactManager()
    directory = tmp_path / "scratch"
    (directory / "nested").mkdir(parents=True)
    _touch(directory / "nested" / "file.txt")
    manager.register(directory)

    manager.purge_all()

    assert not directory.exists()


def test_purge_with_predicate(tmp_path: pathlib.Path) -> None:
    manager = artifacts.ArtifactManager()
    log_raster = manager.register(_touch(tmp_path / "sample_log.tif"))
    optimized = manager.register(_touch(tmp_path / "sample_optimized.tif"))

    purged = manager.purge(lambda path, _tag: path.name.endswith("_log.tif"))

    assert purged == [log_raster]
    assert optimized.exists()
    assert optimized in manager


def test_failed_removal_is_logged_and_kept(
    tmp_path: pathlib.Path,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    manager = artifacts.ArtifactManager()
    path = manager.register(_touch(tmp_path / "locked.tif"))

    def deny(self: pathlib.Path, missing_ok: bool = False) -> None:
        raise PermissionError("permission denied")

    monkeypatch.setattr(pathlib.Path, "unlink", deny)
    with caplog.at_level("WARNING", logger="tileserver"):
        purged = manager.purge_all()

    assert purged == []
    assert path in manager
    assert "Could not remove" in caplog.text
