"""Lifecycle tracking for intermediate files created during a conversion.

Every file a stage produces in the staging area is registered with a
retention tag before the stage runs. On success only ``transient``
artifacts are purged; on failure everything is. Purging never raises:
a file that is already gone is fine, and a file that cannot be removed is
logged and left registered, because cleanup must not turn a finished job
into a failed one.

Example:
    >>> manager = ArtifactManager()
    >>> manager.register(work_dir / "sample_optimized.tif")
    >>> manager.register(work_dir / "sample_8bit_color.tif", ArtifactTag.RETAIN)
    >>> manager.purge_transient()
    [PosixPath('.../sample_optimized.tif')]
"""

from __future__ import annotations

import enum
import logging
import pathlib
import shutil
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

logger = logging.getLogger(__name__)


class ArtifactTag(enum.StrEnum):
    TRANSIENT = "transient"
    RETAIN = "retain"


class ArtifactManager:
    """Insertion-ordered set of artifact paths and their retention tags."""

    def __init__(self) -> None:
        self._artifacts: dict[pathlib.Path, ArtifactTag] = {}

    def __contains__(self, path: object) -> bool:
        return isinstance(path, pathlib.Path) and path in self._artifacts

    def __len__(self) -> int:
        return len(self._artifacts)

    def __iter__(self) -> Iterator[tuple[pathlib.Path, ArtifactTag]]:
        return iter(list(self._artifacts.items()))

    def register(
        self,
        path: pathlib.Path,
        tag: ArtifactTag = ArtifactTag.TRANSIENT,
    ) -> pathlib.Path:
        """Track a path; re-registering a path updates its tag.

        Args:
            path: File or directory the pipeline is about to create.
            tag: Retention tag.

        Returns:
            The registered path, for chaining.
        """
        self._artifacts[path] = tag
        return path

    def tag_of(self, path: pathlib.Path) -> ArtifactTag | None:
        return self._artifacts.get(path)

    def paths(self, tag: ArtifactTag | None = None) -> list[pathlib.Path]:
        """Registered paths in insertion order, optionally filtered by tag."""
        return [
            path
            for path, path_tag in self._artifacts.items()
            if tag is None or path_tag == tag
        ]

    def purge(
        self,
        predicate: Callable[[pathlib.Path, ArtifactTag], bool],
    ) -> list[pathlib.Path]:
        """Remove matching artifacts from disk and from the set.

        Args:
            predicate: Called with each registered path and its tag.

        Returns:
            Paths that are no longer on disk (removed now or already gone).
            Paths whose removal failed stay registered and are not returned.
        """
        purged: list[pathlib.Path] = []
        for path, tag in list(self._artifacts.items()):
            if not predicate(path, tag):
                continue
            if _remove(path):
                del self._artifacts[path]
                purged.append(path)
        if purged:
            logger.info("Cleaned up %d intermediate file(s)", len(purged))
        return purged

    def purge_transient(self) -> list[pathlib.Path]:
        """Purge every artifact tagged ``transient``."""
        return self.purge(lambda _path, tag: tag == ArtifactTag.TRANSIENT)

    def purge_all(self) -> list[pathlib.Path]:
        """Purge every artifact regardless of tag."""
        return self.purge(lambda _path, _tag: True)


def _remove(path: pathlib.Path) -> bool:
    """Delete a file or directory tree; True if it no longer exists."""
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
    except FileNotFoundError:
        return True
    except OSError as exc:
        logger.warning("Could not remove %s: %s", path, exc)
        return False
    logger.debug("Removed %s", path.name)
    return True
