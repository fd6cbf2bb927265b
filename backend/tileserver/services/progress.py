"""Progress reporting for pipeline stages and external tool output.

The orchestrator reports through a ProgressObserver instead of logging
directly, so callers decide where progress goes (the log, a job status
snapshot, a test recorder). External tools only print free text; the line
parsers here turn the few shapes we recognize into coarse signals:

- ``42%`` anywhere in a line -> percentage
- GDAL's terminal progress ``0...10...20...`` / ``100 - done.`` -> percentage
- gdal2tiles ``Building zoom 5`` -> zoom-level note
- gdal2tiles ``Generating tiles ... 12/340`` -> count note

Lines matching none of these are ignored.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from tileserver.db import models as db_models

logger = logging.getLogger(__name__)

_PERCENT = re.compile(r"(\d{1,3})%")
_GDAL_TERMINAL_DONE = re.compile(r"\b(100)\s*-\s*done")
_GDAL_TERMINAL_STEP = re.compile(r"(\d{1,3})\.\.\.")
_GDAL_TERMINAL_TAIL = re.compile(r"\.\.\.(\d{1,3})\s*$")
_BUILDING_ZOOM = re.compile(r"Building zoom (\d+)")
_TILE_COUNT = re.compile(r"(\d+)/(\d+)")


@dataclasses.dataclass(frozen=True)
class ProgressEvent:
    """A coarse progress signal: a percentage, a note, or both."""

    percent: int | None = None
    note: str | None = None


class ProgressObserver(Protocol):
    """Receives stage transitions and in-stage progress from the pipeline."""

    def on_stage(
        self,
        step: int,
        total: int,
        stage: db_models.Stage,
        description: str,
    ) -> None: ...

    def on_progress(
        self,
        stage: db_models.Stage,
        event: ProgressEvent,
    ) -> None: ...


class LoggingProgressObserver(ProgressObserver):
    """Writes stage transitions and progress to a logger."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or logger

    def on_stage(
        self,
        step: int,
        total: int,
        stage: db_models.Stage,
        description: str,
    ) -> None:
        self.log.info("[STEP %d/%d] %s", step, total, description)

    def on_progress(
        self,
        stage: db_models.Stage,
        event: ProgressEvent,
    ) -> None:
        if event.note:
            self.log.info("%s: %s", stage.value, event.note)
        elif event.percent is not None:
            self.log.info("%s progress: %d%%", stage.value, event.percent)


class CompositeProgressObserver(ProgressObserver):
    """Fans every callback out to several observers, in order."""

    def __init__(self, *observers: ProgressObserver) -> None:
        self.observers = observers

    def on_stage(
        self,
        step: int,
        total: int,
        stage: db_models.Stage,
        description: str,
    ) -> None:
        for observer in self.observers:
            observer.on_stage(step, total, stage, description)

    def on_progress(
        self,
        stage: db_models.Stage,
        event: ProgressEvent,
    ) -> None:
        for observer in self.observers:
            observer.on_progress(stage, event)


def parse_percent(line: str) -> int | None:
    """Extract a completion percentage from one line of tool output.

    Args:
        line: A single output line.

    Returns:
        Percentage in [0, 100], or None if the line carries none.
    """
    match = _PERCENT.search(line)
    if match:
        value = int(match.group(1))
        return value if value <= 100 else None
    if _GDAL_TERMINAL_DONE.search(line):
        return 100
    steps = _GDAL_TERMINAL_STEP.findall(line)
    if steps:
        # The number being printed has no trailing dots yet.
        tail = _GDAL_TERMINAL_TAIL.search(line)
        value = int(tail.group(1) if tail else steps[-1])
        return value if value <= 100 else None
    return None


def parse_tiling_line(line: str) -> ProgressEvent | None:
    """Interpret one line of gdal2tiles standard output.

    Args:
        line: A single output line.

    Returns:
        ProgressEvent for a recognized line, None otherwise.
    """
    text = line.strip()
    if not text:
        return None
    if "Building zoom" in text:
        match = _BUILDING_ZOOM.search(text)
        if match:
            return ProgressEvent(note=f"Building zoom level {match.group(1)}")
        return None
    if "Generating tiles" in text:
        match = _TILE_COUNT.search(text)
        if match:
            return ProgressEvent(
                note=f"Generating tiles: {match.group(1)}/{match.group(2)}",
            )
        return None
    percent = parse_percent(text)
    if percent is not None:
        return ProgressEvent(percent=percent)
    return None


class LineProgressAdapter:
    """Feeds tool output lines to an observer for one stage.

    Repeated identical lines and repeated percentages are reported once.
    """

    def __init__(
        self,
        observer: ProgressObserver,
        stage: db_models.Stage,
        tiling: bool = False,
    ) -> None:
        self.observer = observer
        self.stage = stage
        self.tiling = tiling
        self._last_line: str | None = None
        self._last_event: ProgressEvent | None = None

    def __call__(self, line: str) -> None:
        text = line.strip()
        if not text or text == self._last_line:
            return
        self._last_line = text
        if self.tiling:
            event = parse_tiling_line(text)
        else:
            percent = parse_percent(text)
            event = ProgressEvent(percent=percent) if percent is not None else None
        if event is None or event == self._last_event:
            return
        self._last_event = event
        self.observer.on_progress(self.stage, event)
