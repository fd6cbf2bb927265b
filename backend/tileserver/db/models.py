"""Data models for conversion jobs, configuration and status snapshots.

This module defines the core data structures used throughout the
application: the conversion configuration surface, the pipeline stage and
job state enums, the ProcessingJob entity, and the JobStatusSnapshot record
persisted by the job-status repositories.

Example:
    Create a job for a raster with a custom zoom range:
        >>> from tileserver.db.models import ConversionConfig, ProcessingJob
        >>> config = ConversionConfig(max_zoom=6, force_web_mercator=True)
        >>> job = ProcessingJob(
        ...     id="1718000000000-k3j2h1g0f",
        ...     input_path=Path("/data/sample.tif"),
        ...     config=config,
        ... )
        >>> job.status
        <JobState.PENDING: 'pending'>
"""

from __future__ import annotations

import dataclasses
import datetime
import enum
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    import pathlib

BBox = tuple[float, float, float, float]
Profile = Literal["geodetic", "mercator"]

PROFILES: tuple[str, ...] = ("geodetic", "mercator")
WORLD_BOUNDS: BBox = (-180.0, -85.0, 180.0, 85.0)


class Stage(enum.StrEnum):
    """Ordered stages of the conversion pipeline."""

    VALIDATE = "validate"
    PREPARE_OUTPUT = "prepare_output"
    ANALYZE = "analyze"
    DETECT_PROJECTION = "detect_projection"
    REPROJECT = "reproject"
    OPTIMIZE = "optimize"
    NORMALIZE_AND_COLORIZE = "normalize_and_colorize"
    TILE = "tile"
    EMIT_METADATA = "emit_metadata"
    CLEANUP = "cleanup"
    VERIFY = "verify"
    DONE = "done"


class JobState(enum.StrEnum):
    """Overall status of a ProcessingJob."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TrackerStatus(enum.StrEnum):
    """Status values written to job status snapshots."""

    STARTING = "starting"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclasses.dataclass
class ConversionConfig:
    """Caller-facing options for one raster-to-tiles conversion.

    Attributes:
        min_zoom: Coarsest zoom level to generate.
        max_zoom: Finest zoom level to generate.
        tile_size: Tile edge length in pixels.
        profile: Tiling profile; None means auto-detect from the raster.
        resampling: Resampling method passed to the tiler.
        processes: Parallel worker hint passed to the tiler.
        force_web_mercator: Reproject geodetic rasters to EPSG:3857 first.
        web_viewer: Let the tiler emit its HTML viewers.
    """

    min_zoom: int = 0
    max_zoom: int = 12
    tile_size: int = 256
    profile: Profile | None = None
    resampling: str = "average"
    processes: int = 4
    force_web_mercator: bool = False
    web_viewer: bool = False

    def problems(self) -> list[str]:
        """List every constraint this configuration violates."""
        found: list[str] = []
        if self.min_zoom < 0:
            found.append("min_zoom must be >= 0")
        if self.max_zoom < self.min_zoom:
            found.append("max_zoom must be >= min_zoom")
        if self.tile_size <= 0:
            found.append("tile_size must be positive")
        if self.processes < 1:
            found.append("processes must be >= 1")
        if self.profile is not None and self.profile not in PROFILES:
            found.append(f"profile must be one of {', '.join(PROFILES)}")
        if not self.resampling:
            found.append("resampling must not be empty")
        return found

    def merged(self, overrides: dict[str, Any]) -> ConversionConfig:
        """Return a copy with non-None ``overrides`` applied."""
        known = {field.name for field in dataclasses.fields(self)}
        changes = {
            key: value
            for key, value in overrides.items()
            if key in known and value is not None
        }
        return dataclasses.replace(self, **changes)


@dataclasses.dataclass
class ProcessingJob:
    """A requested conversion of one input raster.

    Attributes:
        id: Opaque unique job identifier.
        input_path: Raster to convert.
        config: Resolved conversion configuration.
        stage: Stage the pipeline is currently executing.
        status: Overall job status.
        started_at: When the pipeline started running.
        ended_at: When the job reached a terminal status.
        error: Last error message, if the job failed.
    """

    id: str
    input_path: pathlib.Path
    config: ConversionConfig
    stage: Stage = Stage.VALIDATE
    status: JobState = JobState.PENDING
    started_at: datetime.datetime | None = None
    ended_at: datetime.datetime | None = None
    error: str | None = None


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.datetime.now(tz=datetime.UTC).isoformat()


_RECORD_KEYS: dict[str, str] = {
    "status": "status",
    "progress": "progress",
    "message": "message",
    "timestamp": "timestamp",
    "start_time": "startTime",
    "completed_at": "completedAt",
    "failed_at": "failedAt",
    "output_dir": "outputDir",
    "metadata": "metadata",
    "tile_url": "tileUrl",
    "error": "error",
}


@dataclasses.dataclass
class JobStatusSnapshot:
    """The single persisted status record for one job id.

    Serialized with camelCase keys (``startTime``, ``tileUrl`` ...) and
    without the optional keys that are unset.
    """

    status: TrackerStatus
    progress: int
    message: str
    timestamp: str = dataclasses.field(default_factory=utc_now_iso)
    start_time: str | None = None
    completed_at: str | None = None
    failed_at: str | None = None
    output_dir: str | None = None
    metadata: dict[str, Any] | None = None
    tile_url: str | None = None
    error: str | None = None

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for attr, key in _RECORD_KEYS.items():
            value = getattr(self, attr)
            if value is None:
                continue
            record[key] = value.value if attr == "status" else value
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> JobStatusSnapshot:
        values = {
            attr: record[key]
            for attr, key in _RECORD_KEYS.items()
            if key in record
        }
        values["status"] = TrackerStatus(values["status"])
        values["progress"] = int(values.get("progress", 0))
        values.setdefault("message", "")
        return cls(**values)
