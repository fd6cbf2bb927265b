"""Raster processing job API endpoints.

A client names a raster already present in the data directory, the
conversion runs as a background task, and the client polls the status
endpoint until the job is completed or failed.

Example:
    Start a job and poll its status:
        >>> response = client.post(
        ...     "/api/process-tiff",
        ...     json={"filename": "sample.tif", "options": {"maxZoom": 6}},
        ... )
        >>> processing_id = response.json()["processingId"]
        >>> client.get(f"/api/processing-status/{processing_id}").json()
        >>> # Returns: {"status": "processing", "progress": 25,
        >>> #           "message": "[7/11] Converting to 8-bit ...", ...}
"""

from __future__ import annotations

import pathlib
from typing import Any, Literal, TypedDict

import fastapi
import pydantic

from tileserver.core import config, errors
from tileserver.db import database
from tileserver.db import models as db_models
from tileserver.services import jobs, pipeline

router = fastapi.APIRouter(prefix="/api", tags=["processing"])


class ConversionOptions(pydantic.BaseModel):
    """Per-request overrides of the default conversion configuration."""

    model_config = pydantic.ConfigDict(populate_by_name=True)

    min_zoom: int | None = pydantic.Field(default=None, alias="minZoom")
    max_zoom: int | None = pydantic.Field(default=None, alias="maxZoom")
    tile_size: int | None = pydantic.Field(default=None, alias="tileSize")
    profile: Literal["geodetic", "mercator"] | None = None
    resampling: str | None = None
    processes: int | None = None
    force_web_mercator: bool | None = pydantic.Field(
        default=None,
        alias="forceWebMercator",
    )
    web_viewer: bool | None = pydantic.Field(default=None, alias="webViewer")


class ProcessRequest(pydantic.BaseModel):
    filename: str | None = None
    options: ConversionOptions = pydantic.Field(
        default_factory=ConversionOptions,
    )


class ProcessResponse(TypedDict):
    status: str
    processingId: str
    message: str
    statusUrl: str


def get_tracker(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> jobs.JobStatusTracker:
    """Resolve the job status tracker dependency.

    Args:
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        JobStatusTracker backed by the configured status repository.
    """
    return jobs.JobStatusTracker(database.get_status_repository(settings))


def get_pipeline(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> pipeline.TilesetPipeline:
    return pipeline.TilesetPipeline.from_settings(settings)


def _resolve_input(data_dir: pathlib.Path, filename: str) -> pathlib.Path:
    """Map a bare filename onto the data directory.

    Raises:
        HTTPException: 400 for names containing path components.
    """
    if pathlib.PurePath(filename).name != filename or filename in {".", ".."}:
        raise fastapi.HTTPException(
            status_code=400,
            detail="Filename must not contain path components",
        )
    return data_dir / filename


@router.post("/process-tiff")
async def process_tiff(
    request: ProcessRequest,
    background_tasks: fastapi.BackgroundTasks,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    tracker: jobs.JobStatusTracker = fastapi.Depends(get_tracker),  # noqa: B008
    conversion: pipeline.TilesetPipeline = fastapi.Depends(get_pipeline),  # noqa: B008
) -> ProcessResponse:
    """Start converting a raster from the data directory into tiles.

    The conversion runs after the response is sent. Its progress is
    written to the job's status snapshot.

    Args:
        request: Filename inside the data directory plus option overrides.
        background_tasks: FastAPI background task queue.
        settings: Application settings (injected via FastAPI Depends).
        tracker: Job status tracker (injected via FastAPI Depends).
        conversion: Pipeline to run (injected via FastAPI Depends).

    Returns:
        Processing id and the URL to poll for status.

    Raises:
        HTTPException: 400 if the filename is missing or the options are
            invalid, 404 if the file is not in the data directory.
    """
    if not request.filename:
        raise fastapi.HTTPException(
            status_code=400,
            detail="Filename is required",
        )
    input_path = _resolve_input(settings.data_dir, request.filename)
    if not input_path.is_file():
        raise fastapi.HTTPException(
            status_code=404,
            detail="TIFF file not found",
        )

    conversion_config = settings.conversion_defaults().merged(
        request.options.model_dump(exclude_none=True),
    )
    problems = conversion_config.problems()
    if problems:
        raise fastapi.HTTPException(status_code=400, detail="; ".join(problems))

    job = db_models.ProcessingJob(
        id=jobs.new_job_id(),
        input_path=input_path,
        config=conversion_config,
    )
    tracker.start(job.id)
    background_tasks.add_task(jobs.run_job, job, conversion, tracker)

    return ProcessResponse(
        status="success",
        processingId=job.id,
        message="TIFF processing started",
        statusUrl=f"/api/processing-status/{job.id}",
    )


@router.get("/processing-status/{processing_id}")
async def processing_status(
    processing_id: str,
    tracker: jobs.JobStatusTracker = fastapi.Depends(get_tracker),  # noqa: B008
) -> dict[str, Any]:
    """Return the latest status snapshot of a processing job.

    Raises:
        HTTPException: 404 if no snapshot exists for ``processing_id``.
    """
    try:
        snapshot = tracker.get(processing_id)
    except errors.JobNotFoundError as exc:
        raise fastapi.HTTPException(status_code=404, detail=str(exc)) from exc
    return snapshot.to_record()
