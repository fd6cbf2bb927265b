"""Background conversion jobs and their persisted status snapshots.

A job moves through ``starting (0%) -> processing (25%) -> completed (100%)``
or ends in ``failed (0%)``. Every transition overwrites the single snapshot
stored for the job id; readers always see the latest one.

Example:
    >>> tracker = JobStatusTracker(database.InMemoryJobStatusRepository())
    >>> job_id = new_job_id()
    >>> tracker.start(job_id).status
    <TrackerStatus.STARTING: 'starting'>
    >>> tracker.get("abc123")
    Traceback (most recent call last):
    ...
    tileserver.core.errors.JobNotFoundError: Processing ID not found: abc123
"""

from __future__ import annotations

import datetime
import logging
import secrets
import string
import time
from typing import TYPE_CHECKING

from tileserver.core import errors
from tileserver.db import models as db_models
from tileserver.services import progress

if TYPE_CHECKING:
    from collections.abc import Callable

    from tileserver.db import database
    from tileserver.services import pipeline

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase
_ID_SUFFIX_LENGTH = 9

PROGRESS_STARTING = 0
PROGRESS_PROCESSING = 25
PROGRESS_COMPLETED = 100
PROGRESS_FAILED = 0


def new_job_id() -> str:
    """``<epoch milliseconds>-<9 random base36 characters>``."""
    suffix = "".join(
        secrets.choice(_ID_ALPHABET) for _ in range(_ID_SUFFIX_LENGTH)
    )
    return f"{time.time_ns() // 1_000_000}-{suffix}"


class JobStatusTracker:
    """Writes and reads job status snapshots through a repository.

    Args:
        repo: Where snapshots are persisted.
        now: Clock returning an ISO-8601 timestamp.
    """

    def __init__(
        self,
        repo: database.JobStatusRepositoryProtocol,
        now: Callable[[], str] = db_models.utc_now_iso,
    ) -> None:
        self.repo = repo
        self.now = now

    def _write(
        self,
        job_id: str,
        snapshot: db_models.JobStatusSnapshot,
    ) -> db_models.JobStatusSnapshot:
        previous = self.repo.get(job_id)
        if previous is not None and snapshot.start_time is None:
            snapshot.start_time = previous.start_time
        return self.repo.put(job_id, snapshot)

    def start(
        self,
        job_id: str,
        message: str = "Starting raster processing",
    ) -> db_models.JobStatusSnapshot:
        now = self.now()
        return self.repo.put(
            job_id,
            db_models.JobStatusSnapshot(
                status=db_models.TrackerStatus.STARTING,
                progress=PROGRESS_STARTING,
                message=message,
                timestamp=now,
                start_time=now,
            ),
        )

    def processing(
        self,
        job_id: str,
        message: str,
    ) -> db_models.JobStatusSnapshot:
        return self._write(
            job_id,
            db_models.JobStatusSnapshot(
                status=db_models.TrackerStatus.PROCESSING,
                progress=PROGRESS_PROCESSING,
                message=message,
                timestamp=self.now(),
            ),
        )

    def complete(
        self,
        job_id: str,
        result: pipeline.PipelineResult,
    ) -> db_models.JobStatusSnapshot:
        now = self.now()
        return self._write(
            job_id,
            db_models.JobStatusSnapshot(
                status=db_models.TrackerStatus.COMPLETED,
                progress=PROGRESS_COMPLETED,
                message="Processing completed successfully",
                timestamp=now,
                completed_at=now,
                output_dir=str(result.output_dir),
                metadata=result.metadata,
                tile_url=result.tile_url,
            ),
        )

    def fail(
        self,
        job_id: str,
        error: BaseException | str,
    ) -> db_models.JobStatusSnapshot:
        now = self.now()
        text = str(error)
        return self._write(
            job_id,
            db_models.JobStatusSnapshot(
                status=db_models.TrackerStatus.FAILED,
                progress=PROGRESS_FAILED,
                message=f"Processing failed: {text}",
                timestamp=now,
                failed_at=now,
                error=text,
            ),
        )

    def get(self, job_id: str) -> db_models.JobStatusSnapshot:
        """Latest snapshot for ``job_id``.

        Raises:
            JobNotFoundError: if nothing was ever written for the id.
        """
        snapshot = self.repo.get(job_id)
        if snapshot is None:
            raise errors.JobNotFoundError(job_id)
        return snapshot


class JobProgressObserver(progress.ProgressObserver):
    """Mirrors pipeline stage transitions onto a job and its snapshot."""

    def __init__(
        self,
        job: db_models.ProcessingJob,
        tracker: JobStatusTracker,
    ) -> None:
        self.job = job
        self.tracker = tracker

    def on_stage(
        self,
        step: int,
        total: int,
        stage: db_models.Stage,
        description: str,
    ) -> None:
        self.job.stage = stage
        self.tracker.processing(
            self.job.id,
            f"[{step}/{total}] {description}",
        )

    def on_progress(
        self,
        stage: db_models.Stage,
        event: progress.ProgressEvent,
    ) -> None:
        # Only stage transitions are persisted.
        return None


def run_job(
    job: db_models.ProcessingJob,
    conversion: pipeline.TilesetPipeline,
    tracker: JobStatusTracker,
) -> db_models.ProcessingJob:
    """Run ``conversion`` for ``job`` and record the outcome.

    Never raises for pipeline failures: the error text ends up in the job
    and in a ``failed`` snapshot instead.

    Args:
        job: Job to run; mutated in place.
        conversion: Pipeline to execute.
        tracker: Status tracker for the job's snapshots.

    Returns:
        The same job, in a terminal state.
    """
    job.status = db_models.JobState.RUNNING
    job.started_at = datetime.datetime.now(tz=datetime.UTC)
    tracker.processing(job.id, "Processing raster")

    observer = progress.CompositeProgressObserver(
        conversion.observer,
        JobProgressObserver(job, tracker),
    )
    try:
        result = conversion.with_observer(observer).run(
            job.input_path,
            job.config,
        )
    except Exception as exc:
        logger.error("Job %s failed: %s", job.id, exc)
        job.status = db_models.JobState.FAILED
        job.error = str(exc)
        job.ended_at = datetime.datetime.now(tz=datetime.UTC)
        tracker.fail(job.id, exc)
        return job

    job.stage = db_models.Stage.DONE
    job.status = db_models.JobState.COMPLETED
    job.ended_at = datetime.datetime.now(tz=datetime.UTC)
    tracker.complete(job.id, result)
    logger.info("Job %s completed: %s", job.id, result.output_dir)
    return job
