"""Error taxonomy for the tileset conversion pipeline.

Every failure raised by the pipeline derives from PipelineError and carries
the stage it happened in, so synchronous callers and job-status readers see
the same context. The job-status surface raises JobNotFoundError for unknown
job ids.

Example:
    Handle a tiling failure:
        >>> from tileserver.core import errors
        >>> try:
        ...     pipeline.run(input_path, config)
        ... except errors.ExternalToolError as e:
        ...     print(e.stage, e.exit_code, e.captured_stderr)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tileserver.db import models as db_models


class PipelineError(Exception):
    """Base class for all pipeline failures.

    Attributes:
        stage: Stage in which the error was raised, None until the
            orchestrator annotates it.
    """

    def __init__(
        self,
        message: str,
        stage: db_models.Stage | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        if self.stage is None:
            return self.message
        return f"[{self.stage.value}] {self.message}"


class ValidationError(PipelineError):
    """Input raster or configuration is missing, unreadable, or invalid."""


class ParseError(PipelineError):
    """Output of the raster engine could not be interpreted."""


class PipelineIOError(PipelineError):
    """A filesystem operation failed outside of tolerated cleanup paths."""


class ExternalToolError(PipelineError):
    """An external raster-engine subprocess exited with a non-zero status.

    Attributes:
        exit_code: Exit status of the child process.
        captured_stderr: Text the child wrote to its error stream.
    """

    def __init__(
        self,
        message: str,
        stage: db_models.Stage | None = None,
        exit_code: int | None = None,
        captured_stderr: str = "",
    ) -> None:
        super().__init__(message, stage)
        self.exit_code = exit_code
        self.captured_stderr = captured_stderr


class JobNotFoundError(LookupError):
    """No status snapshot has been written for the requested job id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Processing ID not found: {job_id}")
        self.job_id = job_id
