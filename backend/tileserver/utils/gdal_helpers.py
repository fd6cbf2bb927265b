"""Safe execution wrapper for GDAL command-line utilities.

This module provides a safe interface for executing GDAL tools (gdalinfo,
gdalwarp, gdal_translate, gdal_calc.py, gdaldem, gdal2tiles.py) as
subprocesses. ``run_command`` captures the full output of short calls;
``stream_command`` hands long-running tools' output to a callback one line
at a time so progress can be reported while the tool is still working.

Non-zero exit codes, and executables that cannot be started, result in
CommandError exceptions carrying the exit code and the command's stderr.

Example:
    Read raster metadata:
        >>> from tileserver.utils.gdal_helpers import run_command
        >>> info_json = run_command(["gdalinfo", "-json", "input.tif"])

    Follow gdal2tiles progress:
        >>> stream_command(
        ...     ["gdal2tiles.py", "--xyz", "in.tif", "tiles/"],
        ...     on_stdout=print,
        ... )
"""

from __future__ import annotations

import collections
import subprocess
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Callable, Iterable

# Exit status shells report for a command that could not be found.
NOT_FOUND_EXIT_CODE = 127
_STDERR_TAIL_LINES = 200


class CommandError(RuntimeError):
    """Exception raised when a GDAL subprocess command fails.

    Attributes:
        command: The argument list that was executed.
        returncode: Exit status of the process.
        stderr: Captured stderr output (stripped).
    """

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


def _as_args(command: Iterable[str | pathlib.Path]) -> list[str]:
    return [str(part) for part in command]


def run_command(
    command: Iterable[str | pathlib.Path],
    workdir: pathlib.Path | None = None,
) -> str:
    """Execute a command, raise on non-zero exit, and return its stdout.

    Output is decoded as UTF-8; invalid bytes become U+FFFD.

    Args:
        command: Iterable arguments to execute (e.g., ["gdalinfo", ...]).
        workdir: Optional working directory for the command execution.

    Returns:
        The command's standard output.

    Raises:
        CommandError: if the command cannot be started or exits with a
            non-zero status code. The message contains its stderr output.
    """
    args = _as_args(command)
    try:
        result = subprocess.run(
            args,
            cwd=workdir,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except FileNotFoundError as exc:
        raise CommandError(
            f"Executable not found: {args[0]}",
            command=args,
            returncode=NOT_FOUND_EXIT_CODE,
            stderr=str(exc),
        ) from exc
    if result.returncode != 0:
        stderr = result.stderr.strip()
        raise CommandError(
            stderr or "Unknown command failure",
            command=args,
            returncode=result.returncode,
            stderr=stderr,
        )
    return result.stdout


def stream_command(
    command: Iterable[str | pathlib.Path],
    on_stdout: Callable[[str], None] | None = None,
    on_stderr: Callable[[str], None] | None = None,
    workdir: pathlib.Path | None = None,
) -> None:
    """Execute a long-running command, streaming its output line by line.

    Stdout is read on the calling thread; stderr is drained on a helper
    thread so neither pipe can fill up and stall the child. Each non-empty
    line (trailing whitespace stripped) is passed to the matching callback.
    Bytes that are not valid UTF-8 are decoded as U+FFFD.

    Args:
        command: Iterable arguments to execute.
        on_stdout: Called with every stdout line.
        on_stderr: Called with every stderr line.
        workdir: Optional working directory for the command execution.

    Raises:
        CommandError: if the command cannot be started or exits with a
            non-zero status code (including being killed by a signal).
    """
    args = _as_args(command)
    try:
        process = subprocess.Popen(
            args,
            cwd=workdir,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
        )
    except FileNotFoundError as exc:
        raise CommandError(
            f"Executable not found: {args[0]}",
            command=args,
            returncode=NOT_FOUND_EXIT_CODE,
            stderr=str(exc),
        ) from exc

    stderr_tail: collections.deque[str] = collections.deque(
        maxlen=_STDERR_TAIL_LINES,
    )

    def _drain_stderr() -> None:
        assert process.stderr is not None
        for raw in process.stderr:
            line = raw.rstrip()
            if not line:
                continue
            stderr_tail.append(line)
            if on_stderr is not None:
                on_stderr(line)

    reader = threading.Thread(target=_drain_stderr, daemon=True)
    reader.start()
    try:
        assert process.stdout is not None
        for raw in process.stdout:
            line = raw.rstrip()
            if line and on_stdout is not None:
                on_stdout(line)
    except BaseException:
        process.kill()
        raise
    finally:
        returncode = process.wait()
        reader.join()

    if returncode != 0:
        stderr = "\n".join(stderr_tail)
        raise CommandError(
            stderr or f"Command exited with code {returncode}",
            command=args,
            returncode=returncode,
            stderr=stderr,
        )
