"""Raster upload endpoint.

Uploaded files land in the data directory under their own name, where
``POST /api/process-tiff`` can pick them up.

Example:
    >>> response = client.post(
    ...     "/api/uploads",
    ...     files={"file": ("sample.tif", open("sample.tif", "rb"), "image/tiff")},
    ... )
    >>> response.json()
    >>> # Returns: {"filename": "sample.tif", "path": "/data/sample.tif",
    >>> #           "size": 1048576}
"""

from __future__ import annotations

import logging
import os
import pathlib
import shutil
import tempfile
from typing import TypedDict

import fastapi

from tileserver.core import config

logger = logging.getLogger(__name__)

router = fastapi.APIRouter(prefix="/api", tags=["uploads"])

_CHUNK_SIZE = 1024 * 1024


class UploadResponse(TypedDict):
    filename: str
    path: str
    size: int


def _safe_filename(filename: str | None) -> str:
    name = pathlib.PurePath(filename or "").name
    if not name or name in {".", ".."}:
        raise fastapi.HTTPException(status_code=400, detail="Invalid filename")
    return name


def _save_upload(
    file: fastapi.UploadFile,
    storage_dir: pathlib.Path,
    max_size: int,
) -> tuple[pathlib.Path, int]:
    """Stream an upload to ``storage_dir`` with a size limit.

    The data is written to a temporary file first and moved into place only
    once complete.

    Args:
        file: FastAPI UploadFile object containing the file data.
        storage_dir: Directory where the file should be saved.
        max_size: Maximum allowed file size in bytes.

    Returns:
        Path to the saved file and its size in bytes.

    Raises:
        HTTPException: 400 for an unusable filename, 413 if the file exceeds
            the maximum size.
    """
    name = _safe_filename(file.filename)
    storage_dir.mkdir(parents=True, exist_ok=True)
    target_path = storage_dir / name
    with tempfile.NamedTemporaryFile(delete=False, dir=storage_dir) as tmp:
        size = 0
        try:
            for chunk in iter(lambda: file.file.read(_CHUNK_SIZE), b""):
                size += len(chunk)
                if size > max_size:
                    raise fastapi.HTTPException(
                        status_code=413,
                        detail="Upload too large",
                    )
                tmp.write(chunk)
        except BaseException:
            tmp.close()
            os.unlink(tmp.name)
            raise
        tmp.flush()

    shutil.move(tmp.name, target_path)
    return target_path, size


@router.post("/uploads")
async def upload_raster(
    file: fastapi.UploadFile,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> UploadResponse:
    """Store an uploaded raster in the data directory.

    Args:
        file: Uploaded file from multipart form data.
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        Stored filename, path and size.

    Raises:
        HTTPException: If the filename is unusable or the file is too large.
    """
    saved_path, size = _save_upload(
        file,
        settings.data_dir,
        settings.max_upload_size_bytes,
    )
    logger.info("Stored upload %s (%d bytes)", saved_path.name, size)
    return UploadResponse(
        filename=saved_path.name,
        path=str(saved_path),
        size=size,
    )
