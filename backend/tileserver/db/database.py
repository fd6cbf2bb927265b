"""Repositories for job status snapshots."""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any, Protocol

import psycopg2
import psycopg2.extensions
import psycopg2.extras

from tileserver.db import models as db_models

if TYPE_CHECKING:
    import pathlib

    from tileserver.core import config

logger = logging.getLogger(__name__)

_SAFE_JOB_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class JobStatusRepositoryProtocol(Protocol):
    """Protocol interface for storing and retrieving job status snapshots.

    Each job id maps to exactly one snapshot; ``put`` overwrites it.
    Implementations exist for in-memory (testing), JSON files (default)
    and PostgreSQL backends.
    """

    def put(
        self,
        job_id: str,
        snapshot: db_models.JobStatusSnapshot,
    ) -> db_models.JobStatusSnapshot: ...

    def get(self, job_id: str) -> db_models.JobStatusSnapshot | None: ...


class InMemoryJobStatusRepository(JobStatusRepositoryProtocol):
    """Simple in-memory store for tests and local development.

    Data is lost when the process exits.
    """

    def __init__(self) -> None:
        """Initialize an empty in-memory repository."""
        self._store: dict[str, dict[str, Any]] = {}

    def put(
        self,
        job_id: str,
        snapshot: db_models.JobStatusSnapshot,
    ) -> db_models.JobStatusSnapshot:
        """Overwrite the snapshot stored for a job.

        Args:
            job_id: Job identifier.
            snapshot: Snapshot to store.

        Returns:
            The stored snapshot.
        """
        self._store[job_id] = snapshot.to_record()
        return snapshot

    def get(self, job_id: str) -> db_models.JobStatusSnapshot | None:
        """Retrieve the snapshot for a job.

        Args:
            job_id: Job identifier.

        Returns:
            JobStatusSnapshot if one was written, None otherwise.
        """
        record = self._store.get(job_id)
        if record is None:
            return None
        return db_models.JobStatusSnapshot.from_record(record)


class FileJobStatusRepository(JobStatusRepositoryProtocol):
    """One pretty-printed JSON file per job id inside a status directory.

    Files are written to a temporary sibling and renamed into place so
    readers never observe a half-written snapshot.
    """

    def __init__(self, status_dir: pathlib.Path) -> None:
        self.status_dir = status_dir

    def _path(self, job_id: str) -> pathlib.Path:
        if not _SAFE_JOB_ID.match(job_id):
            raise ValueError(f"Invalid job id: {job_id!r}")
        return self.status_dir / f"{job_id}.json"

    def put(
        self,
        job_id: str,
        snapshot: db_models.JobStatusSnapshot,
    ) -> db_models.JobStatusSnapshot:
        path = self._path(job_id)
        self.status_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(
            json.dumps(snapshot.to_record(), indent=2),
            encoding="utf-8",
        )
        tmp_path.replace(path)
        return snapshot

    def get(self, job_id: str) -> db_models.JobStatusSnapshot | None:
        try:
            path = self._path(job_id)
        except ValueError:
            return None
        if not path.exists():
            return None
        record = json.loads(path.read_text(encoding="utf-8"))
        return db_models.JobStatusSnapshot.from_record(record)


class PostgresJobStatusRepository(JobStatusRepositoryProtocol):
    """PostgreSQL-backed repository for job status snapshots.

    Stores the snapshot record as JSONB keyed by job id and creates the
    table on initialization.
    """

    CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS job_status (
      job_id TEXT PRIMARY KEY,
      status TEXT NOT NULL,
      snapshot JSONB NOT NULL,
      updated_at TIMESTAMPTZ DEFAULT now()
    );
    """

    def __init__(self, settings: config.Settings) -> None:
        """Initialize repository with database settings.

        Args:
            settings: Application settings containing database connection URL.
        """
        self.settings = settings
        self._ensure_schema()

    def _connection(self) -> psycopg2.extensions.connection:
        return psycopg2.connect(self.settings.database_url)

    def _ensure_schema(self) -> None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(self.CREATE_TABLE_SQL)
            conn.commit()

    def put(
        self,
        job_id: str,
        snapshot: db_models.JobStatusSnapshot,
    ) -> db_models.JobStatusSnapshot:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO job_status (job_id, status, snapshot, updated_at)
                VALUES (%(job_id)s, %(status)s, %(snapshot)s, now())
                ON CONFLICT (job_id) DO UPDATE SET
                    status = EXCLUDED.status,
                    snapshot = EXCLUDED.snapshot,
                    updated_at = EXCLUDED.updated_at;
                """,
                {
                    "job_id": job_id,
                    "status": snapshot.status.value,
                    "snapshot": psycopg2.extras.Json(snapshot.to_record()),
                },
            )
            conn.commit()
        return snapshot

    def get(self, job_id: str) -> db_models.JobStatusSnapshot | None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(
                "SELECT snapshot FROM job_status WHERE job_id = %s",
                (job_id,),
            )
            row = cur.fetchone()
        if row is None:
            return None
        record = row[0]
        if isinstance(record, str):
            record = json.loads(record)
        return db_models.JobStatusSnapshot.from_record(record)


# Shared so snapshots outlive a single request.
_MEMORY_REPOSITORY = InMemoryJobStatusRepository()


def get_status_repository(
    settings: config.Settings,
) -> JobStatusRepositoryProtocol:
    """Factory function to create the configured status repository.

    Args:
        settings: Application settings selecting the backend.

    Returns:
        Repository for ``settings.status_backend``.
    """
    if settings.status_backend == "postgres":
        return PostgresJobStatusRepository(settings)
    if settings.status_backend == "memory":
        return _MEMORY_REPOSITORY
    logger.debug("Using file status repository in %s", settings.status_dir)
    return FileJobStatusRepository(settings.status_dir)
