"""Data models and job status repositories.

Models (configuration, jobs, status snapshots) live in tileserver.db.models;
repository protocol and implementations in tileserver.db.database.

Example:
    Use in a service or FastAPI dependency:
        >>> from tileserver.db import database
        >>> repo = database.get_status_repository(settings)
"""
