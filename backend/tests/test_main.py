"""Tests for the FastAPI main application factory and health checks.

This module validates that:
    - The FastAPI app is correctly instantiated via main.create_app,
    - OpenAPI metadata (title, version) matches the project contract,
    - The processing, upload, tileset and tile routers are registered,
    - The /health endpoint returns the expected response.

See Also:
    - backend/tileserver/main.py for the application factory.
"""

from __future__ import annotations

from typing import cast

from fastapi import testclient

from tileserver import main


def test_create_app() -> None:
    """Test that create_app returns a configured FastAPI instance."""
    app = main.create_app()
    assert app.title == "Tile Server"
    assert app.version == "0.1.0"


def test_health_endpoint() -> None:
    """Test the health check endpoint returns ok status."""
    client = testclient.TestClient(main.create_app())
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["version"] == "0.1.0"
    assert body["uptime"] >= 0
    assert "timestamp" in body


def test_app_includes_routers() -> None:
    """Test that all API routers are included in the app."""
    app = main.create_app()
    routes: list[str] = [
        cast(str, getattr(route, "path", ""))
        for route in app.routes
        if hasattr(route, "path")
    ]
    for path in (
        "/health",
        "/api/process-tiff",
        "/api/processing-status/{processing_id}",
        "/api/uploads",
        "/api/tilesets",
        "/tiles/{tileset}/{z}/{x}/{y}.png",
    ):
        assert path in routes
