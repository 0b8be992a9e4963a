"""Tests for application startup/shutdown wiring."""

from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from tempokey.application.services import (
    AudioFeatureService,
    BatchOrchestrator,
    StreamSessionRegistry,
)
from tempokey.config import DatabaseSettings, Settings
from tempokey.domain.exceptions import ConfigurationError
from tempokey.infrastructure.lifecycle import _validate_sqlite_path
from tempokey.main import create_app


def _memory_settings() -> Settings:
    return Settings(database=DatabaseSettings(url="sqlite+aiosqlite:///:memory:"))


class TestLifespan:
    """Test the lifespan context manager."""

    def test_startup_builds_services(self) -> None:
        app = create_app(_memory_settings())

        with patch("tempokey.infrastructure.lifecycle.configure_logging"):
            with TestClient(app) as client:
                assert isinstance(app.state.feature_service, AudioFeatureService)
                assert isinstance(app.state.batch_orchestrator, BatchOrchestrator)
                assert isinstance(app.state.stream_sessions, StreamSessionRegistry)
                assert client.get("/api/health/live").status_code == 200

    def test_cache_only_lookup_against_empty_store(self) -> None:
        app = create_app(_memory_settings())

        with patch("tempokey.infrastructure.lifecycle.configure_logging"):
            with TestClient(app) as client:
                response = client.post(
                    "/api/features/batch",
                    json={"track_ids": ["4uLU6hMCjMI75M1A2tKUQC"]},
                )

        assert response.status_code == 200
        assert response.json()["results"]["4uLU6hMCjMI75M1A2tKUQC"]["status"] == "miss"


class TestValidateSqlitePath:
    """Test SQLite path validation."""

    def test_memory_and_postgres_are_skipped(self) -> None:
        _validate_sqlite_path(_memory_settings())
        _validate_sqlite_path(
            Settings(database=DatabaseSettings(url="postgresql+asyncpg://u:p@db/tempokey"))
        )

    def test_creates_parent_directory(self, tmp_path: Path) -> None:
        db_file = tmp_path / "nested" / "tempokey.db"

        _validate_sqlite_path(
            Settings(database=DatabaseSettings(url=f"sqlite+aiosqlite:///{db_file}"))
        )

        assert db_file.parent.is_dir()
        assert not db_file.exists()

    def test_unwritable_directory(self, tmp_path: Path) -> None:
        settings = Settings(
            database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path}/tempokey.db")
        )

        with patch("pathlib.Path.write_bytes", side_effect=PermissionError("read-only")):
            with pytest.raises(ConfigurationError, match="write permissions"):
                _validate_sqlite_path(settings)
