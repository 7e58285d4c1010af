"""
Unit tests for TrustPact configuration.
"""

from datetime import timedelta

import pytest

from trustpact.config import Settings, StoreBackend
from trustpact.store import InMemoryDocumentStore, SqliteDocumentStore, create_document_store


class TestSettings:
    """Tests for Settings loading and validation."""

    def test_defaults(self, monkeypatch):
        """Defaults work for local development."""
        monkeypatch.delenv("TRUSTPACT_STORE_BACKEND", raising=False)
        settings = Settings()

        assert settings.store_backend == StoreBackend.MEMORY
        assert settings.collection == "trustRequests"
        assert settings.default_expiration == timedelta(hours=24)
        assert settings.strict_transitions is False
        settings.validate_settings()

    def test_env_overrides(self, monkeypatch, tmp_path):
        """Environment variables with the TRUSTPACT_ prefix are read."""
        monkeypatch.setenv("TRUSTPACT_STORE_BACKEND", "sqlite")
        monkeypatch.setenv("TRUSTPACT_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("TRUSTPACT_DEFAULT_EXPIRATION_HOURS", "48")
        monkeypatch.setenv("TRUSTPACT_STRICT_TRANSITIONS", "true")

        settings = Settings()

        assert settings.store_backend == StoreBackend.SQLITE
        assert settings.data_dir == str(tmp_path)
        assert settings.default_expiration == timedelta(hours=48)
        assert settings.strict_transitions is True

    @pytest.mark.parametrize(
        "overrides",
        [
            {"default_expiration_hours": 0},
            {"max_expiration_days": -1},
            {"collection": ""},
            {"log_format": "xml"},
            {"store_backend": StoreBackend.SQLITE, "data_dir": ""},
        ],
    )
    def test_invalid_settings(self, overrides):
        """validate_settings() rejects inconsistent values."""
        settings = Settings(**overrides)
        with pytest.raises(ValueError):
            settings.validate_settings()


class TestCreateDocumentStore:
    """Tests for the store factory."""

    def test_memory(self):
        store = create_document_store(Settings(store_backend=StoreBackend.MEMORY))
        assert isinstance(store, InMemoryDocumentStore)

    def test_sqlite(self, tmp_path):
        """SQLite backend uses the configured data directory."""
        settings = Settings(store_backend=StoreBackend.SQLITE, data_dir=str(tmp_path))
        store = create_document_store(settings)

        assert isinstance(store, SqliteDocumentStore)
        assert store.db_path == tmp_path / "trustpact.db"
