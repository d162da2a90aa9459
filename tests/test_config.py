"""Tests for configuration and database utilities."""

from decimal import Decimal
from pathlib import Path

import pytest

import ops_ledger.services.database as db_module
from ops_ledger.utils.config import Config, get_config, get_database_url, reset_config


class TestConfig:
    """Tests for Config."""

    def test_defaults(self):
        config = Config("production")

        assert config.batch_write_mode == "atomic"
        assert config.lock_timeout_seconds == 30.0
        assert config.low_stock_threshold == Decimal("10")
        assert config.max_suggested_lots == 3
        assert config.is_production
        assert config.database_path == Path.home() / ".ops_ledger" / "ops_ledger.db"

    def test_development_uses_project_data_dir(self):
        config = Config("development")

        assert config.is_development
        assert config.database_path.parent.name == "data"

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("OPS_LEDGER_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("OPS_LEDGER_BATCH_WRITE_MODE", "saga")
        monkeypatch.setenv("OPS_LEDGER_LOCK_TIMEOUT", "2.5")
        monkeypatch.setenv("OPS_LEDGER_LOW_STOCK_THRESHOLD", "4")

        config = Config()

        assert config.database_path == tmp_path / "ops_ledger.db"
        assert config.database_url.startswith("sqlite:///")
        assert config.batch_write_mode == "saga"
        assert config.lock_timeout_seconds == 2.5
        assert config.low_stock_threshold == Decimal("4")

    def test_database_url_override(self, monkeypatch):
        monkeypatch.setenv("OPS_LEDGER_DATABASE_URL", "postgresql://ledger@db/ledger")

        assert Config().database_url == "postgresql://ledger@db/ledger"

    def test_invalid_write_mode(self, monkeypatch):
        monkeypatch.setenv("OPS_LEDGER_BATCH_WRITE_MODE", "eventual")

        with pytest.raises(ValueError):
            Config()

    def test_database_exists(self, monkeypatch, tmp_path):
        monkeypatch.setenv("OPS_LEDGER_DATA_DIR", str(tmp_path))
        config = Config()

        assert not config.database_exists()
        config.ensure_directories()
        config.database_path.touch()
        assert config.database_exists()


class TestGetConfig:
    """Tests for the configuration singleton."""

    def test_singleton(self):
        assert get_config() is get_config()

    def test_environment_from_env_var(self, monkeypatch):
        monkeypatch.setenv("OPS_LEDGER_ENV", "development")
        reset_config()

        assert get_config().environment == "development"

    def test_environment_cannot_change_after_creation(self):
        first = get_config("production")

        assert get_config("development") is first
        assert first.environment == "production"

    def test_get_database_url(self, monkeypatch):
        monkeypatch.setenv("OPS_LEDGER_DATABASE_URL", "sqlite:///:memory:")
        reset_config()

        assert get_database_url() == "sqlite:///:memory:"


class TestDatabase:
    """Tests for engine creation and verification."""

    @pytest.fixture
    def file_engine(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPS_LEDGER_DATA_DIR", str(tmp_path))
        reset_config()
        db_module.close_connections()
        yield
        db_module.close_connections()

    def test_initialize_creates_tables(self, file_engine):
        db_module.initialize_app_database()

        assert db_module.verify_database()
        assert get_config().database_exists()

    def test_session_scope_rolls_back_on_error(self, file_engine):
        from ops_ledger.models import ProductionBatch

        db_module.initialize_app_database()

        with pytest.raises(RuntimeError):
            with db_module.session_scope() as session:
                session.add(ProductionBatch(batch_number="B-1", created_by="u"))
                session.flush()
                raise RuntimeError("boom")

        with db_module.session_scope() as session:
            assert session.query(ProductionBatch).count() == 0

    def test_reset_requires_confirmation(self, file_engine):
        with pytest.raises(ValueError):
            db_module.reset_database(confirm=False)
