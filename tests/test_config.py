"""Tests for environment-driven store configuration."""

import pytest

from achievements.db import InMemoryResourceStore, create_stores
from achievements.db.config import (
    DatabaseConfig,
    StoreDriver,
    get_database_config,
    get_database_url,
    get_store_driver,
)

_ENV_VARS = (
    "DATABASE_URL",
    "DATABASE_HOST",
    "DATABASE_PORT",
    "DATABASE_NAME",
    "DATABASE_USER",
    "DATABASE_PASSWORD",
    "DATABASE_SSL_MODE",
    "DATABASE_LOCK_TIMEOUT_MS",
    "DATABASE_STATEMENT_TIMEOUT_MS",
    "ACHIEVEMENTS_STORE_DRIVER",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDatabaseConfig:

    def test_defaults(self):
        config = DatabaseConfig.from_env()
        assert config.host == "localhost"
        assert config.port == 5432
        assert config.database == "achievements"
        assert config.lock_timeout_ms == 2000
        assert config.statement_timeout_ms == 10000

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DATABASE_HOST", "db.internal")
        monkeypatch.setenv("DATABASE_PORT", "6543")
        monkeypatch.setenv("DATABASE_LOCK_TIMEOUT_MS", "500")
        config = DatabaseConfig.from_env()
        assert config.host == "db.internal"
        assert config.port == 6543
        assert config.lock_timeout_ms == 500

    def test_from_url(self, monkeypatch):
        monkeypatch.setenv("DATABASE_STATEMENT_TIMEOUT_MS", "3000")
        config = DatabaseConfig.from_url("postgresql://review:s3cret@pg:5433/awards?sslmode=require")
        assert config.user == "review"
        assert config.password == "s3cret"
        assert config.host == "pg"
        assert config.port == 5433
        assert config.database == "awards"
        assert config.ssl_mode == "require"
        assert config.statement_timeout_ms == 3000

    def test_url_hides_password(self):
        config = DatabaseConfig(password="s3cret")
        assert "s3cret" not in config.to_url(include_password=False)
        assert "s3cret" in config.to_url()

    def test_dsn(self):
        dsn = DatabaseConfig(host="pg", database="awards").to_dsn()
        assert "host=pg" in dsn
        assert "dbname=awards" in dsn


class TestStoreSelection:

    def test_memory_by_default(self):
        assert get_database_url() is None
        assert get_store_driver() == StoreDriver.MEMORY

    def test_database_url_selects_postgres(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/achievements")
        assert get_store_driver() == StoreDriver.PSYCOPG2
        assert get_database_config().database == "achievements"

    def test_database_host_selects_postgres(self, monkeypatch):
        monkeypatch.setenv("DATABASE_HOST", "pg")
        assert get_store_driver() == StoreDriver.PSYCOPG2

    def test_explicit_driver_wins(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/achievements")
        monkeypatch.setenv("ACHIEVEMENTS_STORE_DRIVER", "memory")
        assert get_store_driver() == StoreDriver.MEMORY

    def test_unknown_driver(self, monkeypatch):
        monkeypatch.setenv("ACHIEVEMENTS_STORE_DRIVER", "sqlite")
        with pytest.raises(ValueError, match="ACHIEVEMENTS_STORE_DRIVER"):
            get_store_driver()

    def test_create_memory_stores(self):
        resources, audit = create_stores()
        assert isinstance(resources, InMemoryResourceStore)
        assert resources.audit_store is audit
