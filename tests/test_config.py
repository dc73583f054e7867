"""
Tests for environment driven configuration
"""

import pytest

from corebank import config as config_module
from corebank.api.auth import BankingSystem
from corebank.config import CorebankConfig, DEFAULT_JWT_SECRET, reload_config
from corebank.storage import InMemoryStorage, SQLiteStorage


class TestCorebankConfig:

    def test_defaults(self):
        config = CorebankConfig(_env_file=None)
        assert config.api_port == 9999
        assert config.jwt_algorithm == "HS256"
        assert config.jwt_expiry_minutes == 60
        assert config.password_min_length == 6
        assert config.jwt_secret == DEFAULT_JWT_SECRET
        assert config.auto_migrate

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("COREBANK_API_PORT", "8000")
        monkeypatch.setenv("COREBANK_DATABASE_URL", "memory://")
        monkeypatch.setenv("COREBANK_LOG_FORMAT", "text")

        config = CorebankConfig(_env_file=None)
        assert config.api_port == 8000
        assert config.database_url == "memory://"
        assert config.log_format == "text"

    def test_reload_config(self, monkeypatch):
        original = config_module.config
        monkeypatch.setenv("COREBANK_PASSWORD_MIN_LENGTH", "10")
        try:
            reloaded = reload_config()
            assert reloaded.password_min_length == 10
            assert config_module.get_config() is reloaded
        finally:
            config_module.config = original


class TestBankingSystemFromConfig:

    @pytest.mark.parametrize("url, backend", [
        ("memory://", InMemoryStorage),
        ("sqlite:///:memory:", SQLiteStorage),
    ])
    def test_storage_selected_by_url(self, url, backend):
        config = CorebankConfig(database_url=url, scrypt_n=1024, _env_file=None)
        system = BankingSystem.from_config(config)
        try:
            assert isinstance(system.storage, backend)
            assert system.ledger.list_all() == []
        finally:
            system.close()

    def test_migrations_skipped_when_disabled(self):
        config = CorebankConfig(database_url="memory://", auto_migrate=False, _env_file=None)
        system = BankingSystem.from_config(config)
        assert system.storage.count("schema_migrations") == 0
