"""
Tests for the schema migration system
"""

import pytest

from corebank.api.auth import BankingSystem
from corebank.config import CorebankConfig
from corebank.migrations import MigrationManager, ACCOUNTS_TABLE, TRANSFERS_TABLE
from corebank.storage import InMemoryStorage, SQLiteStorage, UniqueConstraintError


class TestMigrationManager:
    """Test migration bookkeeping on the in-memory backend"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.manager = MigrationManager(self.storage)

    def test_fresh_storage_has_pending_migrations(self):
        assert self.manager.get_current_version() == 0
        pending = self.manager.get_pending_migrations()
        assert [m.version for m in pending] == [1, 2]

        status = self.manager.get_migration_status()
        assert status["needs_migration"]
        assert status["latest_version"] == 2
        assert status["pending_count"] == 2

    def test_migrate_up_applies_all(self):
        applied = self.manager.migrate_up()

        assert [m.version for m in applied] == [1, 2]
        assert all(m.applied_at is not None for m in applied)
        assert self.manager.get_current_version() == 2
        assert not self.manager.get_migration_status()["needs_migration"]
        assert self.manager.validate_migrations()

    def test_migrate_up_is_idempotent(self):
        self.manager.migrate_up()
        assert self.manager.migrate_up() == []

        # A new manager over the same storage sees the recorded versions
        assert MigrationManager(self.storage).get_current_version() == 2

    def test_migrate_up_to_target_version(self):
        applied = self.manager.migrate_up(target_version=1)
        assert [m.version for m in applied] == [1]
        assert self.manager.get_current_version() == 1

    def test_unique_national_id_after_migration(self):
        self.manager.migrate_up()
        self.storage.insert(ACCOUNTS_TABLE, 1, {"id": 1, "national_id": "123.456.789-00"})

        with pytest.raises(UniqueConstraintError):
            self.storage.insert(ACCOUNTS_TABLE, 2, {"id": 2, "national_id": "123.456.789-00"})

    def test_duplicate_version_rejected(self):
        with pytest.raises(ValueError, match="already registered"):
            self.manager.add_migration(1, "Duplicate", lambda storage: None)

    def test_failed_migration_is_not_recorded(self):
        def broken(storage):
            storage.ensure_table("half_done")
            raise RuntimeError("boom")

        self.manager.add_migration(3, "Broken step", broken)

        with pytest.raises(RuntimeError, match="Migration failed"):
            self.manager.migrate_up()

        assert self.manager.get_current_version() == 2

    def test_migrate_down(self):
        removed = []
        self.manager.add_migration(
            3, "Reversible step",
            lambda storage: storage.ensure_table("extra"),
            lambda storage: removed.append("extra")
        )
        self.manager.migrate_up()
        assert self.manager.get_current_version() == 3

        rolledback = self.manager.migrate_down(2)

        assert [m.version for m in rolledback] == [3]
        assert removed == ["extra"]
        assert self.manager.get_current_version() == 2

    def test_unique_index_step_is_reversible(self):
        self.manager.migrate_up()

        reverted = self.manager.migrate_down(1)

        assert [m.version for m in reverted] == [2]
        assert self.manager.get_current_version() == 1
        self.storage.insert(ACCOUNTS_TABLE, 1, {"id": 1, "national_id": "123.456.789-00"})
        self.storage.insert(ACCOUNTS_TABLE, 2, {"id": 2, "national_id": "123.456.789-00"})

        # Re-applying fails on the duplicate rows and leaves the version untouched
        with pytest.raises(RuntimeError, match="Migration failed"):
            self.manager.migrate_up()
        assert self.manager.get_current_version() == 1

    def test_validate_detects_renamed_migration(self):
        self.manager.migrate_up()
        self.manager.migrations[0].name = "Renamed"
        assert not self.manager.validate_migrations()


class TestSQLiteMigrations:
    """Test migrations against SQLite"""

    def setup_method(self):
        self.storage = SQLiteStorage(":memory:")

    def teardown_method(self):
        self.storage.close()

    def test_tables_and_sequences_usable_after_migration(self):
        MigrationManager(self.storage).migrate_up()

        assert self.storage.count(ACCOUNTS_TABLE) == 0
        assert self.storage.count(TRANSFERS_TABLE) == 0
        assert self.storage.next_id(ACCOUNTS_TABLE) == 1

    def test_unique_national_id_index(self):
        MigrationManager(self.storage).migrate_up()
        self.storage.insert(ACCOUNTS_TABLE, 1, {"id": 1, "national_id": "123.456.789-00"})

        with pytest.raises(UniqueConstraintError):
            self.storage.insert(ACCOUNTS_TABLE, 2, {"id": 2, "national_id": "123.456.789-00"})

    def test_migrate_down_drops_unique_index(self):
        manager = MigrationManager(self.storage)
        manager.migrate_up()
        manager.migrate_down(1)

        self.storage.insert(ACCOUNTS_TABLE, 1, {"id": 1, "national_id": "123.456.789-00"})
        self.storage.insert(ACCOUNTS_TABLE, 2, {"id": 2, "national_id": "123.456.789-00"})
        assert self.storage.count(ACCOUNTS_TABLE) == 2


class TestStartupValidation:
    """The banking system refuses a store whose applied migrations were renamed"""

    def test_renamed_migration_blocks_startup(self):
        storage = InMemoryStorage()
        MigrationManager(storage).migrate_up()
        row = storage.load("schema_migrations", "v001")
        storage.save("schema_migrations", "v001", dict(row, name="Something else"))

        config = CorebankConfig(database_url="memory://", scrypt_n=1024, _env_file=None)
        with pytest.raises(RuntimeError, match="do not match"):
            BankingSystem(storage, config)
