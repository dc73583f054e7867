"""
Schema Migrations

Ordered, versioned schema steps for the storage backends. A step is a callable
that receives the StorageInterface; it runs inside one storage transaction
together with the bookkeeping row that marks it as applied.
"""

from typing import Callable, List, Optional, Dict, Any
from datetime import datetime, timezone

from .logging_config import get_logger, log_action
from .storage import StorageInterface, SEQUENCES_TABLE


ACCOUNTS_TABLE = "accounts"
TRANSFERS_TABLE = "transfers"
MIGRATIONS_TABLE = "schema_migrations"

SchemaStep = Callable[[StorageInterface], None]


class Migration:
    """One schema step, optionally reversible"""

    def __init__(self, version: int, name: str, up: SchemaStep, down: Optional[SchemaStep] = None):
        self.version = version
        self.name = name
        self.up = up
        self.down = down
        self.applied_at: Optional[datetime] = None

    @property
    def record_id(self) -> str:
        return f"v{self.version:03d}"

    def __str__(self) -> str:
        return f"{self.record_id} {self.name}"

    def __repr__(self) -> str:
        return f"Migration({self.version}, {self.name!r})"


def _create_core_tables(storage: StorageInterface) -> None:
    for table in (ACCOUNTS_TABLE, TRANSFERS_TABLE, SEQUENCES_TABLE):
        storage.ensure_table(table)


def _unique_national_id(storage: StorageInterface) -> None:
    storage.create_unique_index(ACCOUNTS_TABLE, "national_id")


def _drop_unique_national_id(storage: StorageInterface) -> None:
    storage.drop_unique_index(ACCOUNTS_TABLE, "national_id")


BUILTIN_MIGRATIONS = (
    (1, "Create accounts and transfers tables", _create_core_tables, None),
    (2, "Unique national identifier index", _unique_national_id, _drop_unique_national_id),
)


class MigrationManager:
    """
    Applies and reverts schema steps against one storage backend

    Applied versions are rows in the schema_migrations table keyed by
    ``v<version>``, so any manager over the same storage sees the same state.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.migrations: List[Migration] = []
        self.logger = get_logger("corebank.migrations")
        for version, name, up, down in BUILTIN_MIGRATIONS:
            self.add_migration(version, name, up, down)
        self.storage.ensure_table(MIGRATIONS_TABLE)

    def add_migration(self, version: int, name: str, up: SchemaStep,
                      down: Optional[SchemaStep] = None) -> None:
        """Register a step; versions must be unique"""
        if any(m.version == version for m in self.migrations):
            raise ValueError(f"Migration version {version} already registered")
        self.migrations.append(Migration(version, name, up, down))
        self.migrations.sort(key=lambda m: m.version)

    @property
    def latest_version(self) -> int:
        return self.migrations[-1].version if self.migrations else 0

    def get_applied_migrations(self) -> List[Dict[str, Any]]:
        """Bookkeeping rows of applied steps"""
        return self.storage.load_all(MIGRATIONS_TABLE)

    def get_current_version(self) -> int:
        """Highest applied version, 0 for a fresh store"""
        return max(
            (row["version"] for row in self.get_applied_migrations() if isinstance(row.get("version"), int)),
            default=0
        )

    def get_pending_migrations(self, target_version: Optional[int] = None) -> List[Migration]:
        current = self.get_current_version()
        target = target_version or self.latest_version
        return [m for m in self.migrations if current < m.version <= target]

    def migrate_up(self, target_version: Optional[int] = None) -> List[Migration]:
        """
        Apply every pending step up to target_version (latest by default)

        Raises:
            RuntimeError: a step failed; it and later steps stay unapplied
        """
        applied = []
        for migration in self.get_pending_migrations(target_version):
            try:
                with self.storage.atomic():
                    migration.up(self.storage)
                    migration.applied_at = datetime.now(timezone.utc)
                    self.storage.save(MIGRATIONS_TABLE, migration.record_id, {
                        "version": migration.version,
                        "name": migration.name,
                        "applied_at": migration.applied_at.isoformat(),
                    })
            except Exception as e:
                migration.applied_at = None
                log_action(
                    self.logger, "error", f"Migration {migration} failed: {e}",
                    action="migrate_up", resource=f"migration:{migration.record_id}"
                )
                raise RuntimeError(f"Migration failed: {migration}") from e

            log_action(
                self.logger, "info", f"Applied migration {migration}",
                action="migrate_up", resource=f"migration:{migration.record_id}"
            )
            applied.append(migration)

        return applied

    def migrate_down(self, target_version: int) -> List[Migration]:
        """Revert applied steps above target_version, newest first; steps without a down are skipped"""
        current = self.get_current_version()
        reverted = []
        for migration in reversed(self.migrations):
            if not target_version < migration.version <= current:
                continue
            if migration.down is None:
                self.logger.warning(f"Migration {migration} is not reversible, skipping")
                continue
            try:
                with self.storage.atomic():
                    migration.down(self.storage)
                    self.storage.delete(MIGRATIONS_TABLE, migration.record_id)
            except Exception as e:
                log_action(
                    self.logger, "error", f"Reverting {migration} failed: {e}",
                    action="migrate_down", resource=f"migration:{migration.record_id}"
                )
                raise RuntimeError(f"Rollback failed: {migration}") from e
            reverted.append(migration)

        return reverted

    def validate_migrations(self) -> bool:
        """False when an applied version is now registered under a different name"""
        registered = {m.version: m.name for m in self.migrations}
        for row in self.get_applied_migrations():
            name = registered.get(row.get("version"))
            if name is None:
                self.logger.warning(f"Applied migration v{row.get('version')} is not registered")
            elif name != row.get("name"):
                self.logger.error(f"Migration v{row['version']} was renamed from {row.get('name')!r} to {name!r}")
                return False
        return True

    def get_migration_status(self) -> Dict[str, Any]:
        pending = self.get_pending_migrations()
        return {
            "current_version": self.get_current_version(),
            "latest_version": self.latest_version,
            "applied_count": len(self.get_applied_migrations()),
            "pending_count": len(pending),
            "pending_migrations": [{"version": m.version, "name": m.name} for m in pending],
            "needs_migration": bool(pending),
        }
