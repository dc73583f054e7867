"""
Banking system wiring and authentication dependencies
"""

from datetime import timedelta
from typing import Optional

from fastapi import Depends, Header, Request

from ..access import AccessGate, AuthenticatedAccount
from ..config import CorebankConfig, DEFAULT_JWT_SECRET, get_config
from ..credentials import CredentialStore
from ..ledger import AccountLedger
from ..logging_config import get_logger
from ..migrations import MigrationManager
from ..storage import StorageInterface, create_storage
from ..transfers import TransferService


logger = get_logger("corebank.api")


class BankingSystem:
    """Core banking components built around one storage backend"""

    def __init__(self, storage: StorageInterface, config: Optional[CorebankConfig] = None):
        self.config = config or get_config()
        self.storage = storage

        if self.config.auto_migrate:
            migrations = MigrationManager(self.storage)
            migrations.migrate_up()
            if not migrations.validate_migrations():
                raise RuntimeError("Applied schema migrations do not match the registered ones")

        self.credentials = CredentialStore(
            secret=self.config.jwt_secret.encode(),
            token_ttl=timedelta(minutes=self.config.jwt_expiry_minutes),
            algorithm=self.config.jwt_algorithm,
            scrypt_n=self.config.scrypt_n
        )
        self.ledger = AccountLedger(self.storage)
        self.access_gate = AccessGate(self.credentials, self.ledger)
        self.transfer_service = TransferService(self.ledger)

    @classmethod
    def from_config(cls, config: Optional[CorebankConfig] = None) -> 'BankingSystem':
        """Build the system from configuration, choosing storage by database URL"""
        config = config or get_config()
        if config.jwt_secret == DEFAULT_JWT_SECRET:
            logger.warning("Using the default token signing secret; set COREBANK_JWT_SECRET")
        return cls(create_storage(config.database_url), config)

    def close(self) -> None:
        self.storage.close()


def get_banking_system(request: Request) -> BankingSystem:
    system = getattr(request.app.state, "banking_system", None)
    if system is None:
        raise RuntimeError("Banking system is not initialised")
    return system


def get_current_account(
    authorization: Optional[str] = Header(default=None),
    system: BankingSystem = Depends(get_banking_system)
) -> AuthenticatedAccount:
    """Dependency that validates the bearer token and returns the calling account"""
    return system.access_gate.authenticate(authorization)
