"""
Account Ledger Module

Owns account and transfer records. Account creation and transfer settlement
are serialized by a single ledger lock and run inside one storage
transaction, so a national identifier can never be registered twice and a
transfer is applied to both balances or to neither.
"""

from decimal import (
    Context, Decimal, DecimalException, Inexact, InvalidOperation, Overflow,
    localcontext, MAX_EMAX, MAX_PREC, MIN_EMIN
)
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Any
import threading

from .errors import BankingError, ErrorKind
from .logging_config import get_logger, log_action
from .migrations import ACCOUNTS_TABLE, TRANSFERS_TABLE
from .storage import StorageInterface, StorageRecord, UniqueConstraintError


@dataclass
class Account(StorageRecord):
    """
    Bank account identified by a unique national identifier

    The secret is kept only as a hash and is never part of outward
    representations.
    """
    name: str
    national_id: str
    secret_hash: str
    balance: Decimal

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        data = dict(data)
        data['id'] = int(data['id'])
        data['balance'] = Decimal(data['balance'])
        return super().from_dict(data)


@dataclass
class Transfer(StorageRecord):
    """Immutable record of a settled transfer"""
    origin_account_id: int
    destination_account_id: int
    amount: Decimal

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transfer':
        data = dict(data)
        data['id'] = int(data['id'])
        data['origin_account_id'] = int(data['origin_account_id'])
        data['destination_account_id'] = int(data['destination_account_id'])
        data['amount'] = Decimal(data['amount'])
        return super().from_dict(data)


# Balances are adjusted without rounding; a result that would need it is an error
SETTLEMENT_CONTEXT = Context(
    prec=MAX_PREC, Emax=MAX_EMAX, Emin=MIN_EMIN,
    traps=[InvalidOperation, Inexact, Overflow]
)


def _as_decimal(value, label: str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so floats keep their shortest representation
        return Decimal(str(value))
    except InvalidOperation as e:
        raise BankingError(ErrorKind.INVALID_AMOUNT, f"{label} is not a number") from e


class AccountLedger:
    """
    Manages accounts, balances and transfer settlement
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.accounts_table = ACCOUNTS_TABLE
        self.transfers_table = TRANSFERS_TABLE
        self._lock = threading.Lock()
        self.logger = get_logger("corebank.ledger")

    def create_account(
        self,
        name: str,
        national_id: str,
        secret_hash: str,
        initial_balance: Decimal = Decimal("0")
    ) -> Account:
        """
        Create a new account

        Args:
            name: Display name, must not be empty
            national_id: National identifier, unique across accounts
            secret_hash: Already hashed account secret
            initial_balance: Opening balance, must not be negative

        Returns:
            Created Account with its assigned id and creation timestamp

        Raises:
            BankingError(DUPLICATE_IDENTITY): national_id already registered
            BankingError(INVALID_AMOUNT): initial_balance not a finite number
            BankingError(NEGATIVE_BALANCE): initial_balance below zero
        """
        if not name:
            raise ValueError("Account name must not be empty")
        if not national_id:
            raise ValueError("National identifier must not be empty")

        initial_balance = _as_decimal(initial_balance, "Initial balance")
        if not initial_balance.is_finite():
            raise BankingError(ErrorKind.INVALID_AMOUNT, "Initial balance must be a finite number")
        if initial_balance < 0:
            raise BankingError(ErrorKind.NEGATIVE_BALANCE, "Initial balance must not be negative")

        with self._lock, self.storage.atomic():
            if self.storage.find(self.accounts_table, {"national_id": national_id}):
                raise BankingError(ErrorKind.DUPLICATE_IDENTITY, "Account already exists")

            account = Account(
                id=self.storage.next_id(self.accounts_table),
                created_at=datetime.now(timezone.utc),
                name=name,
                national_id=national_id,
                secret_hash=secret_hash,
                balance=initial_balance
            )
            try:
                self.storage.insert(self.accounts_table, account.id, account.to_dict())
            except UniqueConstraintError as e:
                raise BankingError(ErrorKind.DUPLICATE_IDENTITY, "Account already exists") from e

        log_action(
            self.logger, "info", "Account created",
            account_id=account.id, action="create_account", resource=f"account:{account.id}"
        )
        return account

    def find_by_id(self, account_id: int) -> Account:
        """Get account by ID"""
        data = self.storage.load(self.accounts_table, account_id)
        if not data:
            raise BankingError(ErrorKind.NOT_FOUND, f"Account {account_id} not found")
        return Account.from_dict(data)

    def find_by_national_id(self, national_id: str) -> Account:
        """Get account by national identifier"""
        found = self.storage.find(self.accounts_table, {"national_id": national_id})
        if not found:
            raise BankingError(ErrorKind.NOT_FOUND, "Account not found")
        return Account.from_dict(found[0])

    def list_all(self) -> List[Account]:
        """Snapshot of all accounts, oldest first"""
        accounts = [Account.from_dict(data) for data in self.storage.load_all(self.accounts_table)]
        return sorted(accounts, key=lambda a: (a.created_at, a.id))

    def get_balance(self, account_id: int) -> Decimal:
        """Current committed balance of an account"""
        return self.find_by_id(account_id).balance

    def apply_transfer(self, origin_id: int, destination_id: int, amount: Decimal) -> Transfer:
        """
        Move amount from origin to destination and record the transfer

        Both accounts are re-read inside the transaction, in ascending id
        order, before anything is written.

        Raises:
            BankingError(INVALID_AMOUNT): amount missing, not a number, not
                positive, or not representable exactly in the new balances
            BankingError(SAME_ACCOUNT): origin and destination are the same
            BankingError(NOT_FOUND): either account does not exist
            BankingError(INSUFFICIENT_FUNDS): origin balance below amount
        """
        if amount is None:
            raise BankingError(ErrorKind.INVALID_AMOUNT, "Transfer amount is required")
        amount = _as_decimal(amount, "Transfer amount")
        if not amount.is_finite() or amount <= 0:
            raise BankingError(ErrorKind.INVALID_AMOUNT, "Transfer amount must be positive")
        if origin_id == destination_id:
            raise BankingError(ErrorKind.SAME_ACCOUNT, "Cannot transfer to the origin account")

        with self._lock, self.storage.atomic():
            rows = {}
            for account_id in sorted((origin_id, destination_id)):
                rows[account_id] = self.storage.load_for_update(self.accounts_table, account_id)

            missing = [account_id for account_id, row in rows.items() if row is None]
            if missing:
                raise BankingError(ErrorKind.NOT_FOUND, f"Account {missing[0]} not found")

            origin = Account.from_dict(rows[origin_id])
            destination = Account.from_dict(rows[destination_id])

            if origin.balance < amount:
                raise BankingError(ErrorKind.INSUFFICIENT_FUNDS, "Not enough funds")

            try:
                with localcontext(SETTLEMENT_CONTEXT):
                    origin.balance -= amount
                    destination.balance += amount
            except DecimalException as e:
                raise BankingError(ErrorKind.INVALID_AMOUNT, "Transfer amount cannot be settled exactly") from e
            self.storage.save(self.accounts_table, origin.id, origin.to_dict())
            self.storage.save(self.accounts_table, destination.id, destination.to_dict())

            transfer = Transfer(
                id=self.storage.next_id(self.transfers_table),
                created_at=datetime.now(timezone.utc),
                origin_account_id=origin.id,
                destination_account_id=destination.id,
                amount=amount
            )
            self.storage.insert(self.transfers_table, transfer.id, transfer.to_dict())

        log_action(
            self.logger, "info", "Transfer settled",
            account_id=origin_id, action="apply_transfer", resource=f"transfer:{transfer.id}",
            extra={
                "origin_account_id": origin_id,
                "destination_account_id": destination_id,
                "amount": str(amount)
            }
        )
        return transfer

    def get_transfer(self, transfer_id: int) -> Transfer:
        """Get a transfer by ID"""
        data = self.storage.load(self.transfers_table, transfer_id)
        if not data:
            raise BankingError(ErrorKind.NOT_FOUND, f"Transfer {transfer_id} not found")
        return Transfer.from_dict(data)

    def list_transfers_for_account(self, account_id: int) -> List[Transfer]:
        """Transfers where the account is origin or destination, newest first"""
        transfers = {}
        for field_name in ("origin_account_id", "destination_account_id"):
            for data in self.storage.find(self.transfers_table, {field_name: account_id}):
                transfer = Transfer.from_dict(data)
                transfers[transfer.id] = transfer
        return sorted(transfers.values(), key=lambda t: (t.created_at, t.id), reverse=True)
