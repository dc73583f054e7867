"""
Tests for the transfer orchestrator
"""

import pytest
from decimal import Decimal

from corebank.access import AuthenticatedAccount
from corebank.errors import BankingError, ErrorKind
from corebank.ledger import AccountLedger
from corebank.migrations import MigrationManager
from corebank.storage import InMemoryStorage
from corebank.transfers import TransferService


class TestTransferService:
    """Test transfers on behalf of an authenticated caller"""

    def setup_method(self):
        storage = InMemoryStorage()
        MigrationManager(storage).migrate_up()
        self.ledger = AccountLedger(storage)
        self.service = TransferService(self.ledger)

        first = self.ledger.create_account("first", "111.111.111-11", "hash", Decimal("100"))
        self.second = self.ledger.create_account("second", "222.222.222-22", "hash", Decimal("50"))
        self.caller = AuthenticatedAccount(account=first)

    def test_transfer_from_caller(self):
        transfer = self.service.transfer(self.caller, self.second.id, Decimal("0.1"))

        assert transfer.origin_account_id == self.caller.account_id
        assert self.ledger.get_balance(self.caller.account_id) == Decimal("99.9")
        assert self.ledger.get_balance(self.second.id) == Decimal("50.1")

    def test_string_amount_is_parsed(self):
        transfer = self.service.transfer(self.caller, self.second.id, "2.50")
        assert transfer.amount == Decimal("2.50")

    @pytest.mark.parametrize("amount", [None, Decimal("0"), Decimal("-1"), "abc", Decimal("NaN")])
    def test_invalid_amount(self, amount):
        with pytest.raises(BankingError) as exc_info:
            self.service.transfer(self.caller, self.second.id, amount)
        assert exc_info.value.kind == ErrorKind.INVALID_AMOUNT
        assert self.ledger.get_balance(self.caller.account_id) == Decimal("100")

    def test_ledger_errors_propagate(self):
        with pytest.raises(BankingError) as exc_info:
            self.service.transfer(self.caller, self.second.id, Decimal("1000"))
        assert exc_info.value.kind == ErrorKind.INSUFFICIENT_FUNDS

        with pytest.raises(BankingError) as exc_info:
            self.service.transfer(self.caller, 999, Decimal("1"))
        assert exc_info.value.kind == ErrorKind.NOT_FOUND

        with pytest.raises(BankingError) as exc_info:
            self.service.transfer(self.caller, self.caller.account_id, Decimal("1"))
        assert exc_info.value.kind == ErrorKind.SAME_ACCOUNT

    def test_history(self):
        sent = self.service.transfer(self.caller, self.second.id, Decimal("1"))
        received = self.ledger.apply_transfer(self.second.id, self.caller.account_id, Decimal("2"))

        assert [t.id for t in self.service.history(self.caller)] == [received.id, sent.id]
