"""
Transfer Orchestration Module

Validates transfer requests made by an authenticated account and hands them
to the ledger for atomic settlement. The origin of a transfer is always the
authenticated caller.
"""

from decimal import Decimal, InvalidOperation
from typing import List, Optional

from .access import AuthenticatedAccount
from .errors import BankingError, ErrorKind
from .ledger import AccountLedger, Transfer


class TransferService:
    """Creates and lists transfers on behalf of an authenticated account"""

    def __init__(self, ledger: AccountLedger):
        self.ledger = ledger

    def transfer(
        self,
        caller: AuthenticatedAccount,
        destination_id: int,
        amount: Optional[Decimal]
    ) -> Transfer:
        """
        Transfer amount from the caller's account to destination_id

        NOT_FOUND, INSUFFICIENT_FUNDS and SAME_ACCOUNT from the ledger are
        propagated unchanged.

        Raises:
            BankingError(INVALID_AMOUNT): amount missing, unparseable or not positive
        """
        if amount is None:
            raise BankingError(ErrorKind.INVALID_AMOUNT, "Transfer amount is required")
        try:
            amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        except InvalidOperation as e:
            raise BankingError(ErrorKind.INVALID_AMOUNT, "Transfer amount is not a number") from e
        if not amount.is_finite() or amount <= 0:
            raise BankingError(ErrorKind.INVALID_AMOUNT, "Transfer amount must be positive")

        return self.ledger.apply_transfer(caller.account_id, destination_id, amount)

    def history(self, caller: AuthenticatedAccount) -> List[Transfer]:
        """Transfers sent or received by the caller, newest first"""
        return self.ledger.list_transfers_for_account(caller.account_id)
