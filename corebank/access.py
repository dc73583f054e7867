"""
Access Gate Module

Turns a caller-supplied bearer credential into an authenticated account.
Every failure is reported as MISSING_CREDENTIAL or INVALID_CREDENTIAL so the
caller cannot tell a forged token from a token of a vanished account.
"""

from dataclasses import dataclass
from typing import Optional

from .credentials import CredentialStore
from .errors import BankingError, ErrorKind
from .ledger import Account, AccountLedger
from .logging_config import get_logger


@dataclass(frozen=True)
class AuthenticatedAccount:
    """Identity of the account a request acts as"""
    account: Account

    @property
    def account_id(self) -> int:
        return self.account.id


class AccessGate:
    """Validates bearer credentials against the credential store and ledger"""

    def __init__(self, credentials: CredentialStore, ledger: AccountLedger, prefix: str = "Bearer"):
        self.credentials = credentials
        self.ledger = ledger
        self.prefix = prefix
        self.logger = get_logger("corebank.access")

    def extract_token(self, raw_credential: Optional[str]) -> str:
        """Strip whitespace and the credential prefix; empty when nothing is left"""
        token = (raw_credential or "").strip()
        parts = token.split(None, 1)
        # The prefix counts only as a whole word: "BearerXYZ" is left intact
        if parts and parts[0].lower() == self.prefix.lower():
            return parts[1].strip() if len(parts) > 1 else ""
        return token

    def authenticate(self, raw_credential: Optional[str]) -> AuthenticatedAccount:
        """
        Resolve the account behind a credential

        Raises:
            BankingError(MISSING_CREDENTIAL): no token presented
            BankingError(INVALID_CREDENTIAL): token rejected or account missing
        """
        token = self.extract_token(raw_credential)
        if not token:
            raise BankingError(ErrorKind.MISSING_CREDENTIAL, "Missing bearer token")

        try:
            account_id = self.credentials.verify_token(token)
        except BankingError as e:
            self.logger.debug(f"Bearer token rejected: {e.kind.value}")
            raise BankingError(ErrorKind.INVALID_CREDENTIAL, "Invalid bearer token") from e

        try:
            account = self.ledger.find_by_id(account_id)
        except BankingError as e:
            if e.kind != ErrorKind.NOT_FOUND:
                raise
            self.logger.debug(f"Bearer token names unknown account {account_id}")
            raise BankingError(ErrorKind.INVALID_CREDENTIAL, "Invalid bearer token") from e

        return AuthenticatedAccount(account=account)
