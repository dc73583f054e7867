"""
Error Taxonomy Module

Closed set of error kinds raised by the banking core. Callers match on
``error.kind`` rather than on exception classes or instances.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Kinds of domain failures"""
    DUPLICATE_IDENTITY = "duplicate_identity"    # National identifier already registered
    NOT_FOUND = "not_found"                      # Account does not exist
    INSUFFICIENT_FUNDS = "insufficient_funds"    # Origin balance lower than amount
    INVALID_CREDENTIAL = "invalid_credential"    # Token rejected or account gone
    MISSING_CREDENTIAL = "missing_credential"    # No token presented
    HASHING_FAILURE = "hashing_failure"          # Secret could not be hashed
    TOKEN_INVALID = "token_invalid"              # Bad signature, expired, bad claims
    TOKEN_MALFORMED = "token_malformed"          # Not parseable as a token
    INVALID_AMOUNT = "invalid_amount"            # Transfer amount missing or not positive
    SAME_ACCOUNT = "same_account"                # Origin equals destination
    NEGATIVE_BALANCE = "negative_balance"        # Initial balance below zero


class BankingError(Exception):
    """
    Domain failure carrying an ErrorKind

    Two errors are equal when they have the same kind, so tests and callers
    can compare structurally.
    """

    def __init__(self, kind: ErrorKind, message: Optional[str] = None):
        self.kind = kind
        self.message = message or kind.value.replace("_", " ")
        super().__init__(self.message)

    def __eq__(self, other) -> bool:
        if not isinstance(other, BankingError):
            return NotImplemented
        return self.kind == other.kind

    def __hash__(self) -> int:
        return hash(self.kind)

    def __repr__(self) -> str:
        return f"BankingError({self.kind.name}, {self.message!r})"
