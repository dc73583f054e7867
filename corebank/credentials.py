"""
Credential Store Module

Hashes and verifies account secrets with salted scrypt and issues short-lived
HS256 JSON Web Tokens that identify the account a request acts as.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import hashlib
import hmac
import secrets

import jwt

from .errors import BankingError, ErrorKind


HASH_SCHEME = "scrypt"
SCRYPT_R = 8
SCRYPT_P = 1
ACCOUNT_CLAIM = "account_id"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CredentialStore:
    """
    Secret hashing and session token handling

    The signing secret is injected by the owner of the store and lives for the
    lifetime of the process.
    """

    def __init__(
        self,
        secret: bytes,
        token_ttl: timedelta = timedelta(hours=1),
        algorithm: str = "HS256",
        scrypt_n: int = 16384,
        clock: Callable[[], datetime] = utc_now
    ):
        if not secret:
            raise ValueError("Token signing secret must not be empty")
        self._secret = secret
        self.token_ttl = token_ttl
        self.algorithm = algorithm
        self.scrypt_n = scrypt_n
        self._clock = clock

    def _derive(self, secret: str, salt: bytes, n: int) -> bytes:
        return hashlib.scrypt(
            secret.encode(),
            salt=salt,
            n=n, r=SCRYPT_R, p=SCRYPT_P,
            maxmem=256 * n * SCRYPT_R
        )

    def hash_secret(self, secret: str) -> str:
        """
        Hash an account secret with a fresh random salt.

        Returns:
            Encoded hash ``scrypt$<n>$<salt-hex>$<digest-hex>``

        Raises:
            BankingError(HASHING_FAILURE): if scrypt cannot run
        """
        salt = secrets.token_bytes(16)
        try:
            digest = self._derive(secret, salt, self.scrypt_n)
        except (ValueError, MemoryError) as e:
            raise BankingError(ErrorKind.HASHING_FAILURE, f"Could not hash secret: {e}") from e
        return f"{HASH_SCHEME}${self.scrypt_n}${salt.hex()}${digest.hex()}"

    def verify_secret(self, hashed: str, candidate: str) -> bool:
        """Compare a candidate secret with a stored hash in constant time"""
        try:
            scheme, n, salt_hex, digest_hex = hashed.split("$")
            if scheme != HASH_SCHEME:
                return False
            expected = bytes.fromhex(digest_hex)
            actual = self._derive(candidate, bytes.fromhex(salt_hex), int(n))
        except (ValueError, AttributeError, MemoryError):
            return False
        return hmac.compare_digest(expected, actual)

    def now(self) -> datetime:
        return self._clock()

    def issue_token(self, account_id: int, issued_at: Optional[datetime] = None) -> str:
        """Issue a signed token for account_id, valid for token_ttl from issued_at (now by default)"""
        issued_at = issued_at or self._clock()
        payload = {
            "sub": str(account_id),
            ACCOUNT_CLAIM: account_id,
            "iat": issued_at,
            "exp": issued_at + self.token_ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify_token(self, token: str) -> int:
        """
        Return the account id embedded in a token.

        Raises:
            BankingError(TOKEN_MALFORMED): token is not a parseable JWT
            BankingError(TOKEN_INVALID): bad signature, wrong algorithm,
                expired, or missing account claim
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat", ACCOUNT_CLAIM]}
            )
        except jwt.DecodeError as e:
            # InvalidSignatureError subclasses DecodeError
            if isinstance(e, jwt.InvalidSignatureError):
                raise BankingError(ErrorKind.TOKEN_INVALID, "Token signature mismatch") from e
            raise BankingError(ErrorKind.TOKEN_MALFORMED, "Token is malformed") from e
        except jwt.ExpiredSignatureError as e:
            raise BankingError(ErrorKind.TOKEN_INVALID, "Token expired") from e
        except jwt.InvalidTokenError as e:
            raise BankingError(ErrorKind.TOKEN_INVALID, f"Token rejected: {e}") from e

        account_id = payload.get(ACCOUNT_CLAIM)
        if not isinstance(account_id, int) or isinstance(account_id, bool):
            raise BankingError(ErrorKind.TOKEN_INVALID, "Token carries no account id")
        return account_id

    def token_expiry(self, issued_at: Optional[datetime] = None) -> datetime:
        """Expiry of a token issued at issued_at (now by default)"""
        return (issued_at or self._clock()) + self.token_ttl
