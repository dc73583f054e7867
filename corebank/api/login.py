"""
Login endpoint
"""

from fastapi import APIRouter, Depends, status

from .auth import BankingSystem, get_banking_system
from .errors import ErrorCode, error_response
from .schemas import LoginRequest, TokenModel
from ..errors import BankingError, ErrorKind
from ..logging_config import get_logger, log_action


router = APIRouter()
logger = get_logger("corebank.api.login")


@router.post("", response_model=TokenModel)
def login(
    request: LoginRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Exchange national identifier and secret for a bearer token"""
    try:
        account = system.ledger.find_by_national_id(request.cpf)
    except BankingError as e:
        if e.kind != ErrorKind.NOT_FOUND:
            raise
        log_action(logger, "info", "Login rejected: unknown account", action="login_failed")
        return error_response(status.HTTP_401_UNAUTHORIZED, ErrorCode.ACCOUNT_NOT_FOUND)

    if not system.credentials.verify_secret(account.secret_hash, request.secret):
        log_action(
            logger, "info", "Login rejected: wrong secret",
            account_id=account.id, action="login_failed"
        )
        return error_response(status.HTTP_401_UNAUTHORIZED, ErrorCode.ACCOUNT_SECRET_INVALID)

    issued_at = system.credentials.now()
    token = system.credentials.issue_token(account.id, issued_at)
    log_action(logger, "info", "Login succeeded", account_id=account.id, action="login")
    return TokenModel(
        token=token,
        expires_at=system.credentials.token_expiry(issued_at).isoformat()
    )
