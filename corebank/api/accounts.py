"""
Account management endpoints
"""

from typing import List
from fastapi import APIRouter, Depends, status

from .auth import BankingSystem, get_banking_system
from .errors import ErrorCode, error_response
from .schemas import AccountModel, BalanceModel, CreateAccountRequest
from ..errors import BankingError, ErrorKind


router = APIRouter()


@router.get("", response_model=List[AccountModel])
def list_accounts(system: BankingSystem = Depends(get_banking_system)):
    """List all accounts, oldest first"""
    return [AccountModel.from_account(account) for account in system.ledger.list_all()]


@router.get("/{account_id}/balance", response_model=BalanceModel)
def get_account_balance(
    account_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Get the current balance of an account"""
    try:
        parsed_id = int(account_id)
    except ValueError:
        raise BankingError(ErrorKind.NOT_FOUND, f"Account {account_id} not found")

    return BalanceModel(balance=str(system.ledger.get_balance(parsed_id)))


@router.post("", status_code=status.HTTP_201_CREATED, response_model=AccountModel)
def create_account(
    request: CreateAccountRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Create a new account"""
    min_length = system.config.password_min_length
    if len(request.secret) < min_length:
        return error_response(
            422,
            ErrorCode.VALIDATION_ERROR,
            [f"secret must have at least {min_length} characters"]
        )

    account = system.ledger.create_account(
        name=request.name,
        national_id=request.cpf,
        secret_hash=system.credentials.hash_secret(request.secret),
        initial_balance=request.balance
    )
    return AccountModel.from_account(account)
