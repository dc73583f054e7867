"""
Transfer endpoints, available to authenticated accounts only
"""

from typing import List
from fastapi import APIRouter, Depends, status

from .auth import BankingSystem, get_banking_system, get_current_account
from .errors import ErrorCode, error_response
from .schemas import CreateTransferRequest, TransferModel
from ..access import AuthenticatedAccount
from ..errors import BankingError, ErrorKind


router = APIRouter()


@router.get("", response_model=List[TransferModel])
def list_transfers(
    caller: AuthenticatedAccount = Depends(get_current_account),
    system: BankingSystem = Depends(get_banking_system)
):
    """Transfers sent or received by the authenticated account"""
    return [TransferModel.from_transfer(t) for t in system.transfer_service.history(caller)]


@router.post("", status_code=status.HTTP_201_CREATED, response_model=TransferModel)
def create_transfer(
    request: CreateTransferRequest,
    caller: AuthenticatedAccount = Depends(get_current_account),
    system: BankingSystem = Depends(get_banking_system)
):
    """Transfer money from the authenticated account to another account"""
    try:
        transfer = system.transfer_service.transfer(
            caller, request.account_destination_id, request.amount
        )
    except BankingError as e:
        # Unknown destination is a body error on this route
        if e.kind != ErrorKind.NOT_FOUND:
            raise
        return error_response(422, ErrorCode.ACCOUNT_NOT_FOUND)

    return TransferModel.from_transfer(transfer)
