"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

from ..ledger import Account, Transfer


NATIONAL_ID_PATTERN = r"^\d{3}\.\d{3}\.\d{3}-\d{2}$"


# Account schemas
class CreateAccountRequest(BaseModel):
    name: str = Field(..., min_length=1)
    cpf: str = Field(..., pattern=NATIONAL_ID_PATTERN, description="National identifier, ddd.ddd.ddd-dd")
    secret: str = Field(..., min_length=1)
    balance: Decimal = Field(default=Decimal("0"), ge=0, description="Opening balance")


class AccountModel(BaseModel):
    id: int
    name: str
    cpf: str
    balance: str = Field(..., description="Decimal amount as string")
    created_at: str

    @classmethod
    def from_account(cls, account: Account) -> 'AccountModel':
        return cls(
            id=account.id,
            name=account.name,
            cpf=account.national_id,
            balance=str(account.balance),
            created_at=account.created_at.isoformat()
        )


class BalanceModel(BaseModel):
    balance: str = Field(..., description="Decimal amount as string")


# Login schemas
class LoginRequest(BaseModel):
    cpf: str
    secret: str


class TokenModel(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_at: Optional[str] = None


# Transfer schemas
class CreateTransferRequest(BaseModel):
    account_destination_id: int
    amount: Decimal = Field(..., gt=0, description="Decimal amount, number or string")


class TransferModel(BaseModel):
    id: int
    account_origin_id: int
    account_destination_id: int
    amount: str = Field(..., description="Decimal amount as string")
    created_at: str

    @classmethod
    def from_transfer(cls, transfer: Transfer) -> 'TransferModel':
        return cls(
            id=transfer.id,
            account_origin_id=transfer.origin_account_id,
            account_destination_id=transfer.destination_account_id,
            amount=str(transfer.amount),
            created_at=transfer.created_at.isoformat()
        )
