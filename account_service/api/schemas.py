"""
Pydantic schemas for API requests
"""

from pydantic import BaseModel, Field

from ..accounts import (
    ACCOUNT_NAME_MAX_LENGTH,
    ACCOUNT_NUMBER_MAX_LENGTH,
    ACCOUNT_NUMBER_MIN_LENGTH,
)


class RegisterAccountRequest(BaseModel):
    account_number: str = Field(
        ..., min_length=ACCOUNT_NUMBER_MIN_LENGTH, max_length=ACCOUNT_NUMBER_MAX_LENGTH
    )
    account_name: str = Field(..., min_length=1, max_length=ACCOUNT_NAME_MAX_LENGTH)


class DepositRequest(BaseModel):
    account_number: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0, description="Amount in minor units")


class WithdrawRequest(BaseModel):
    account_number: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0, description="Amount in minor units")


class TransferRequest(BaseModel):
    from_account_number: str = Field(..., min_length=1)
    to_account_number: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0, description="Principal in minor units, fee excluded")
