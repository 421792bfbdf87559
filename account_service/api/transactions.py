"""
Deposit, withdraw and transfer endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import get_account_system
from .responses import account_to_dict, success, transfer_to_dict
from .schemas import DepositRequest, TransferRequest, WithdrawRequest
from ..system import AccountSystem


router = APIRouter()


@router.post("/deposit")
def deposit(
    request: DepositRequest,
    system: AccountSystem = Depends(get_account_system)
):
    """Deposit money into an account"""
    account = system.transaction_processor.deposit(
        request.account_number, request.amount
    ).unwrap()
    return success(account_to_dict(account))


@router.post("/withdraw")
def withdraw(
    request: WithdrawRequest,
    system: AccountSystem = Depends(get_account_system)
):
    """Withdraw money from an account"""
    account = system.transaction_processor.withdraw(
        request.account_number, request.amount
    ).unwrap()
    return success(account_to_dict(account))


@router.post("/transfer")
def transfer(
    request: TransferRequest,
    system: AccountSystem = Depends(get_account_system)
):
    """Transfer money between accounts"""
    outcome = system.transaction_processor.transfer(
        request.from_account_number, request.to_account_number, request.amount
    ).unwrap()
    return success(transfer_to_dict(outcome))
