"""
Account management endpoints
"""

from fastapi import APIRouter, Depends, Query, status

from .dependencies import get_account_system
from .responses import account_to_dict, success
from .schemas import RegisterAccountRequest
from ..system import AccountSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def register_account(
    request: RegisterAccountRequest,
    system: AccountSystem = Depends(get_account_system)
):
    """Register a new account"""
    account = system.account_manager.register_account(
        request.account_number, request.account_name
    ).unwrap()
    return success(account_to_dict(account))


@router.get("")
def list_accounts(
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    system: AccountSystem = Depends(get_account_system)
):
    """List live accounts, oldest first"""
    account_page = system.account_manager.list_accounts(page=page, size=size)
    return success({
        "items": [account_to_dict(account) for account in account_page.items],
        "page": account_page.page,
        "size": account_page.size,
        "total": account_page.total,
        "total_pages": account_page.total_pages,
    })


@router.get("/{account_number}")
def get_account(
    account_number: str,
    system: AccountSystem = Depends(get_account_system)
):
    """Get account details"""
    account = system.account_manager.get_account(account_number).unwrap()
    return success(account_to_dict(account))


@router.delete("/{account_number}")
def delete_account(
    account_number: str,
    system: AccountSystem = Depends(get_account_system)
):
    """Soft delete an account"""
    system.account_manager.delete_account(account_number).unwrap()
    return success()
