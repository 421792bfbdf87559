"""
Response envelope and serializers
"""

from typing import Any, Dict, Optional

from fastapi import status
from fastapi.responses import JSONResponse

from ..accounts import Account
from ..activity import Activity
from ..errors import AccountErrorCode
from ..transactions import TransferOutcome


ERROR_STATUS = {
    AccountErrorCode.ACCOUNT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AccountErrorCode.OPTIMISTIC_LOCK_CONFLICT: status.HTTP_409_CONFLICT,
}


def status_for(error: AccountErrorCode) -> int:
    """HTTP status for a domain failure; rule violations are client errors"""
    return ERROR_STATUS.get(error, status.HTTP_400_BAD_REQUEST)


def success(data: Any = None) -> Dict[str, Any]:
    return {
        "status": {"success": True, "code": "SUCCESS", "message": "OK"},
        "data": data,
        "message": None,
    }


def error_response(status_code: int, code: str, message: Optional[str]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "status": {"success": False, "code": code, "message": message},
            "data": None,
            "message": message,
        }
    )


def account_to_dict(account: Account) -> Dict[str, Any]:
    return {
        "id": account.id,
        "account_number": account.account_number,
        "account_name": account.account_name,
        "balance": account.balance,
        "created_at": account.created_at.isoformat(),
        "updated_at": account.updated_at.isoformat(),
    }


def activity_to_dict(activity: Activity) -> Dict[str, Any]:
    return {
        "id": activity.id,
        "activity_type": activity.activity_type.value,
        "amount": activity.amount,
        "fee": activity.fee,
        "balance_after": activity.balance_after,
        "reference_account_number": activity.reference_account_number,
        "transaction_id": activity.transaction_id,
        "description": activity.description,
        "created_at": activity.created_at.isoformat(),
    }


def transfer_to_dict(outcome: TransferOutcome) -> Dict[str, Any]:
    return {
        "from_account": account_to_dict(outcome.from_account),
        "to_account": account_to_dict(outcome.to_account),
        "fee": outcome.fee,
        "transaction_id": outcome.transaction_id,
    }
