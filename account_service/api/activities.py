"""
Activity history endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import get_account_system
from .responses import activity_to_dict, success
from ..system import AccountSystem


router = APIRouter()


@router.get("/{account_number}")
def get_activities(
    account_number: str,
    system: AccountSystem = Depends(get_account_system)
):
    """Activity history of an account, newest first"""
    activities = system.account_manager.get_activities(account_number).unwrap()
    return success([activity_to_dict(activity) for activity in activities])
