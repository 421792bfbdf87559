"""
Activity Ledger Module

Immutable ledger entries recording the effect of each completed account
mutation. Entries are appended in the same transaction as the balance change
they describe and are never updated or deleted. The two entries produced by
one transfer share a transaction id.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, TYPE_CHECKING
import uuid

if TYPE_CHECKING:
    from .repositories import ActivityRepository


class ActivityType(Enum):
    """Kinds of ledger entries"""
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    TRANSFER_OUT = "TRANSFER_OUT"  # Debit side of a transfer, carries the fee
    TRANSFER_IN = "TRANSFER_IN"    # Credit side of a transfer, fee-free


@dataclass(frozen=True)
class Activity:
    """
    Ledger entry for one account

    balance_after is a snapshot taken when the entry was written and is
    never recomputed.
    """
    id: str
    account_id: str
    activity_type: ActivityType
    amount: int
    fee: int
    balance_after: int
    created_at: datetime
    reference_account_id: Optional[str] = None
    reference_account_number: Optional[str] = None
    transaction_id: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "activity_type": self.activity_type.value,
            "amount": self.amount,
            "fee": self.fee,
            "balance_after": self.balance_after,
            "created_at": self.created_at.isoformat(),
            "reference_account_id": self.reference_account_id,
            "reference_account_number": self.reference_account_number,
            "transaction_id": self.transaction_id,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Activity":
        return cls(
            id=data["id"],
            account_id=data["account_id"],
            activity_type=ActivityType(data["activity_type"]),
            amount=int(data["amount"]),
            fee=int(data["fee"]),
            balance_after=int(data["balance_after"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            reference_account_id=data.get("reference_account_id"),
            reference_account_number=data.get("reference_account_number"),
            transaction_id=data.get("transaction_id"),
            description=data.get("description"),
        )


def _new(account_id: str, activity_type: ActivityType, amount: int, fee: int,
         balance_after: int, now: Optional[datetime], **references) -> Activity:
    return Activity(
        id=str(uuid.uuid4()),
        account_id=account_id,
        activity_type=activity_type,
        amount=amount,
        fee=fee,
        balance_after=balance_after,
        created_at=now or datetime.now(timezone.utc),
        **references
    )


def deposit(account_id: str, amount: int, balance_after: int,
            now: Optional[datetime] = None) -> Activity:
    return _new(account_id, ActivityType.DEPOSIT, amount, 0, balance_after, now)


def withdraw(account_id: str, amount: int, balance_after: int,
             now: Optional[datetime] = None) -> Activity:
    return _new(account_id, ActivityType.WITHDRAW, amount, 0, balance_after, now)


def transfer_out(account_id: str, counterparty_id: str, counterparty_number: str,
                 amount: int, fee: int, balance_after: int, transaction_id: str,
                 now: Optional[datetime] = None) -> Activity:
    return _new(
        account_id, ActivityType.TRANSFER_OUT, amount, fee, balance_after, now,
        reference_account_id=counterparty_id,
        reference_account_number=counterparty_number,
        transaction_id=transaction_id
    )


def transfer_in(account_id: str, counterparty_id: str, counterparty_number: str,
                amount: int, balance_after: int, transaction_id: str,
                now: Optional[datetime] = None) -> Activity:
    return _new(
        account_id, ActivityType.TRANSFER_IN, amount, 0, balance_after, now,
        reference_account_id=counterparty_id,
        reference_account_number=counterparty_number,
        transaction_id=transaction_id
    )


def new_transaction_id() -> str:
    """Correlation id shared by the two entries of one transfer"""
    return f"TX_{uuid.uuid4().hex}"


class ActivityRecorder:
    """Builds ledger entries and appends them through the activity repository"""

    def __init__(self, activity_repository: "ActivityRepository"):
        self.activity_repository = activity_repository

    def record_deposit(self, account_id: str, amount: int, balance_after: int,
                       now: Optional[datetime] = None) -> Activity:
        return self.activity_repository.save(deposit(account_id, amount, balance_after, now))

    def record_withdraw(self, account_id: str, amount: int, balance_after: int,
                        now: Optional[datetime] = None) -> Activity:
        return self.activity_repository.save(withdraw(account_id, amount, balance_after, now))

    def record_transfer(
        self,
        from_account_id: str,
        from_account_number: str,
        to_account_id: str,
        to_account_number: str,
        amount: int,
        fee: int,
        from_balance_after: int,
        to_balance_after: int,
        transaction_id: str,
        now: Optional[datetime] = None
    ) -> Tuple[Activity, Activity]:
        """Append the TRANSFER_OUT / TRANSFER_IN pair for one transfer"""
        outgoing = self.activity_repository.save(transfer_out(
            from_account_id, to_account_id, to_account_number,
            amount, fee, from_balance_after, transaction_id, now
        ))
        incoming = self.activity_repository.save(transfer_in(
            to_account_id, from_account_id, from_account_number,
            amount, to_balance_after, transaction_id, now
        ))
        return outgoing, incoming
