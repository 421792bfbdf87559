"""
Daily Limit Tracking Module

A single parametrized value type tracks how much of a daily ceiling has been
used. Each account holds two independent instances (withdraw, transfer).
The reset on a new calendar day is lazy: it happens on the next tracked
amount, never from a background job.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional

from .errors import AccountErrorCode
from .results import OperationResult


@dataclass(frozen=True)
class DailyLimit:
    """A daily ceiling and the error reported when it would be exceeded"""
    ceiling: int
    exceeded_error: AccountErrorCode

    def __post_init__(self):
        if self.ceiling <= 0:
            raise ValueError("Daily limit ceiling must be positive")


@dataclass
class LimitTracker:
    """
    Accumulated amount for the current tracking day

    The ceiling is not part of the tracker's state; it is supplied with each
    check so limits come from injected configuration.
    """
    accumulated_amount: int = 0
    last_transaction_date: Optional[date] = None

    def effective_amount(self, today: date) -> int:
        """Amount that counts against today's ceiling"""
        if self.last_transaction_date != today:
            return 0
        return self.accumulated_amount

    def reset_if_needed(self, today: date) -> None:
        """Clear the accumulated amount if it belongs to another day"""
        if self.last_transaction_date != today:
            self.accumulated_amount = 0
            self.last_transaction_date = None

    def track_and_check(self, amount: int, today: date, limit: DailyLimit) -> OperationResult[int]:
        """
        Add amount to today's total if it stays within the ceiling

        Args:
            amount: Amount to track (must be positive)
            today: Calendar date of the operation, read once by the caller
            limit: Ceiling and the error kind to report

        Returns:
            Success with the new accumulated amount, or a failure carrying
            INVALID_AMOUNT or limit.exceeded_error. Failures leave the
            tracker untouched.
        """
        if amount <= 0:
            return OperationResult.failure(AccountErrorCode.INVALID_AMOUNT)

        if self.effective_amount(today) + amount > limit.ceiling:
            return OperationResult.failure(
                limit.exceeded_error,
                f"{limit.exceeded_error.message} (limit {limit.ceiling:,})"
            )

        self.reset_if_needed(today)
        self.accumulated_amount += amount
        self.last_transaction_date = today
        return OperationResult.success(self.accumulated_amount)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accumulated_amount": self.accumulated_amount,
            "last_transaction_date": (
                self.last_transaction_date.isoformat() if self.last_transaction_date else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LimitTracker":
        if not data:
            return cls()
        last_date = data.get("last_transaction_date")
        return cls(
            accumulated_amount=int(data.get("accumulated_amount", 0)),
            last_transaction_date=date.fromisoformat(last_date) if last_date else None,
        )
