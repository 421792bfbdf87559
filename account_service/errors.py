"""
Error Taxonomy Module

Stable, machine-readable error codes for every way an account operation can
fail, plus the few exceptions used internally by the storage and retry
layers.
"""

from enum import Enum
from typing import Optional


class AccountErrorCode(Enum):
    """Account operation failure kinds with their stable code and message"""
    ACCOUNT_NOT_FOUND = ("ACCOUNT_001", "Account not found.")
    DUPLICATE_ACCOUNT_NUMBER = ("ACCOUNT_002", "Account number already exists.")
    INVALID_ACCOUNT_NAME = ("ACCOUNT_003", "Account name is invalid.")
    INSUFFICIENT_BALANCE = ("ACCOUNT_004", "Insufficient balance.")
    DAILY_WITHDRAW_LIMIT_EXCEEDED = ("ACCOUNT_005", "Daily withdraw limit exceeded.")
    DAILY_TRANSFER_LIMIT_EXCEEDED = ("ACCOUNT_006", "Daily transfer limit exceeded.")
    SAME_ACCOUNT_TRANSFER = ("ACCOUNT_007", "Cannot transfer to the same account.")
    INVALID_ACCOUNT_NUMBER = ("ACCOUNT_008", "Account number is invalid.")
    INVALID_AMOUNT = ("ACCOUNT_009", "Amount must be greater than zero.")
    OPTIMISTIC_LOCK_CONFLICT = (
        "OPTIMISTIC_LOCK_CONFLICT",
        "The request conflicted with another request. Please try again."
    )

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message

    @property
    def retryable(self) -> bool:
        """True when the caller may safely resubmit the same request"""
        return self is AccountErrorCode.OPTIMISTIC_LOCK_CONFLICT


class AccountServiceError(Exception):
    """Base class for account service exceptions"""


class OptimisticLockConflict(AccountServiceError):
    """Raised when a versioned write finds a different stored version"""

    def __init__(self, table: str, record_id: str,
                 expected_version: Optional[int], actual_version: Optional[int]):
        self.table = table
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Version conflict on {table}/{record_id}: "
            f"expected {expected_version}, found {actual_version}"
        )


class DuplicateKeyError(AccountServiceError):
    """Raised when an insert would violate a unique key"""

    def __init__(self, table: str, key: str, value):
        self.table = table
        self.key = key
        self.value = value
        super().__init__(f"Duplicate {key}={value!r} in {table}")


class TransactionRolledBack(AccountServiceError):
    """Raised at the outermost commit when a nested atomic block failed"""

    def __init__(self):
        super().__init__("Transaction rolled back: a nested atomic block failed")


class AccountOperationError(AccountServiceError):
    """Raised by OperationResult.unwrap() for a failed operation"""

    def __init__(self, error: AccountErrorCode, detail: Optional[str] = None):
        self.error = error
        self.detail = detail
        super().__init__(detail or error.message)

    @property
    def code(self) -> str:
        return self.error.code
