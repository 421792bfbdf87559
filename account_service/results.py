"""
Operation results for account operations.

Domain rule violations are returned, not raised: every aggregate operation
and use case hands back an OperationResult carrying either a value or an
AccountErrorCode.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from .errors import AccountErrorCode, AccountOperationError


T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """
    Outcome of an account operation

    Either carries a value (success) or an error code (failure), never both.
    bool(result) is True only for successes.
    """
    value: Optional[T] = None
    error: Optional[AccountErrorCode] = None
    detail: Optional[str] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "OperationResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: AccountErrorCode, detail: Optional[str] = None) -> "OperationResult[T]":
        return cls(error=error, detail=detail)

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def message(self) -> Optional[str]:
        """Human readable failure message (None for successes)"""
        if self.error is None:
            return None
        return self.detail or self.error.message

    def unwrap(self) -> T:
        """Return the value, raising AccountOperationError on failure"""
        if self.error is not None:
            raise AccountOperationError(self.error, self.detail)
        return self.value

    def __bool__(self) -> bool:
        return self.is_success
