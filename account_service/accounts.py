"""
Account Management Module

The Account aggregate owns the balance and both daily limit trackers and
enforces every balance rule before touching state. AccountManager handles
the account lifecycle (registration, soft deletion) and the read side.
"""

from decimal import Decimal, ROUND_DOWN
from datetime import date, datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .clock import Clock, SystemClock
from .errors import AccountErrorCode, DuplicateKeyError
from .limits import DailyLimit, LimitTracker
from .logging_config import get_logger, log_action
from .results import OperationResult
from .retry import DEFAULT_MAX_ATTEMPTS, run_with_optimistic_retry
from .storage import StorageInterface, StorageRecord

if TYPE_CHECKING:
    from .activity import Activity
    from .repositories import AccountRepository, ActivityRepository


ACCOUNT_NUMBER_MIN_LENGTH = 3
ACCOUNT_NUMBER_MAX_LENGTH = 20
ACCOUNT_NAME_MAX_LENGTH = 100

DEFAULT_DAILY_WITHDRAW_LIMIT = 1_000_000
DEFAULT_DAILY_TRANSFER_LIMIT = 3_000_000
DEFAULT_TRANSFER_FEE_RATE = Decimal("0.01")


@dataclass(frozen=True)
class AccountPolicy:
    """Limits and fee rate applied to every account, read once from config"""
    withdraw_limit: DailyLimit = DailyLimit(
        DEFAULT_DAILY_WITHDRAW_LIMIT, AccountErrorCode.DAILY_WITHDRAW_LIMIT_EXCEEDED
    )
    transfer_limit: DailyLimit = DailyLimit(
        DEFAULT_DAILY_TRANSFER_LIMIT, AccountErrorCode.DAILY_TRANSFER_LIMIT_EXCEEDED
    )
    transfer_fee_rate: Decimal = DEFAULT_TRANSFER_FEE_RATE

    @classmethod
    def from_limits(cls, daily_withdraw_limit: int, daily_transfer_limit: int,
                    transfer_fee_rate: Decimal = DEFAULT_TRANSFER_FEE_RATE) -> "AccountPolicy":
        return cls(
            withdraw_limit=DailyLimit(daily_withdraw_limit, AccountErrorCode.DAILY_WITHDRAW_LIMIT_EXCEEDED),
            transfer_limit=DailyLimit(daily_transfer_limit, AccountErrorCode.DAILY_TRANSFER_LIMIT_EXCEEDED),
            transfer_fee_rate=Decimal(transfer_fee_rate),
        )

    def transfer_fee(self, amount: int) -> int:
        """Fee charged to the sender, rounded down to whole minor units"""
        fee = (Decimal(amount) * self.transfer_fee_rate).quantize(Decimal("1"), rounding=ROUND_DOWN)
        return int(fee)


DEFAULT_POLICY = AccountPolicy()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Account(StorageRecord):
    """
    Monetary account

    Construct through Account.create(); a loaded account is a private copy
    whose version is checked when it is saved back.
    """
    account_number: str
    account_name: str
    balance: int = 0
    withdraw_limit: LimitTracker = field(default_factory=LimitTracker)
    transfer_limit: LimitTracker = field(default_factory=LimitTracker)
    version: int = 0
    deleted_at: Optional[datetime] = None

    @classmethod
    def create(cls, account_number: str, account_name: str,
               now: Optional[datetime] = None) -> OperationResult["Account"]:
        """
        Build a new account with a zero balance

        Returns:
            Success with the unsaved account (id None), or a failure with
            INVALID_ACCOUNT_NUMBER or INVALID_ACCOUNT_NAME
        """
        if (
            not account_number
            or not account_number.strip()
            or not ACCOUNT_NUMBER_MIN_LENGTH <= len(account_number) <= ACCOUNT_NUMBER_MAX_LENGTH
        ):
            return OperationResult.failure(
                AccountErrorCode.INVALID_ACCOUNT_NUMBER,
                f"Account number must be {ACCOUNT_NUMBER_MIN_LENGTH} to "
                f"{ACCOUNT_NUMBER_MAX_LENGTH} characters and not blank."
            )
        if not account_name or not account_name.strip() or len(account_name) > ACCOUNT_NAME_MAX_LENGTH:
            return OperationResult.failure(
                AccountErrorCode.INVALID_ACCOUNT_NAME,
                f"Account name must be 1 to {ACCOUNT_NAME_MAX_LENGTH} characters and not blank."
            )

        now = now or _utcnow()
        return OperationResult.success(cls(
            id=None,
            created_at=now,
            updated_at=now,
            account_number=account_number,
            account_name=account_name,
        ))

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def deposit(self, amount: int, now: Optional[datetime] = None) -> OperationResult[int]:
        """Credit amount; returns the new balance. Deposits have no limit."""
        if amount <= 0:
            return OperationResult.failure(AccountErrorCode.INVALID_AMOUNT)

        self.balance += amount
        self.updated_at = now or _utcnow()
        return OperationResult.success(self.balance)

    def withdraw(self, amount: int, today: date, policy: AccountPolicy = DEFAULT_POLICY,
                 now: Optional[datetime] = None) -> OperationResult[int]:
        """
        Debit amount subject to balance and the daily withdraw limit

        Checks run in order: amount, balance, limit. The first failure is
        returned and the account is left unchanged.
        """
        if amount <= 0:
            return OperationResult.failure(AccountErrorCode.INVALID_AMOUNT)
        if self.balance < amount:
            return OperationResult.failure(AccountErrorCode.INSUFFICIENT_BALANCE)

        tracked = self.withdraw_limit.track_and_check(amount, today, policy.withdraw_limit)
        if not tracked:
            return OperationResult.failure(tracked.error, tracked.detail)

        self.balance -= amount
        self.updated_at = now or _utcnow()
        return OperationResult.success(self.balance)

    def transfer(self, to_account: "Account", amount: int, today: date,
                 policy: AccountPolicy = DEFAULT_POLICY,
                 now: Optional[datetime] = None) -> OperationResult[int]:
        """
        Move amount to to_account, charging the fee to this account

        The sender needs amount + fee; only the principal counts against
        the daily transfer limit. Returns the fee. A failure leaves both
        accounts unchanged.
        """
        if to_account is self or (self.id is not None and to_account.id == self.id):
            return OperationResult.failure(AccountErrorCode.SAME_ACCOUNT_TRANSFER)
        if amount <= 0:
            return OperationResult.failure(AccountErrorCode.INVALID_AMOUNT)

        fee = policy.transfer_fee(amount)
        if self.balance < amount + fee:
            return OperationResult.failure(AccountErrorCode.INSUFFICIENT_BALANCE)

        tracked = self.transfer_limit.track_and_check(amount, today, policy.transfer_limit)
        if not tracked:
            return OperationResult.failure(tracked.error, tracked.detail)

        now = now or _utcnow()
        self.balance -= amount + fee
        to_account.balance += amount
        self.updated_at = now
        to_account.updated_at = now
        return OperationResult.success(fee)

    def delete(self, now: Optional[datetime] = None) -> None:
        """Soft delete; the row stays and is hidden from lookups"""
        now = now or _utcnow()
        self.deleted_at = now
        self.updated_at = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_number": self.account_number,
            "account_name": self.account_name,
            "balance": self.balance,
            "withdraw_limit": self.withdraw_limit.to_dict(),
            "transfer_limit": self.transfer_limit.to_dict(),
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        return cls(
            id=data["id"],
            created_at=cls.parse_datetime(data["created_at"]),
            updated_at=cls.parse_datetime(data["updated_at"]),
            account_number=data["account_number"],
            account_name=data["account_name"],
            balance=int(data["balance"]),
            withdraw_limit=LimitTracker.from_dict(data.get("withdraw_limit")),
            transfer_limit=LimitTracker.from_dict(data.get("transfer_limit")),
            version=int(data.get("version", 0)),
            deleted_at=cls.parse_datetime(data.get("deleted_at")),
        )


@dataclass(frozen=True)
class AccountPage:
    """One page of live accounts"""
    items: List[Account]
    page: int
    size: int
    total: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.size - 1) // self.size if self.size else 0


class AccountManager:
    """
    Manages account lifecycle and account queries
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_repository: "AccountRepository",
        activity_repository: "ActivityRepository",
        clock: Optional[Clock] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_backoff_ms: int = 0
    ):
        self.storage = storage
        self.account_repository = account_repository
        self.activity_repository = activity_repository
        self.clock = clock or SystemClock()
        self.max_attempts = max_attempts
        self.retry_backoff_ms = retry_backoff_ms
        self.logger = get_logger("accounts.manager")

    def register_account(self, account_number: str, account_name: str) -> OperationResult[Account]:
        """
        Register a new account with a zero balance

        Account numbers are never reused, including those of deleted
        accounts.
        """
        if self.account_repository.exists_by_account_number(account_number):
            return self._rejected("register", account_number, OperationResult.failure(
                AccountErrorCode.DUPLICATE_ACCOUNT_NUMBER
            ))

        created = Account.create(account_number, account_name, now=self.clock.now())
        if not created:
            return self._rejected("register", account_number, created)

        try:
            with self.storage.atomic():
                account = self.account_repository.save(created.value)
        except DuplicateKeyError:
            # Lost a race against a concurrent registration of the same number
            return self._rejected("register", account_number, OperationResult.failure(
                AccountErrorCode.DUPLICATE_ACCOUNT_NUMBER
            ))

        log_action(
            self.logger, "info", f"Account registered: {account_number}",
            action="register", resource=account_number,
            extra={"account_id": account.id}
        )
        return OperationResult.success(account)

    def delete_account(self, account_number: str) -> OperationResult[Account]:
        """Soft delete a live account"""

        def attempt() -> OperationResult[Account]:
            account = self.account_repository.find_by_account_number(account_number)
            if account is None:
                return OperationResult.failure(AccountErrorCode.ACCOUNT_NOT_FOUND)
            account.delete(now=self.clock.now())
            return OperationResult.success(self.account_repository.save(account))

        result = run_with_optimistic_retry(
            self.storage, attempt, "delete",
            max_attempts=self.max_attempts,
            backoff_ms=self.retry_backoff_ms,
            resource=account_number
        )
        if not result:
            return self._rejected("delete", account_number, result)

        log_action(
            self.logger, "info", f"Account deleted: {account_number}",
            action="delete", resource=account_number,
            extra={"account_id": result.value.id}
        )
        return result

    def get_account(self, account_number: str) -> OperationResult[Account]:
        """Get a live account by account number"""
        account = self.account_repository.find_by_account_number(account_number)
        if account is None:
            return OperationResult.failure(AccountErrorCode.ACCOUNT_NOT_FOUND)
        return OperationResult.success(account)

    def list_accounts(self, page: int = 0, size: int = 20) -> AccountPage:
        """List live accounts, oldest first"""
        if page < 0:
            raise ValueError("page must not be negative")
        if size < 1:
            raise ValueError("size must be positive")

        items, total = self.account_repository.find_all(page, size)
        return AccountPage(items=items, page=page, size=size, total=total)

    def get_activities(self, account_number: str) -> OperationResult[List["Activity"]]:
        """Ledger entries of a live account, newest first"""
        account = self.account_repository.find_by_account_number(account_number)
        if account is None:
            return OperationResult.failure(AccountErrorCode.ACCOUNT_NOT_FOUND)
        return OperationResult.success(self.activity_repository.find_by_account_id(account.id))

    def _rejected(self, action: str, account_number: str, result: OperationResult) -> OperationResult:
        log_action(
            self.logger, "info", f"Account {action} rejected: {result.error.code}",
            action=action, resource=account_number,
            extra={"error": result.error.code, "detail": result.message}
        )
        return result
