"""
Transaction Processing Module

Deposit, withdraw and transfer use cases. Each attempt loads private copies
of the accounts, applies the aggregate rule, saves with a version check and
appends the ledger entries inside one storage transaction. Attempts that
lose a version race are rolled back and rerun from a fresh load.
"""

from dataclasses import dataclass
from typing import Optional

from .accounts import Account, AccountPolicy, DEFAULT_POLICY
from .activity import ActivityRecorder, new_transaction_id
from .clock import Clock, SystemClock
from .errors import AccountErrorCode
from .logging_config import get_logger, log_action
from .repositories import AccountRepository
from .results import OperationResult
from .retry import DEFAULT_MAX_ATTEMPTS, run_with_optimistic_retry
from .storage import StorageInterface


@dataclass(frozen=True)
class TransferOutcome:
    """Both accounts as committed by a transfer, with the fee charged"""
    from_account: Account
    to_account: Account
    fee: int
    transaction_id: str


class TransactionProcessor:
    """
    Runs balance-changing operations against stored accounts
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_repository: AccountRepository,
        activity_recorder: ActivityRecorder,
        policy: AccountPolicy = DEFAULT_POLICY,
        clock: Optional[Clock] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_backoff_ms: int = 0
    ):
        self.storage = storage
        self.account_repository = account_repository
        self.activity_recorder = activity_recorder
        self.policy = policy
        self.clock = clock or SystemClock()
        self.max_attempts = max_attempts
        self.retry_backoff_ms = retry_backoff_ms
        self.logger = get_logger("accounts.transactions")

    def deposit(self, account_number: str, amount: int) -> OperationResult[Account]:
        """
        Credit an account

        Args:
            account_number: Account to credit
            amount: Amount in minor units (must be positive)

        Returns:
            Success with the committed account, or a failure with
            ACCOUNT_NOT_FOUND, INVALID_AMOUNT or OPTIMISTIC_LOCK_CONFLICT
        """

        def attempt() -> OperationResult[Account]:
            account = self.account_repository.find_by_account_number(account_number)
            if account is None:
                return OperationResult.failure(AccountErrorCode.ACCOUNT_NOT_FOUND)

            now = self.clock.now()
            applied = account.deposit(amount, now=now)
            if not applied:
                return OperationResult.failure(applied.error, applied.detail)

            account = self.account_repository.save(account)
            self.activity_recorder.record_deposit(account.id, amount, account.balance, now=now)
            return OperationResult.success(account)

        result = self._run("deposit", account_number, attempt)
        if result:
            log_action(
                self.logger, "info", f"Deposit completed: {account_number}",
                action="deposit", resource=account_number,
                extra={"amount": amount, "balance": result.value.balance}
            )
        return result

    def withdraw(self, account_number: str, amount: int) -> OperationResult[Account]:
        """
        Debit an account subject to its balance and daily withdraw limit

        Returns:
            Success with the committed account, or a failure with
            ACCOUNT_NOT_FOUND, INVALID_AMOUNT, INSUFFICIENT_BALANCE,
            DAILY_WITHDRAW_LIMIT_EXCEEDED or OPTIMISTIC_LOCK_CONFLICT
        """

        def attempt() -> OperationResult[Account]:
            account = self.account_repository.find_by_account_number(account_number)
            if account is None:
                return OperationResult.failure(AccountErrorCode.ACCOUNT_NOT_FOUND)

            now = self.clock.now()
            applied = account.withdraw(amount, self.clock.date_of(now), self.policy, now=now)
            if not applied:
                return OperationResult.failure(applied.error, applied.detail)

            account = self.account_repository.save(account)
            self.activity_recorder.record_withdraw(account.id, amount, account.balance, now=now)
            return OperationResult.success(account)

        result = self._run("withdraw", account_number, attempt)
        if result:
            log_action(
                self.logger, "info", f"Withdrawal completed: {account_number}",
                action="withdraw", resource=account_number,
                extra={"amount": amount, "balance": result.value.balance}
            )
        return result

    def transfer(self, from_account_number: str, to_account_number: str,
                 amount: int) -> OperationResult[TransferOutcome]:
        """
        Move money between two accounts, charging the fee to the sender

        Both account rows and both ledger entries commit together or not at
        all.

        Returns:
            Success with a TransferOutcome, or a failure with
            ACCOUNT_NOT_FOUND, SAME_ACCOUNT_TRANSFER, INVALID_AMOUNT,
            INSUFFICIENT_BALANCE, DAILY_TRANSFER_LIMIT_EXCEEDED or
            OPTIMISTIC_LOCK_CONFLICT
        """
        transaction_id = new_transaction_id()

        def attempt() -> OperationResult[TransferOutcome]:
            from_account = self.account_repository.find_by_account_number(from_account_number)
            if from_account is None:
                return OperationResult.failure(AccountErrorCode.ACCOUNT_NOT_FOUND)
            to_account = self.account_repository.find_by_account_number(to_account_number)
            if to_account is None:
                return OperationResult.failure(AccountErrorCode.ACCOUNT_NOT_FOUND)
            if from_account.id == to_account.id:
                return OperationResult.failure(AccountErrorCode.SAME_ACCOUNT_TRANSFER)

            now = self.clock.now()
            applied = from_account.transfer(
                to_account, amount, self.clock.date_of(now), self.policy, now=now
            )
            if not applied:
                return OperationResult.failure(applied.error, applied.detail)
            fee = applied.value

            from_account = self.account_repository.save(from_account)
            to_account = self.account_repository.save(to_account)
            self.activity_recorder.record_transfer(
                from_account.id, from_account.account_number,
                to_account.id, to_account.account_number,
                amount, fee,
                from_account.balance, to_account.balance,
                transaction_id, now=now
            )
            return OperationResult.success(TransferOutcome(
                from_account=from_account,
                to_account=to_account,
                fee=fee,
                transaction_id=transaction_id
            ))

        result = self._run("transfer", from_account_number, attempt, correlation_id=transaction_id)
        if result:
            log_action(
                self.logger, "info",
                f"Transfer completed: {from_account_number} -> {to_account_number}",
                action="transfer", resource=from_account_number,
                correlation_id=transaction_id,
                extra={
                    "to_account": to_account_number,
                    "amount": amount,
                    "fee": result.value.fee,
                    "from_balance": result.value.from_account.balance,
                    "to_balance": result.value.to_account.balance,
                }
            )
        return result

    def _run(self, operation: str, account_number: str, attempt,
             correlation_id: Optional[str] = None) -> OperationResult:
        result = run_with_optimistic_retry(
            self.storage, attempt, operation,
            max_attempts=self.max_attempts,
            backoff_ms=self.retry_backoff_ms,
            resource=account_number,
            logger=self.logger
        )
        if not result:
            log_action(
                self.logger, "info", f"{operation.capitalize()} rejected: {result.error.code}",
                action=operation, resource=account_number,
                correlation_id=correlation_id,
                extra={"error": result.error.code, "detail": result.message}
            )
        return result
