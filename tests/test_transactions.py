"""
Tests for deposit, withdraw and transfer processing, optimistic retries
and concurrent access
"""

import logging
import pytest
import threading
from datetime import datetime, timezone

from account_service.accounts import AccountManager, AccountPolicy
from account_service.activity import ActivityRecorder, ActivityType
from account_service.clock import FixedClock
from account_service.errors import AccountErrorCode, OptimisticLockConflict
from account_service.repositories import StorageAccountRepository, StorageActivityRepository
from account_service.storage import InMemoryStorage, SQLiteStorage
from account_service.transactions import TransactionProcessor


class ConflictingStorage(InMemoryStorage):
    """InMemoryStorage whose account updates lose the version race a set number of times"""

    def __init__(self, conflicts: int):
        super().__init__()
        self.conflicts_left = conflicts
        self.update_attempts = 0

    def save_versioned(self, table, record_id, data, expected_version, unique_key=None):
        if table == "accounts" and expected_version is not None:
            self.update_attempts += 1
            if self.conflicts_left > 0:
                self.conflicts_left -= 1
                raise OptimisticLockConflict(table, record_id, expected_version, expected_version + 1)
        return super().save_versioned(table, record_id, data, expected_version, unique_key)


class FailingActivityRepository(StorageActivityRepository):
    """Ledger that cannot be written"""

    def save(self, activity):
        raise RuntimeError("ledger unavailable")


def build(storage, clock=None, policy=None, max_attempts=3, activity_repository=None):
    """Wire a processor and manager over the given storage"""
    clock = clock or FixedClock()
    account_repository = StorageAccountRepository(storage)
    activity_repository = activity_repository or StorageActivityRepository(storage)
    processor = TransactionProcessor(
        storage, account_repository, ActivityRecorder(activity_repository),
        policy=policy or AccountPolicy(),
        clock=clock,
        max_attempts=max_attempts
    )
    manager = AccountManager(
        storage, account_repository, StorageActivityRepository(storage), clock=clock
    )
    return processor, manager


class TestDeposit:
    """Test deposit processing"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.clock = FixedClock()
        self.processor, self.manager = build(self.storage, self.clock)
        self.manager.register_account("1111111111", "Sender")

    def test_deposit(self):
        result = self.processor.deposit("1111111111", 50_000)

        assert result.is_success
        assert result.value.balance == 50_000
        assert result.value.version == 1

        activities = self.manager.get_activities("1111111111").value
        assert len(activities) == 1
        assert activities[0].activity_type == ActivityType.DEPOSIT
        assert activities[0].amount == 50_000
        assert activities[0].balance_after == 50_000
        assert activities[0].created_at == self.clock.now()

    def test_deposit_to_unknown_account(self):
        result = self.processor.deposit("9999999999", 1_000)
        assert result.error == AccountErrorCode.ACCOUNT_NOT_FOUND

    def test_deposit_to_deleted_account(self):
        self.manager.delete_account("1111111111")
        result = self.processor.deposit("1111111111", 1_000)
        assert result.error == AccountErrorCode.ACCOUNT_NOT_FOUND

    def test_invalid_amount_records_nothing(self):
        result = self.processor.deposit("1111111111", 0)

        assert result.error == AccountErrorCode.INVALID_AMOUNT
        assert self.manager.get_account("1111111111").value.version == 0
        assert self.manager.get_activities("1111111111").value == []

    def test_ledger_failure_rolls_back_balance(self):
        processor, _ = build(
            self.storage, self.clock,
            activity_repository=FailingActivityRepository(self.storage)
        )

        with pytest.raises(RuntimeError):
            processor.deposit("1111111111", 1_000)

        account = self.manager.get_account("1111111111").value
        assert account.balance == 0
        assert account.version == 0


class TestWithdraw:
    """Test withdraw processing and daily limits"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.clock = FixedClock(datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc))
        self.processor, self.manager = build(self.storage, self.clock)
        self.manager.register_account("1111111111", "Sender")
        self.processor.deposit("1111111111", 2_000_000)

    def test_withdraw_daily_limit(self):
        assert self.processor.withdraw("1111111111", 500_000).is_success
        assert self.processor.withdraw("1111111111", 400_000).is_success

        result = self.processor.withdraw("1111111111", 100_001)

        assert result.error == AccountErrorCode.DAILY_WITHDRAW_LIMIT_EXCEEDED
        account = self.manager.get_account("1111111111").value
        assert account.balance == 1_100_000
        assert account.withdraw_limit.accumulated_amount == 900_000

        activities = self.manager.get_activities("1111111111").value
        assert [a.activity_type for a in activities] == [
            ActivityType.WITHDRAW, ActivityType.WITHDRAW, ActivityType.DEPOSIT
        ]
        assert activities[0].balance_after == 1_100_000

    @pytest.mark.parametrize("amount", [0, -1])
    def test_non_positive_withdraw_changes_nothing(self, amount):
        result = self.processor.withdraw("1111111111", amount)

        assert result.error == AccountErrorCode.INVALID_AMOUNT
        account = self.manager.get_account("1111111111").value
        assert account.balance == 2_000_000
        assert account.version == 1
        assert account.withdraw_limit.accumulated_amount == 0
        assert len(self.manager.get_activities("1111111111").value) == 1

    def test_limit_resets_on_next_day(self):
        assert self.processor.withdraw("1111111111", 1_000_000).is_success
        assert not self.processor.withdraw("1111111111", 1)

        self.clock.advance(days=1)

        result = self.processor.withdraw("1111111111", 1_000_000)
        assert result.is_success
        assert result.value.balance == 0
        assert result.value.withdraw_limit.last_transaction_date == self.clock.today()

    def test_insufficient_balance(self):
        processor, manager = build(InMemoryStorage(), self.clock)
        manager.register_account("2222222222", "Empty")

        result = processor.withdraw("2222222222", 1)
        assert result.error == AccountErrorCode.INSUFFICIENT_BALANCE

    def test_limits_come_from_policy(self):
        processor, _ = build(
            self.storage, self.clock,
            policy=AccountPolicy.from_limits(daily_withdraw_limit=100, daily_transfer_limit=100)
        )
        assert processor.withdraw("1111111111", 100).is_success
        assert processor.withdraw("1111111111", 1).error == AccountErrorCode.DAILY_WITHDRAW_LIMIT_EXCEEDED


class TestTransfer:
    """Test transfer processing"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.processor, self.manager = build(self.storage)
        self.manager.register_account("1111111111", "Sender")
        self.manager.register_account("2222222222", "Receiver")
        self.processor.deposit("1111111111", 1_000_000)

    def test_transfer(self):
        result = self.processor.transfer("1111111111", "2222222222", 100_000)

        assert result.is_success
        outcome = result.value
        assert outcome.fee == 1_000
        assert outcome.from_account.balance == 899_000
        assert outcome.to_account.balance == 100_000
        assert outcome.transaction_id.startswith("TX_")

        sender_entry = self.manager.get_activities("1111111111").value[0]
        receiver_entry = self.manager.get_activities("2222222222").value[0]

        assert sender_entry.activity_type == ActivityType.TRANSFER_OUT
        assert sender_entry.amount == 100_000
        assert sender_entry.fee == 1_000
        assert sender_entry.balance_after == 899_000
        assert sender_entry.reference_account_number == "2222222222"
        assert sender_entry.reference_account_id == outcome.to_account.id

        assert receiver_entry.activity_type == ActivityType.TRANSFER_IN
        assert receiver_entry.fee == 0
        assert receiver_entry.balance_after == 100_000
        assert receiver_entry.reference_account_number == "1111111111"

        assert sender_entry.transaction_id == receiver_entry.transaction_id == outcome.transaction_id

    def test_transfer_to_same_account(self):
        result = self.processor.transfer("1111111111", "1111111111", 1_000)

        assert result.error == AccountErrorCode.SAME_ACCOUNT_TRANSFER
        assert self.manager.get_account("1111111111").value.balance == 1_000_000
        assert len(self.manager.get_activities("1111111111").value) == 1

    @pytest.mark.parametrize("from_number,to_number", [
        ("9999999999", "2222222222"),
        ("1111111111", "9999999999"),
    ])
    def test_transfer_with_unknown_account(self, from_number, to_number):
        result = self.processor.transfer(from_number, to_number, 1_000)
        assert result.error == AccountErrorCode.ACCOUNT_NOT_FOUND

    def test_transfer_to_deleted_account(self):
        self.manager.delete_account("2222222222")
        result = self.processor.transfer("1111111111", "2222222222", 1_000)
        assert result.error == AccountErrorCode.ACCOUNT_NOT_FOUND

    def test_failed_transfer_changes_nothing(self):
        result = self.processor.transfer("1111111111", "2222222222", 999_000)

        assert result.error == AccountErrorCode.INSUFFICIENT_BALANCE
        sender = self.manager.get_account("1111111111").value
        receiver = self.manager.get_account("2222222222").value
        assert sender.balance == 1_000_000
        assert sender.transfer_limit.accumulated_amount == 0
        assert receiver.balance == 0
        assert self.manager.get_activities("2222222222").value == []

    @pytest.mark.parametrize("amount", [0, -1])
    def test_non_positive_transfer_changes_nothing(self, amount):
        result = self.processor.transfer("1111111111", "2222222222", amount)

        assert result.error == AccountErrorCode.INVALID_AMOUNT
        sender = self.manager.get_account("1111111111").value
        receiver = self.manager.get_account("2222222222").value
        assert sender.balance == 1_000_000
        assert sender.version == 1
        assert sender.transfer_limit.accumulated_amount == 0
        assert receiver.balance == 0
        assert receiver.version == 0
        assert len(self.manager.get_activities("1111111111").value) == 1
        assert self.manager.get_activities("2222222222").value == []

    def test_transfer_on_sqlite(self):
        storage = SQLiteStorage()
        processor, manager = build(storage)
        manager.register_account("1111111111", "Sender")
        manager.register_account("2222222222", "Receiver")
        processor.deposit("1111111111", 1_000_000)

        result = processor.transfer("1111111111", "2222222222", 100_000)

        assert result.value.fee == 1_000
        assert manager.get_account("1111111111").value.balance == 899_000
        assert manager.get_account("2222222222").value.balance == 100_000
        assert manager.get_account("1111111111").value.version == 2
        storage.close()


class TestOptimisticRetry:
    """Test the bounded retry loop"""

    def test_retries_after_conflict(self):
        storage = ConflictingStorage(conflicts=1)
        processor, manager = build(storage)
        manager.register_account("1111111111", "Sender")

        result = processor.deposit("1111111111", 1_000)

        assert result.is_success
        assert storage.update_attempts == 2
        assert manager.get_account("1111111111").value.balance == 1_000
        assert len(manager.get_activities("1111111111").value) == 1

    def test_gives_up_after_max_attempts(self, caplog):
        storage = ConflictingStorage(conflicts=100)
        processor, manager = build(storage)
        manager.register_account("1111111111", "Sender")

        with caplog.at_level(logging.WARNING, logger="accounts.transactions"):
            result = processor.deposit("1111111111", 1_000)

        assert result.error == AccountErrorCode.OPTIMISTIC_LOCK_CONFLICT
        assert result.error.retryable
        assert storage.update_attempts == 3
        assert manager.get_account("1111111111").value.balance == 0
        assert manager.get_activities("1111111111").value == []

        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(warnings) == 3
        assert len(errors) == 1

    def test_domain_failures_are_not_retried(self):
        storage = ConflictingStorage(conflicts=0)
        processor, manager = build(storage)
        manager.register_account("1111111111", "Sender")

        result = processor.withdraw("1111111111", 1_000)

        assert result.error == AccountErrorCode.INSUFFICIENT_BALANCE
        assert storage.update_attempts == 0

    def test_delete_retries_conflicts(self):
        storage = ConflictingStorage(conflicts=2)
        _, manager = build(storage)
        manager.register_account("1111111111", "Sender")

        result = manager.delete_account("1111111111")

        assert result.is_success
        assert storage.update_attempts == 3


class TestConcurrentAccess:
    """Test concurrent requests against one storage"""

    THREADS = 8

    def _run_concurrently(self, fn):
        barrier = threading.Barrier(self.THREADS)
        results = []
        errors = []

        def worker(index):
            try:
                barrier.wait()
                results.append(fn(index))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(self.THREADS)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == [], f"Errors occurred: {errors}"
        return results

    def test_concurrent_deposits_are_all_applied(self):
        """Each lost race means another deposit committed, so enough attempts guarantee success"""
        storage = InMemoryStorage()
        processor, manager = build(storage, max_attempts=self.THREADS + 2)
        manager.register_account("1111111111", "Shared")

        results = self._run_concurrently(lambda i: processor.deposit("1111111111", 1_000))

        assert all(result.is_success for result in results)
        account = manager.get_account("1111111111").value
        assert account.balance == 1_000 * self.THREADS
        assert account.version == self.THREADS
        assert len(manager.get_activities("1111111111").value) == self.THREADS

    def test_concurrent_withdrawals_respect_daily_limit(self):
        storage = InMemoryStorage()
        processor, manager = build(storage, max_attempts=self.THREADS + 2)
        manager.register_account("1111111111", "Shared")
        processor.deposit("1111111111", 5_000_000)

        results = self._run_concurrently(lambda i: processor.withdraw("1111111111", 200_000))

        succeeded = [r for r in results if r.is_success]
        rejected = [r for r in results if not r.is_success]
        assert len(succeeded) == 5
        assert {r.error for r in rejected} == {AccountErrorCode.DAILY_WITHDRAW_LIMIT_EXCEEDED}

        account = manager.get_account("1111111111").value
        assert account.balance == 4_000_000
        assert account.withdraw_limit.accumulated_amount == 1_000_000

    def test_concurrent_transfers_conserve_money(self):
        """Money only leaves the system as fees"""
        storage = InMemoryStorage()
        processor, manager = build(storage, max_attempts=self.THREADS + 2)
        manager.register_account("1111111111", "A")
        manager.register_account("2222222222", "B")
        processor.deposit("1111111111", 1_000_000)
        processor.deposit("2222222222", 1_000_000)

        def transfer(index):
            if index % 2:
                return processor.transfer("1111111111", "2222222222", 10_000)
            return processor.transfer("2222222222", "1111111111", 10_000)

        results = self._run_concurrently(transfer)

        assert all(result.is_success for result in results)
        fees = sum(result.value.fee for result in results)
        total = sum(
            manager.get_account(number).value.balance
            for number in ("1111111111", "2222222222")
        )
        assert fees == 100 * self.THREADS
        assert total + fees == 2_000_000
