"""
Account service wiring
"""

from typing import Optional

from .accounts import AccountManager
from .activity import ActivityRecorder
from .clock import Clock, SystemClock
from .config import AccountServiceConfig, get_config
from .repositories import StorageAccountRepository, StorageActivityRepository
from .storage import StorageInterface, create_storage
from .transactions import TransactionProcessor


class AccountSystem:
    """Account service with all components initialized"""

    def __init__(
        self,
        config: Optional[AccountServiceConfig] = None,
        storage: Optional[StorageInterface] = None,
        clock: Optional[Clock] = None
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)
        self.clock = clock or SystemClock(self.config.business_timezone)
        self.policy = self.config.to_policy()

        self.account_repository = StorageAccountRepository(self.storage)
        self.activity_repository = StorageActivityRepository(self.storage)
        self.activity_recorder = ActivityRecorder(self.activity_repository)

        self.account_manager = AccountManager(
            self.storage, self.account_repository, self.activity_repository,
            clock=self.clock,
            max_attempts=self.config.max_retry_attempts,
            retry_backoff_ms=self.config.retry_backoff_ms
        )
        self.transaction_processor = TransactionProcessor(
            self.storage, self.account_repository, self.activity_recorder,
            policy=self.policy,
            clock=self.clock,
            max_attempts=self.config.max_retry_attempts,
            retry_backoff_ms=self.config.retry_backoff_ms
        )

    def close(self) -> None:
        self.storage.close()
