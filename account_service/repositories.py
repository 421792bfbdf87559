"""
Repository Ports Module

Contracts the account core depends on for persistence, and implementations
of those contracts on top of a StorageInterface backend.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple
import uuid

from .accounts import Account
from .activity import Activity
from .storage import StorageInterface


class AccountRepository(ABC):
    """Persistence port for accounts"""

    @abstractmethod
    def save(self, account: Account) -> Account:
        """
        Insert a new account or write back a loaded one

        New accounts (id None) are assigned an id and stored at version 0.
        Loaded accounts are written only if the stored version still equals
        account.version; on success account.version is advanced by one.

        Raises:
            OptimisticLockConflict: The stored version moved on; the stored
                row is left untouched
            DuplicateKeyError: A new account reuses an existing number
        """
        pass

    @abstractmethod
    def find_by_account_number(self, account_number: str) -> Optional[Account]:
        """Live (not soft-deleted) account with this number"""
        pass

    @abstractmethod
    def find_by_id(self, account_id: str) -> Optional[Account]:
        """Live (not soft-deleted) account with this id"""
        pass

    @abstractmethod
    def exists_by_account_number(self, account_number: str) -> bool:
        """Whether the number was ever registered, soft-deleted rows included"""
        pass

    @abstractmethod
    def soft_delete(self, account_number: str) -> Optional[Account]:
        """Mark a live account deleted; None if there is no such account"""
        pass

    @abstractmethod
    def find_all(self, page: int, size: int) -> Tuple[List[Account], int]:
        """One page of live accounts, oldest first, and the live total"""
        pass


class ActivityRepository(ABC):
    """Append-only persistence port for ledger entries"""

    @abstractmethod
    def save(self, activity: Activity) -> Activity:
        pass

    @abstractmethod
    def find_by_account_id(self, account_id: str) -> List[Activity]:
        """Entries for an account, newest first"""
        pass


class StorageAccountRepository(AccountRepository):
    """AccountRepository backed by a StorageInterface table"""

    def __init__(self, storage: StorageInterface, table: str = "accounts"):
        self.storage = storage
        self.table = table

    def save(self, account: Account) -> Account:
        if account.id is None:
            account.id = str(uuid.uuid4())
            expected_version = None
        else:
            expected_version = account.version

        account.version = self.storage.save_versioned(
            self.table,
            account.id,
            account.to_dict(),
            expected_version,
            unique_key="account_number" if expected_version is None else None
        )
        return account

    def find_by_account_number(self, account_number: str) -> Optional[Account]:
        records = self.storage.find(self.table, {"account_number": account_number, "deleted_at": None})
        if records:
            return Account.from_dict(records[0])
        return None

    def find_by_id(self, account_id: str) -> Optional[Account]:
        record = self.storage.load(self.table, account_id)
        if record and record.get("deleted_at") is None:
            return Account.from_dict(record)
        return None

    def exists_by_account_number(self, account_number: str) -> bool:
        return bool(self.storage.find(self.table, {"account_number": account_number}))

    def soft_delete(self, account_number: str) -> Optional[Account]:
        account = self.find_by_account_number(account_number)
        if account is None:
            return None
        account.delete()
        return self.save(account)

    def find_all(self, page: int, size: int) -> Tuple[List[Account], int]:
        live = [
            Account.from_dict(record)
            for record in self.storage.find(self.table, {"deleted_at": None})
        ]
        live.sort(key=lambda account: account.created_at)
        start = page * size
        return live[start:start + size], len(live)


class StorageActivityRepository(ActivityRepository):
    """ActivityRepository backed by a StorageInterface table"""

    def __init__(self, storage: StorageInterface, table: str = "activities"):
        self.storage = storage
        self.table = table

    def save(self, activity: Activity) -> Activity:
        self.storage.save(self.table, activity.id, activity.to_dict())
        return activity

    def find_by_account_id(self, account_id: str) -> List[Activity]:
        activities = [
            Activity.from_dict(record)
            for record in self.storage.find(self.table, {"account_id": account_id})
        ]
        # Storage returns insertion order; reversing first keeps entries with
        # identical timestamps newest first under the stable sort.
        activities.reverse()
        activities.sort(key=lambda activity: activity.created_at, reverse=True)
        return activities
