"""
Storage Backend Module

Provides the abstract storage interface and implementations for in-memory
(testing) and SQLite (persistence) backends. Records are JSON documents keyed
by id. Versioned writes implement compare-and-swap on a per-record version
counter, and atomic() groups writes into an all-or-nothing unit.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Tuple, Union
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from contextlib import contextmanager

from .errors import OptimisticLockConflict, DuplicateKeyError, TransactionRolledBack


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: Optional[str]
    created_at: datetime
    updated_at: datetime

    @staticmethod
    def parse_datetime(value: Optional[str]) -> Optional[datetime]:
        """Parse an ISO timestamp written by to_dict"""
        if value is None:
            return None
        return datetime.fromisoformat(value)


def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy through JSON to prevent external mutation"""
    return json.loads(json.dumps(data, default=str))


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record without a version check (insert or overwrite)"""
        pass

    @abstractmethod
    def save_versioned(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        expected_version: Optional[int],
        unique_key: Optional[str] = None
    ) -> int:
        """
        Compare-and-swap write

        Args:
            table: Table name
            record_id: Record id
            data: Record document
            expected_version: Version the caller read, or None to insert
            unique_key: For inserts, a document field that must be unique
                within the table

        Returns:
            The stored version (0 for inserts, expected_version + 1 otherwise)

        Raises:
            OptimisticLockConflict: Stored version differs from expected_version
                (or the record already exists on insert); nothing is written
            DuplicateKeyError: Insert would duplicate unique_key
        """
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in insertion order"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


@dataclass
class _PendingTransaction:
    """Writes staged by one thread until commit"""
    depth: int = 1
    rollback_only: bool = False
    writes: Dict[Tuple[str, str], Dict[str, Any]] = field(default_factory=dict)
    versions: Dict[Tuple[str, str], int] = field(default_factory=dict)
    expected_versions: Dict[Tuple[str, str], Optional[int]] = field(default_factory=dict)
    unique_checks: List[Tuple[str, str, Any, str]] = field(default_factory=list)


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing

    Transactions are per thread. Writes made inside atomic() are staged and
    only visible to the staging thread. Versioned writes are checked when
    staged and checked again under the storage lock at commit, where either
    every staged write is applied or none is.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._versions: Dict[str, Dict[str, int]] = {}
        self._lock = threading.RLock()
        self._local = threading.local()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}
            self._versions[table] = {}

    def _pending(self) -> Optional[_PendingTransaction]:
        return getattr(self._local, "transaction", None)

    def _view(self, table: str) -> Dict[str, Dict[str, Any]]:
        """Committed records overlaid with this thread's staged writes"""
        self._ensure_table(table)
        view = dict(self._data[table])
        pending = self._pending()
        if pending:
            for (staged_table, record_id), record in pending.writes.items():
                if staged_table == table:
                    view[record_id] = record
        return view

    def _committed_version(self, table: str, record_id: str) -> Optional[int]:
        self._ensure_table(table)
        if record_id not in self._data[table]:
            return None
        return self._versions[table].get(record_id, 0)

    def _check_version(self, table: str, record_id: str, expected: Optional[int],
                       exists: bool, actual: Optional[int]) -> None:
        if expected is None:
            if exists:
                raise OptimisticLockConflict(table, record_id, expected, actual)
        elif not exists or actual != expected:
            raise OptimisticLockConflict(table, record_id, expected, actual)

    def _check_unique(self, records: Dict[str, Dict[str, Any]], table: str,
                      key: str, value: Any, record_id: str) -> None:
        for other_id, record in records.items():
            if other_id != record_id and record.get(key) == value:
                raise DuplicateKeyError(table, key, value)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            record = _copy(data)
            pending = self._pending()
            if pending:
                pending.writes[(table, record_id)] = record
            else:
                self._data[table][record_id] = record

    def save_versioned(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        expected_version: Optional[int],
        unique_key: Optional[str] = None
    ) -> int:
        """Compare-and-swap write against committed and staged state"""
        with self._lock:
            key = (table, record_id)
            pending = self._pending()
            view = self._view(table)

            if pending and key in pending.versions:
                actual = pending.versions[key]
            else:
                actual = self._committed_version(table, record_id)
            self._check_version(table, record_id, expected_version, record_id in view, actual)

            record = _copy(data)
            if expected_version is None and unique_key:
                self._check_unique(view, table, unique_key, record.get(unique_key), record_id)

            new_version = 0 if expected_version is None else expected_version + 1
            record['version'] = new_version

            if pending:
                pending.writes[key] = record
                pending.versions[key] = new_version
                pending.expected_versions.setdefault(key, expected_version)
                if expected_version is None and unique_key:
                    pending.unique_checks.append((table, unique_key, record.get(unique_key), record_id))
            else:
                self._data[table][record_id] = record
                self._versions[table][record_id] = new_version
            return new_version

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            record = self._view(table).get(record_id)
            if record:
                return _copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            return [_copy(record) for record in self._view(table).values()]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            results = []
            for record in self._view(table).values():
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(_copy(record))
            return results

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    def begin_transaction(self) -> None:
        """Start (or nest into) this thread's transaction"""
        pending = self._pending()
        if pending:
            pending.depth += 1
        else:
            self._local.transaction = _PendingTransaction()

    def commit(self) -> None:
        """Validate and apply this thread's staged writes"""
        pending = self._pending()
        if pending is None:
            return
        pending.depth -= 1
        if pending.depth > 0:
            return

        self._local.transaction = None
        if pending.rollback_only:
            raise TransactionRolledBack()
        with self._lock:
            for (table, record_id), expected in pending.expected_versions.items():
                self._ensure_table(table)
                self._check_version(
                    table, record_id, expected,
                    record_id in self._data[table],
                    self._committed_version(table, record_id)
                )
            for table, key, value, record_id in pending.unique_checks:
                self._check_unique(self._data[table], table, key, value, record_id)

            for (table, record_id), record in pending.writes.items():
                self._ensure_table(table)
                self._data[table][record_id] = record
                if (table, record_id) in pending.versions:
                    self._versions[table][record_id] = pending.versions[(table, record_id)]

    def rollback(self) -> None:
        """
        Discard this thread's staged writes

        A nested rollback leaves the outer transaction open but marks it
        rollback-only, so its final commit discards everything.
        """
        pending = self._pending()
        if pending and pending.depth > 1:
            pending.depth -= 1
            pending.rollback_only = True
            return
        self._local.transaction = None


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Set isolation_level to 'DEFERRED' to enable manual transaction control
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._rollback_only = False
        self._tables: set = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        with self._lock:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            # Create index on timestamps for better query performance
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            if not self._in_transaction:
                self._connection.commit()
            self._tables.add(table)

    def _commit_unless_in_transaction(self) -> None:
        if not self._in_transaction:
            self._connection.commit()

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, data_json, now, now))

            self._commit_unless_in_transaction()

    def _stored_version(self, table: str, record_id: str) -> Optional[int]:
        cursor = self._connection.execute(f"""
            SELECT version FROM {table} WHERE id = ?
        """, (record_id,))
        row = cursor.fetchone()
        return row['version'] if row else None

    def save_versioned(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        expected_version: Optional[int],
        unique_key: Optional[str] = None
    ) -> int:
        """Compare-and-swap write using the version column"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            record = dict(data)

            if expected_version is None:
                if unique_key:
                    cursor = self._connection.execute(f"""
                        SELECT 1 FROM {table}
                        WHERE json_extract(data, ?) = ? AND id != ?
                        LIMIT 1
                    """, (f"$.{unique_key}", record.get(unique_key), record_id))
                    if cursor.fetchone() is not None:
                        raise DuplicateKeyError(table, unique_key, record.get(unique_key))

                record['version'] = 0
                try:
                    self._connection.execute(f"""
                        INSERT INTO {table} (id, data, version, created_at, updated_at)
                        VALUES (?, ?, 0, ?, ?)
                    """, (record_id, json.dumps(record, default=str), now, now))
                except sqlite3.IntegrityError:
                    raise OptimisticLockConflict(
                        table, record_id, None, self._stored_version(table, record_id)
                    )
                self._commit_unless_in_transaction()
                return 0

            new_version = expected_version + 1
            record['version'] = new_version
            cursor = self._connection.execute(f"""
                UPDATE {table}
                SET data = ?, version = ?, updated_at = ?
                WHERE id = ? AND version = ?
            """, (json.dumps(record, default=str), new_version, now, record_id, expected_version))

            if cursor.rowcount == 0:
                raise OptimisticLockConflict(
                    table, record_id, expected_version, self._stored_version(table, record_id)
                )

            self._commit_unless_in_transaction()
            return new_version

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at, rowid
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        with self._lock:
            results = []
            for record in self.load_all(table):
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(record)

            return results

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            if not self._in_transaction:
                # SQLite with isolation_level='DEFERRED' automatically starts transactions
                # We just need to track the state
                self._in_transaction = True

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._in_transaction:
                self._connection.commit()
                self._in_transaction = False

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._in_transaction:
                self._connection.rollback()
                self._in_transaction = False
                # Tables created inside the transaction are gone as well
                self._tables.clear()
            self._rollback_only = False

    @contextmanager
    def atomic(self):
        """
        Atomic unit holding the connection lock until commit or rollback

        The connection is shared between threads, so the lock keeps other
        threads' statements out of this transaction. Nested calls join the
        outer transaction. A failed nested block marks the outer transaction
        rollback-only, and the outermost block then rolls back and raises
        TransactionRolledBack instead of committing.
        """
        with self._lock:
            outermost = not self._in_transaction
            if outermost:
                self.begin_transaction()
            try:
                yield
                if outermost:
                    if self._rollback_only:
                        raise TransactionRolledBack()
                    self.commit()
            except Exception:
                if outermost:
                    self.rollback()
                else:
                    self._rollback_only = True
                raise

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL

    Supported forms: ``memory://`` for InMemoryStorage, ``sqlite://`` or
    ``sqlite:///:memory:`` for an in-memory SQLite database and
    ``sqlite:///path/to/file.db`` for a file.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return SQLiteStorage(":memory:")
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):])
    raise ValueError(f"Unsupported database URL: {database_url}")
