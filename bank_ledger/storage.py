"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing),
SQLite (persistence) and PostgreSQL. Records are JSON documents keyed by id;
all monetary values stored as Decimal strings.

Every backend supports an atomic() scope with rollback, unique indexes on a
document field, and compare-and-set updates on a document's "version" field.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union, Iterable, Tuple
from decimal import Decimal
from datetime import datetime, timezone
from enum import Enum
import sqlite3
import json
import copy
import re
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


class StorageError(Exception):
    """Storage-level failure (connection, schema, unexpected constraint)"""


class UniqueConstraintError(StorageError):
    """A unique index rejected a write"""

    def __init__(self, table: str, field: str, value: Any = None):
        super().__init__(f"Unique constraint violated on {table}.{field}: {value}")
        self.table = table
        self.field = field
        self.value = value


class VersionConflictError(StorageError):
    """A versioned update found the record changed or gone"""

    def __init__(self, table: str, record_id: str, expected_version: int):
        super().__init__(
            f"Version conflict on {table}/{record_id}: expected version {expected_version}"
        )
        self.table = table
        self.record_id = record_id
        self.expected_version = expected_version


class StorageTimeoutError(StorageError):
    """Timed out waiting for the storage transaction lock"""


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
            elif isinstance(value, Decimal):
                result[key] = str(value)
            elif isinstance(value, Enum):
                result[key] = value.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        data = dict(data)
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        return cls(**data)


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if record.get(key) != value:
            return False
    return True


def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy through JSON to prevent external mutation"""
    return json.loads(json.dumps(data, default=str))


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching all filters"""
        pass

    @abstractmethod
    def find_any(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching at least one filter"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def add_unique_index(self, table: str, field: str) -> None:
        """Reject writes that would give two records the same value for field"""
        pass

    @abstractmethod
    def update_versioned(
        self, table: str, record_id: str, data: Dict[str, Any], expected_version: int
    ) -> bool:
        """
        Replace a record only if its stored "version" equals expected_version.
        Returns False when the record is missing or was changed by someone else.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def lock_records(self, table: str, record_ids: Iterable[str]) -> None:
        """Take row locks for the current transaction (default no-op)"""
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
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()


class _TransactionState(threading.local):
    """Per-thread transaction bookkeeping"""

    def __init__(self):
        self.depth = 0
        self.rolled_back = False
        self.undo: List[Tuple[str, str, Optional[Dict[str, Any]]]] = []

    def check_writable(self) -> None:
        """Refuse writes in outer scopes once an inner scope has rolled back"""
        if self.depth > 0 and self.rolled_back:
            raise StorageError(
                "Transaction was rolled back by a nested scope; "
                "no writes until the outermost scope ends"
            )


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing

    A transaction holds the storage lock from begin to commit/rollback, so
    transactions are serialized. Writes inside a transaction are recorded in
    a per-thread undo journal that rollback replays in reverse.
    """

    def __init__(self, lock_timeout: float = -1):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._unique: Dict[str, List[str]] = {}
        self._lock = threading.RLock()
        self._lock_timeout = lock_timeout
        self._tx = _TransactionState()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def _record_undo(self, table: str, record_id: str) -> None:
        if self._tx.depth > 0:
            previous = self._data[table].get(record_id)
            self._tx.undo.append((table, record_id, copy.deepcopy(previous)))

    def _check_unique(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        for field in self._unique.get(table, []):
            value = data.get(field)
            if value is None:
                continue
            for other_id, other in self._data[table].items():
                if other_id != record_id and other.get(field) == value:
                    raise UniqueConstraintError(table, field, value)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._tx.check_writable()
            self._ensure_table(table)
            stored = _copy(data)
            self._check_unique(table, record_id, stored)
            self._record_undo(table, record_id)
            self._data[table][record_id] = stored

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return _copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [_copy(record) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._tx.check_writable()
            self._ensure_table(table)
            if record_id in self._data[table]:
                self._record_undo(table, record_id)
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            return [_copy(record) for record in self._data[table].values()
                    if _matches(record, filters)]

    def find_any(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching at least one filter"""
        with self._lock:
            self._ensure_table(table)
            return [_copy(record) for record in self._data[table].values()
                    if any(record.get(k) == v for k, v in filters.items())]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._tx.check_writable()
            self._ensure_table(table)
            for record_id in list(self._data[table]):
                self._record_undo(table, record_id)
            self._data[table] = {}

    def add_unique_index(self, table: str, field: str) -> None:
        with self._lock:
            self._ensure_table(table)
            fields = self._unique.setdefault(table, [])
            if field not in fields:
                fields.append(field)

    def update_versioned(
        self, table: str, record_id: str, data: Dict[str, Any], expected_version: int
    ) -> bool:
        with self._lock:
            self._tx.check_writable()
            self._ensure_table(table)
            current = self._data[table].get(record_id)
            if current is None or current.get('version') != expected_version:
                return False
            self.save(table, record_id, data)
            return True

    def begin_transaction(self) -> None:
        """Start a transaction, taking the storage lock for its duration"""
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise StorageTimeoutError("Timed out waiting for storage transaction lock")
        if self._tx.depth == 0:
            self._tx.undo = []
            self._tx.rolled_back = False
        self._tx.depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        if self._tx.depth == 0:
            return
        self._tx.depth -= 1
        if self._tx.depth == 0:
            self._tx.undo = []
        self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction by replaying the undo journal"""
        if self._tx.depth == 0:
            return
        while self._tx.undo:
            table, record_id, previous = self._tx.undo.pop()
            if previous is None:
                self._data[table].pop(record_id, None)
            else:
                self._data[table][record_id] = previous
        self._tx.rolled_back = True
        self._tx.depth -= 1
        self._lock.release()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


_SAFE_NAME = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


def _check_name(name: str) -> str:
    """Table and field names are interpolated into SQL"""
    if not _SAFE_NAME.match(name):
        raise StorageError(f"Invalid identifier: {name!r}")
    return name


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence

    Transactions use BEGIN IMMEDIATE so the write lock is taken up front and
    the read-modify-write sequence inside atomic() is serializable.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 5.0,
                 lock_timeout: float = -1):
        self.db_path = str(db_path)
        # Autocommit mode; transactions are opened explicitly
        self._connection = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None, timeout=timeout
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._lock_timeout = lock_timeout
        self._tx = _TransactionState()
        self._tables: set = set()
        self._unique_indexes: Dict[str, Tuple[str, str]] = {}

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    @contextmanager
    def _translate_errors(self):
        """Map sqlite3 errors onto the storage exception hierarchy"""
        try:
            yield
        except sqlite3.IntegrityError as e:
            for index_name, (table, field) in self._unique_indexes.items():
                if index_name in str(e):
                    raise UniqueConstraintError(table, field) from e
            raise StorageError(str(e)) from e
        except sqlite3.OperationalError as e:
            if "locked" in str(e) or "busy" in str(e):
                raise StorageTimeoutError(str(e)) from e
            raise StorageError(str(e)) from e
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        _check_name(table)
        with self._lock, self._translate_errors():
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            # Create index on timestamps for better query performance
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._tx.check_writable()
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Upsert on the primary key only; unique index violations must surface
            with self._translate_errors():
                self._connection.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        data = excluded.data,
                        updated_at = excluded.updated_at
                """, (record_id, data_json, now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            with self._translate_errors():
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
            with self._translate_errors():
                cursor = self._connection.execute(f"""
                    SELECT data FROM {table} ORDER BY created_at
                """)
                return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock:
            self._tx.check_writable()
            self._ensure_table(table)
            with self._translate_errors():
                cursor = self._connection.execute(f"""
                    DELETE FROM {table} WHERE id = ?
                """, (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            with self._translate_errors():
                cursor = self._connection.execute(f"""
                    SELECT 1 FROM {table} WHERE id = ? LIMIT 1
                """, (record_id,))
                return cursor.fetchone() is not None

    def _select_where(self, table: str, filters: Dict[str, Any], joiner: str) -> List[Dict[str, Any]]:
        conditions = []
        params: List[Any] = []
        for key, value in filters.items():
            path = f"$.{_check_name(key)}"
            if value is None:
                conditions.append("json_extract(data, ?) IS NULL")
                params.append(path)
            else:
                conditions.append("json_extract(data, ?) = ?")
                params.extend([path, value])

        query = f"SELECT data FROM {table}"
        if conditions:
            query += " WHERE " + f" {joiner} ".join(conditions)
        query += " ORDER BY created_at"

        with self._lock:
            self._ensure_table(table)
            with self._translate_errors():
                cursor = self._connection.execute(query, params)
                return [json.loads(row['data']) for row in cursor.fetchall()]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using json_extract"""
        return self._select_where(table, filters, "AND")

    def find_any(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching at least one filter"""
        if not filters:
            return []
        return self._select_where(table, filters, "OR")

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            with self._translate_errors():
                cursor = self._connection.execute(f"""
                    SELECT COUNT(*) as count FROM {table}
                """)
                return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._tx.check_writable()
            self._ensure_table(table)
            with self._translate_errors():
                self._connection.execute(f"DELETE FROM {table}")

    def add_unique_index(self, table: str, field: str) -> None:
        """Create a unique expression index on a JSON field"""
        _check_name(field)
        index_name = f"uq_{table}_{field}"
        with self._lock:
            self._ensure_table(table)
            with self._translate_errors():
                self._connection.execute(f"""
                    CREATE UNIQUE INDEX IF NOT EXISTS {index_name}
                    ON {table}(json_extract(data, '$.{field}'))
                """)
            self._unique_indexes[index_name] = (table, field)

    def update_versioned(
        self, table: str, record_id: str, data: Dict[str, Any], expected_version: int
    ) -> bool:
        with self._lock:
            self._tx.check_writable()
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            with self._translate_errors():
                cursor = self._connection.execute(f"""
                    UPDATE {table} SET data = ?, updated_at = ?
                    WHERE id = ? AND json_extract(data, '$.version') = ?
                """, (json.dumps(data, default=str), now, record_id, expected_version))
            return cursor.rowcount == 1

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise StorageTimeoutError("Timed out waiting for storage transaction lock")
        if self._tx.depth == 0:
            self._tx.rolled_back = False
            try:
                with self._translate_errors():
                    self._connection.execute("BEGIN IMMEDIATE")
            except StorageError:
                self._lock.release()
                raise
        self._tx.depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        if self._tx.depth == 0:
            return
        self._tx.depth -= 1
        try:
            if self._tx.depth == 0 and not self._tx.rolled_back:
                with self._translate_errors():
                    self._connection.execute("COMMIT")
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        if self._tx.depth == 0:
            return
        self._tx.depth -= 1
        try:
            if not self._tx.rolled_back:
                self._tx.rolled_back = True
                # Tables created inside the transaction are gone too
                self._tables.clear()
                with self._translate_errors():
                    self._connection.execute("ROLLBACK")
        finally:
            self._lock.release()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """PostgreSQL storage backend with ACID transaction support and row locks"""

    def __init__(self, connection_string: str, lock_timeout: float = -1):
        try:
            import psycopg2
            import psycopg2.extras
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self._connection = None
        self._lock = threading.RLock()
        self._lock_timeout = lock_timeout
        self._tx = _TransactionState()
        self._tables: set = set()
        self._unique_indexes: Dict[str, Tuple[str, str]] = {}
        self._connect()

    def _connect(self) -> None:
        """Establish database connection"""
        with self._lock:
            self._connection = self.psycopg2.connect(
                self.connection_string,
                cursor_factory=self.extras.RealDictCursor
            )
            self._connection.autocommit = False  # We handle transactions manually

    @contextmanager
    def _cursor(self):
        """Cursor that commits outside transactions and maps driver errors"""
        cursor = self._connection.cursor()
        try:
            yield cursor
            if self._tx.depth == 0:
                self._connection.commit()
        except self.psycopg2.IntegrityError as e:
            if self._tx.depth == 0:
                self._connection.rollback()
            constraint = getattr(getattr(e, 'diag', None), 'constraint_name', None)
            if constraint in self._unique_indexes:
                table, field = self._unique_indexes[constraint]
                raise UniqueConstraintError(table, field) from e
            raise StorageError(str(e)) from e
        except self.psycopg2.Error as e:
            if self._tx.depth == 0:
                self._connection.rollback()
            raise StorageError(str(e)) from e
        finally:
            cursor.close()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        _check_name(table)
        with self._lock, self._cursor() as cursor:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data JSONB NOT NULL,
                    created_at TIMESTAMP DEFAULT NOW(),
                    updated_at TIMESTAMP DEFAULT NOW()
                )
            """)
            cursor.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_data
                ON {table} USING gin(data)
            """)
            cursor.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
        self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to PostgreSQL using UPSERT"""
        with self._lock:
            self._tx.check_writable()
            self._ensure_table(table)
            now = datetime.now(timezone.utc)
            with self._cursor() as cursor:
                cursor.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                        data = EXCLUDED.data,
                        updated_at = EXCLUDED.updated_at
                """, (record_id, json.dumps(data, default=str), now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from PostgreSQL"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(f"SELECT data FROM {table} WHERE id = %s", (record_id,))
                row = cursor.fetchone()
            if row:
                return dict(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(f"SELECT data FROM {table} ORDER BY created_at")
                return [dict(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from PostgreSQL"""
        with self._lock:
            self._tx.check_writable()
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(f"DELETE FROM {table} WHERE id = %s", (record_id,))
                return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(f"SELECT 1 FROM {table} WHERE id = %s LIMIT 1", (record_id,))
                return cursor.fetchone() is not None

    def _select_where(self, table: str, filters: Dict[str, Any], joiner: str) -> List[Dict[str, Any]]:
        conditions = []
        params: List[Any] = []
        for key, value in filters.items():
            if value is None:
                conditions.append("data ->> %s IS NULL")
                params.append(_check_name(key))
            else:
                if isinstance(value, bool):
                    value = "true" if value else "false"
                conditions.append("data ->> %s = %s")
                params.extend([_check_name(key), str(value)])

        query = f"SELECT data FROM {table}"
        if conditions:
            query += " WHERE " + f" {joiner} ".join(conditions)
        query += " ORDER BY created_at"

        with self._lock:
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(query, params)
                return [dict(row['data']) for row in cursor.fetchall()]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using JSONB operators"""
        return self._select_where(table, filters, "AND")

    def find_any(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not filters:
            return []
        return self._select_where(table, filters, "OR")

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(f"SELECT COUNT(*) as count FROM {table}")
                return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._tx.check_writable()
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(f"DELETE FROM {table}")

    def add_unique_index(self, table: str, field: str) -> None:
        _check_name(field)
        index_name = f"uq_{table}_{field}"
        with self._lock:
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(f"""
                    CREATE UNIQUE INDEX IF NOT EXISTS {index_name}
                    ON {table} ((data ->> '{field}'))
                """)
            self._unique_indexes[index_name] = (table, field)

    def update_versioned(
        self, table: str, record_id: str, data: Dict[str, Any], expected_version: int
    ) -> bool:
        with self._lock:
            self._tx.check_writable()
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(f"""
                    UPDATE {table} SET data = %s, updated_at = %s
                    WHERE id = %s AND (data ->> 'version')::int = %s
                """, (json.dumps(data, default=str), datetime.now(timezone.utc),
                      record_id, expected_version))
                return cursor.rowcount == 1

    def lock_records(self, table: str, record_ids: Iterable[str]) -> None:
        """SELECT ... FOR UPDATE in id order for the current transaction"""
        ids = sorted(record_ids)
        if not ids:
            return
        with self._lock:
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(
                    f"SELECT id FROM {table} WHERE id = ANY(%s) ORDER BY id FOR UPDATE",
                    (ids,)
                )

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise StorageTimeoutError("Timed out waiting for storage transaction lock")
        if self._tx.depth == 0:
            self._tx.rolled_back = False
            # PostgreSQL transactions start automatically on the first statement
        self._tx.depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        if self._tx.depth == 0:
            return
        self._tx.depth -= 1
        try:
            if self._tx.depth == 0 and not self._tx.rolled_back:
                try:
                    self._connection.commit()
                except self.psycopg2.Error as e:
                    self._connection.rollback()
                    raise StorageError(str(e)) from e
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        if self._tx.depth == 0:
            return
        self._tx.depth -= 1
        try:
            if not self._tx.rolled_back:
                self._tx.rolled_back = True
                # Tables created inside the transaction are gone too
                self._tables.clear()
                self._connection.rollback()
        finally:
            self._lock.release()

    def close(self) -> None:
        """Close PostgreSQL connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str, sqlite_timeout: float = 5.0,
                   lock_timeout: float = -1) -> StorageInterface:
    """
    Build a storage backend from a URL

    Supported schemes: memory://, sqlite:///path (or sqlite:///:memory:),
    postgresql://...
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage(lock_timeout=lock_timeout)
    if database_url.startswith("sqlite:///"):
        path = database_url[len("sqlite:///"):] or ":memory:"
        return SQLiteStorage(path, timeout=sqlite_timeout, lock_timeout=lock_timeout)
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url, lock_timeout=lock_timeout)
    raise StorageError(f"Unsupported database URL: {database_url}")
