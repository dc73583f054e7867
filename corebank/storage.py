"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing),
SQLite (default persistence) and PostgreSQL. Records are JSON documents keyed by
id; monetary values are stored as Decimal strings.

Every backend serializes access through one re-entrant lock. ``atomic()`` holds
that lock for the whole transaction, so readers only ever observe committed
state.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from datetime import datetime, timezone
from decimal import Decimal
from dataclasses import dataclass, asdict
import copy
import sqlite3
import json
import threading
from pathlib import Path
from contextlib import contextmanager


SEQUENCES_TABLE = "sequences"


class UniqueConstraintError(Exception):
    """Raised when an insert collides with an existing id or unique field value"""

    def __init__(self, table: str, field: str, value: Any = None):
        self.table = table
        self.field = field
        self.value = value
        super().__init__(f"Unique constraint violated on {table}.{field}")


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: int
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        # Convert datetime objects to ISO strings
        result['created_at'] = self.created_at.isoformat()
        # Convert Decimal objects to strings
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        data = dict(data)
        # Convert ISO strings back to datetime objects
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        return cls(**data)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    def __init__(self):
        self._lock = threading.RLock()
        self._tx_depth = 0

    @abstractmethod
    def ensure_table(self, table: str) -> None:
        """Create a table if it does not exist yet"""
        pass

    @abstractmethod
    def save(self, table: str, record_id: Union[str, int], data: Dict[str, Any]) -> None:
        """Insert or replace a record"""
        pass

    @abstractmethod
    def insert(self, table: str, record_id: Union[str, int], data: Dict[str, Any]) -> None:
        """Insert a new record; raises UniqueConstraintError on collision"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: Union[str, int]) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in insertion order"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: Union[str, int]) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: Union[str, int]) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching all filters"""
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
    def next_id(self, sequence: str) -> int:
        """Return the next value of a monotonic integer sequence, starting at 1"""
        pass

    @abstractmethod
    def create_unique_index(self, table: str, field: str) -> None:
        """Declare that no two records of table may share a value for field"""
        pass

    @abstractmethod
    def drop_unique_index(self, table: str, field: str) -> None:
        """Remove a unique field declaration; a no-op when none exists"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def load_for_update(self, table: str, record_id: Union[str, int]) -> Optional[Dict[str, Any]]:
        """Load a record inside a transaction, locking it where the backend supports row locks"""
        return self.load(table, record_id)

    def _begin(self) -> None:
        pass

    def _commit(self) -> None:
        pass

    def _rollback(self) -> None:
        pass

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    def begin_transaction(self) -> None:
        """Start a transaction; nested calls join the outer one"""
        with self._lock:
            if self._tx_depth == 0:
                self._begin()
            self._tx_depth += 1

    def commit(self) -> None:
        """Commit current transaction once the outermost block finishes"""
        with self._lock:
            if self._tx_depth == 0:
                return
            if self._tx_depth == 1:
                self._commit()
            self._tx_depth -= 1

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._tx_depth == 0:
                return
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._rollback()

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations; holds the storage lock throughout"""
        with self._lock:
            self.begin_transaction()
            try:
                yield self
                self.commit()
            except Exception:
                self.rollback()
                raise


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._sequences: Dict[str, int] = {}
        self._unique_fields: Dict[str, List[str]] = {}
        self._snapshot = None

    @staticmethod
    def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
        # Deep copy through JSON to prevent external mutation
        return json.loads(json.dumps(record, default=str))

    def ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        with self._lock:
            if table not in self._data:
                self._data[table] = {}

    def _check_unique(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        for field_name in self._unique_fields.get(table, []):
            value = data.get(field_name)
            if value is None:
                continue
            for other_id, other in self._data[table].items():
                if other_id != record_id and other.get(field_name) == value:
                    raise UniqueConstraintError(table, field_name, value)

    def save(self, table: str, record_id: Union[str, int], data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self.ensure_table(table)
            record = self._copy(data)
            self._check_unique(table, str(record_id), record)
            self._data[table][str(record_id)] = record

    def insert(self, table: str, record_id: Union[str, int], data: Dict[str, Any]) -> None:
        """Insert a new record into memory"""
        with self._lock:
            self.ensure_table(table)
            if str(record_id) in self._data[table]:
                raise UniqueConstraintError(table, "id", record_id)
            self.save(table, record_id, data)

    def load(self, table: str, record_id: Union[str, int]) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self.ensure_table(table)
            record = self._data[table].get(str(record_id))
            if record:
                return self._copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self.ensure_table(table)
            return [self._copy(record) for record in self._data[table].values()]

    def delete(self, table: str, record_id: Union[str, int]) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self.ensure_table(table)
            if str(record_id) in self._data[table]:
                del self._data[table][str(record_id)]
                return True
            return False

    def exists(self, table: str, record_id: Union[str, int]) -> bool:
        """Check if a record exists"""
        with self._lock:
            self.ensure_table(table)
            return str(record_id) in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self.ensure_table(table)
            results = []
            for record in self._data[table].values():
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(self._copy(record))
            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self.ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def next_id(self, sequence: str) -> int:
        """Advance an in-memory counter"""
        with self._lock:
            value = self._sequences.get(sequence, 0) + 1
            self._sequences[sequence] = value
            return value

    def create_unique_index(self, table: str, field: str) -> None:
        """Register a unique field checked on every write"""
        with self._lock:
            self.ensure_table(table)
            seen = set()
            for record in self._data[table].values():
                value = record.get(field)
                if value is None:
                    continue
                if value in seen:
                    raise UniqueConstraintError(table, field, value)
                seen.add(value)
            fields = self._unique_fields.setdefault(table, [])
            if field not in fields:
                fields.append(field)

    def drop_unique_index(self, table: str, field: str) -> None:
        with self._lock:
            fields = self._unique_fields.get(table, [])
            if field in fields:
                fields.remove(field)

    def _begin(self) -> None:
        self._snapshot = (
            copy.deepcopy(self._data), dict(self._sequences), copy.deepcopy(self._unique_fields)
        )

    def _commit(self) -> None:
        self._snapshot = None

    def _rollback(self) -> None:
        if self._snapshot is not None:
            self._data, self._sequences, self._unique_fields = self._snapshot
            self._snapshot = None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        super().__init__()
        self.db_path = str(db_path)
        # Autocommit mode; transactions are opened explicitly by begin_transaction
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        self._tables = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    def ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        with self._lock:
            if table == SEQUENCES_TABLE:
                self._ensure_sequences()
                return
            if table in self._tables:
                return
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            # Create index on timestamps for better query performance
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            self._tables.add(table)

    def save(self, table: str, record_id: Union[str, int], data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self.ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)
            try:
                # Upsert keeps the original rowid and created_at
                self._connection.execute(f"""
                    INSERT INTO {table} (id, data, created_at) VALUES (?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET data = excluded.data
                """, (str(record_id), data_json, now))
            except sqlite3.IntegrityError as e:
                raise UniqueConstraintError(table, _constraint_field(e), record_id) from e

    def insert(self, table: str, record_id: Union[str, int], data: Dict[str, Any]) -> None:
        """Insert a new record into SQLite"""
        with self._lock:
            self.ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)
            try:
                self._connection.execute(f"""
                    INSERT INTO {table} (id, data, created_at) VALUES (?, ?, ?)
                """, (str(record_id), data_json, now))
            except sqlite3.IntegrityError as e:
                raise UniqueConstraintError(table, _constraint_field(e), record_id) from e

    def load(self, table: str, record_id: Union[str, int]) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self.ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (str(record_id),))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self.ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY rowid
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: Union[str, int]) -> bool:
        """Delete a record from SQLite"""
        with self._lock:
            self.ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (str(record_id),))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: Union[str, int]) -> bool:
        """Check if a record exists"""
        with self._lock:
            self.ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (str(record_id),))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using json_extract"""
        with self._lock:
            self.ensure_table(table)
            conditions = []
            params = []
            for key, value in filters.items():
                conditions.append(f"json_extract(data, '$.{key}') = ?")
                params.append(value)

            where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} {where_clause} ORDER BY rowid
            """, params)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self.ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self.ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")

    def _ensure_sequences(self) -> None:
        if SEQUENCES_TABLE in self._tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {SEQUENCES_TABLE} (
                name TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        """)
        self._tables.add(SEQUENCES_TABLE)

    def next_id(self, sequence: str) -> int:
        """Advance a persistent counter stored in the sequences table"""
        with self._lock:
            self._ensure_sequences()
            self._connection.execute(f"""
                INSERT INTO {SEQUENCES_TABLE} (name, value) VALUES (?, 1)
                ON CONFLICT(name) DO UPDATE SET value = value + 1
            """, (sequence,))
            cursor = self._connection.execute(f"""
                SELECT value FROM {SEQUENCES_TABLE} WHERE name = ?
            """, (sequence,))
            return cursor.fetchone()['value']

    def create_unique_index(self, table: str, field: str) -> None:
        """Create a unique expression index over a JSON field"""
        with self._lock:
            self.ensure_table(table)
            self._connection.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS uq_{table}_{field}
                ON {table}(json_extract(data, '$.{field}'))
            """)

    def drop_unique_index(self, table: str, field: str) -> None:
        with self._lock:
            self._connection.execute(f"DROP INDEX IF EXISTS uq_{table}_{field}")

    def _begin(self) -> None:
        # IMMEDIATE takes the write lock up front so other processes cannot interleave
        self._connection.execute("BEGIN IMMEDIATE")

    def _commit(self) -> None:
        self._connection.execute("COMMIT")

    def _rollback(self) -> None:
        self._connection.execute("ROLLBACK")
        # Tables created inside the rolled back transaction are gone again
        self._tables.clear()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def _constraint_field(error: Exception) -> str:
    """Best effort name of the column behind an IntegrityError message"""
    message = str(error)
    if "json_extract" in message or "index" in message:
        return "unique_index"
    return "id"


class PostgreSQLStorage(StorageInterface):
    """PostgreSQL storage backend with ACID transaction support"""

    def __init__(self, connection_string: str):
        super().__init__()
        try:
            import psycopg2
            import psycopg2.extras
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install corebank[postgres]")

        self.connection_string = connection_string
        self._connection = None
        self._tables = set()
        self._connect()

    def _connect(self) -> None:
        """Establish database connection"""
        with self._lock:
            self._connection = self.psycopg2.connect(
                self.connection_string,
                cursor_factory=self.extras.RealDictCursor
            )
            self._connection.autocommit = False  # We handle transactions manually

    def _execute(self, sql: str, params=None, fetch: Optional[str] = None):
        """Run one statement, committing right away unless a transaction is open"""
        with self._lock:
            cursor = self._connection.cursor()
            try:
                cursor.execute(sql, params)
                if fetch == "one":
                    result = cursor.fetchone()
                elif fetch == "all":
                    result = cursor.fetchall()
                else:
                    result = cursor.rowcount
                if not self.in_transaction:
                    self._connection.commit()
                return result
            except self.psycopg2.Error:
                if not self.in_transaction:
                    self._connection.rollback()
                raise
            finally:
                cursor.close()

    def ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        with self._lock:
            if table == SEQUENCES_TABLE:
                self._ensure_sequences()
                return
            if table in self._tables:
                return
            self._execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    seq BIGSERIAL,
                    id TEXT PRIMARY KEY,
                    data JSONB NOT NULL,
                    created_at TIMESTAMPTZ DEFAULT NOW()
                )
            """)
            self._execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            self._tables.add(table)

    def _write(self, sql: str, table: str, record_id: Union[str, int], data: Dict[str, Any]) -> None:
        with self._lock:
            self.ensure_table(table)
            data_json = json.dumps(data, default=str)
            try:
                self._execute(sql, (str(record_id), data_json))
            except self.psycopg2.IntegrityError as e:
                raise UniqueConstraintError(table, _constraint_field(e), record_id) from e

    def save(self, table: str, record_id: Union[str, int], data: Dict[str, Any]) -> None:
        """Save a record to PostgreSQL using UPSERT"""
        self._write(f"""
            INSERT INTO {table} (id, data) VALUES (%s, %s)
            ON CONFLICT (id) DO UPDATE SET data = EXCLUDED.data
        """, table, record_id, data)

    def insert(self, table: str, record_id: Union[str, int], data: Dict[str, Any]) -> None:
        """Insert a new record into PostgreSQL"""
        self._write(f"""
            INSERT INTO {table} (id, data) VALUES (%s, %s)
        """, table, record_id, data)

    def load(self, table: str, record_id: Union[str, int]) -> Optional[Dict[str, Any]]:
        """Load a record from PostgreSQL"""
        self.ensure_table(table)
        row = self._execute(f"SELECT data FROM {table} WHERE id = %s", (str(record_id),), fetch="one")
        return dict(row['data']) if row else None

    def load_for_update(self, table: str, record_id: Union[str, int]) -> Optional[Dict[str, Any]]:
        """Load a record and hold its row lock until the transaction ends"""
        self.ensure_table(table)
        row = self._execute(
            f"SELECT data FROM {table} WHERE id = %s FOR UPDATE", (str(record_id),), fetch="one"
        )
        return dict(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        self.ensure_table(table)
        rows = self._execute(f"SELECT data FROM {table} ORDER BY seq", fetch="all")
        return [dict(row['data']) for row in rows]

    def delete(self, table: str, record_id: Union[str, int]) -> bool:
        """Delete a record from PostgreSQL"""
        self.ensure_table(table)
        return self._execute(f"DELETE FROM {table} WHERE id = %s", (str(record_id),)) > 0

    def exists(self, table: str, record_id: Union[str, int]) -> bool:
        """Check if a record exists"""
        self.ensure_table(table)
        row = self._execute(f"SELECT 1 FROM {table} WHERE id = %s LIMIT 1", (str(record_id),), fetch="one")
        return row is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using JSONB operators"""
        self.ensure_table(table)
        conditions = []
        params = []
        for key, value in filters.items():
            conditions.append("data ->> %s = %s")
            params.extend([key, str(value)])

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = self._execute(
            f"SELECT data FROM {table} {where_clause} ORDER BY seq", params, fetch="all"
        )
        return [dict(row['data']) for row in rows]

    def count(self, table: str) -> int:
        """Count records in table"""
        self.ensure_table(table)
        return self._execute(f"SELECT COUNT(*) as count FROM {table}", fetch="one")['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        self.ensure_table(table)
        self._execute(f"DELETE FROM {table}")

    def _ensure_sequences(self) -> None:
        if SEQUENCES_TABLE in self._tables:
            return
        self._execute(f"""
            CREATE TABLE IF NOT EXISTS {SEQUENCES_TABLE} (
                name TEXT PRIMARY KEY,
                value BIGINT NOT NULL
            )
        """)
        self._tables.add(SEQUENCES_TABLE)

    def next_id(self, sequence: str) -> int:
        """Advance a persistent counter stored in the sequences table"""
        with self._lock:
            self._ensure_sequences()
            row = self._execute(f"""
                INSERT INTO {SEQUENCES_TABLE} (name, value) VALUES (%s, 1)
                ON CONFLICT (name) DO UPDATE SET value = {SEQUENCES_TABLE}.value + 1
                RETURNING value
            """, (sequence,), fetch="one")
            return int(row['value'])

    def create_unique_index(self, table: str, field: str) -> None:
        """Create a unique expression index over a JSONB field"""
        self.ensure_table(table)
        self._execute(f"""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_{table}_{field}
            ON {table} ((data ->> '{field}'))
        """)

    def drop_unique_index(self, table: str, field: str) -> None:
        self._execute(f"DROP INDEX IF EXISTS uq_{table}_{field}")

    def _begin(self) -> None:
        # psycopg2 opens the transaction implicitly on the first statement
        pass

    def _commit(self) -> None:
        self._connection.commit()

    def _rollback(self) -> None:
        self._connection.rollback()
        self._tables.clear()

    def close(self) -> None:
        """Close PostgreSQL connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a database URL.

    Supported forms:
        memory://                       in-process, non durable
        sqlite:///relative/or/abs.db    SQLite file (sqlite:///:memory: also works)
        postgresql://user:pw@host/db    PostgreSQL via psycopg2
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:")
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url)
    raise ValueError(f"Unsupported database URL: {database_url}")
