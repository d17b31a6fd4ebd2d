"""
Queue Store
Persistence boundary for queue entries

Two implementations share one interface:
- InMemoryQueueStore: process-local, used by tests and single-process runs
- PostgresQueueStore: durable, backed by db_utils (psycopg)
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from psycopg.types.json import Jsonb

import db_utils
from queue_models import QueueEntry

logger = logging.getLogger(__name__)


class QueueStore(ABC):
    """Read and write queue entries; single-entry writes are atomic"""

    @abstractmethod
    def list_entries(self) -> List[QueueEntry]:
        """All entries in creation order"""

    @abstractmethod
    def get(self, entry_id: str) -> Optional[QueueEntry]:
        """One entry, or None"""

    @abstractmethod
    def add(self, entry: QueueEntry) -> QueueEntry:
        """Insert a new entry"""

    @abstractmethod
    def save(self, entry: QueueEntry) -> None:
        """Replace the stored state of an existing entry"""

    @abstractmethod
    def delete(self, entry_id: str) -> bool:
        """Remove an entry; False when it did not exist"""

    def ping(self) -> bool:
        """Whether the store is reachable"""
        return True


class InMemoryQueueStore(QueueStore):
    """Thread-safe dict-backed store; hands out copies, never live objects"""

    def __init__(self, entries: List[QueueEntry] = None):
        self._entries: Dict[str, QueueEntry] = {}
        self._lock = threading.Lock()
        for entry in entries or []:
            self._entries[entry.id] = copy.deepcopy(entry)

    def list_entries(self) -> List[QueueEntry]:
        with self._lock:
            entries = [copy.deepcopy(e) for e in self._entries.values()]
        return sorted(entries, key=lambda e: (e.created_at, e.id))

    def get(self, entry_id: str) -> Optional[QueueEntry]:
        with self._lock:
            entry = self._entries.get(entry_id)
            return copy.deepcopy(entry) if entry else None

    def add(self, entry: QueueEntry) -> QueueEntry:
        with self._lock:
            if entry.id in self._entries:
                raise ValueError(f"Duplicate queue entry id: {entry.id}")
            self._entries[entry.id] = copy.deepcopy(entry)
        return entry

    def save(self, entry: QueueEntry) -> None:
        with self._lock:
            if entry.id not in self._entries:
                raise KeyError(entry.id)
            self._entries[entry.id] = copy.deepcopy(entry)

    def delete(self, entry_id: str) -> bool:
        with self._lock:
            return self._entries.pop(entry_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS queue_entries (
    id TEXT PRIMARY KEY,
    artist TEXT NOT NULL DEFAULT '',
    title TEXT NOT NULL DEFAULT '',
    catalog_text TEXT NOT NULL DEFAULT '',
    created_at DOUBLE PRECISION NOT NULL,
    state TEXT NOT NULL DEFAULT 'pending',
    match JSONB,
    last_attempt_at DOUBLE PRECISION,
    next_attempt_at DOUBLE PRECISION,
    attempt_count INTEGER NOT NULL DEFAULT 0,
    exhausted_count INTEGER NOT NULL DEFAULT 0,
    last_error_code TEXT,
    last_error TEXT,
    updated_at DOUBLE PRECISION,
    priority INTEGER NOT NULL DEFAULT 0,
    bumped_at DOUBLE PRECISION
);
CREATE INDEX IF NOT EXISTS idx_queue_entries_state ON queue_entries (state, next_attempt_at);
"""

COLUMNS = (
    'id', 'artist', 'title', 'catalog_text', 'created_at', 'state', 'match',
    'last_attempt_at', 'next_attempt_at', 'attempt_count', 'exhausted_count',
    'last_error_code', 'last_error', 'updated_at', 'priority', 'bumped_at',
)


class PostgresQueueStore(QueueStore):
    """Queue entries in the queue_entries table"""

    def ensure_schema(self) -> None:
        db_utils.execute_update(SCHEMA_SQL)
        logger.info("queue_entries schema ensured")

    def list_entries(self) -> List[QueueEntry]:
        query = f"SELECT {', '.join(COLUMNS)} FROM queue_entries ORDER BY created_at, id"
        rows = db_utils.execute_query(query) or []
        return [self._row_to_entry(row) for row in rows]

    def get(self, entry_id: str) -> Optional[QueueEntry]:
        query = f"SELECT {', '.join(COLUMNS)} FROM queue_entries WHERE id = %s"
        row = db_utils.execute_query(query, (entry_id,), fetch_one=True)
        return self._row_to_entry(row) if row else None

    def add(self, entry: QueueEntry) -> QueueEntry:
        placeholders = ', '.join(['%s'] * len(COLUMNS))
        query = f"INSERT INTO queue_entries ({', '.join(COLUMNS)}) VALUES ({placeholders})"
        db_utils.execute_update(query, self._entry_params(entry))
        return entry

    def save(self, entry: QueueEntry) -> None:
        assignments = ', '.join(f"{column} = %s" for column in COLUMNS[1:])
        query = f"UPDATE queue_entries SET {assignments} WHERE id = %s"
        params = self._entry_params(entry)[1:] + (entry.id,)
        affected = db_utils.execute_update(query, params)
        if not affected:
            raise KeyError(entry.id)

    def delete(self, entry_id: str) -> bool:
        affected = db_utils.execute_update("DELETE FROM queue_entries WHERE id = %s", (entry_id,))
        return bool(affected)

    def ping(self) -> bool:
        try:
            db_utils.execute_query("SELECT 1 AS ok", fetch_one=True)
            return True
        except Exception as e:
            logger.error(f"Queue store ping failed: {e}")
            return False

    def _entry_params(self, entry: QueueEntry) -> tuple:
        return (
            entry.id,
            entry.artist,
            entry.title,
            entry.catalog_text,
            entry.created_at,
            entry.state.value,
            Jsonb(entry.match.to_dict()) if entry.match else None,
            entry.last_attempt_at,
            entry.next_attempt_at,
            entry.attempt_count,
            entry.exhausted_count,
            entry.last_error_code,
            entry.last_error,
            entry.updated_at,
            entry.priority,
            entry.bumped_at,
        )

    def _row_to_entry(self, row: dict) -> QueueEntry:
        return QueueEntry.from_dict(row)
