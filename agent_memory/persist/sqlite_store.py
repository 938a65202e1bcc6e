"""
SQLite-backed record store for sessions and memory records.

Schema:
- sessions: id, user_id, created_at, last_accessed_at
- records: id, session_id, content, created_at, node_id (nullable),
  vector (nullable float32 BLOB, used to rebuild the index on restart)

Backend errors surface as PersistenceError; the memory service never
interprets them.
"""

import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from agent_memory.errors import NotFound, PersistenceError
from agent_memory.memory.schemas import MemoryRecord, Session

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    created_at REAL NOT NULL,
    last_accessed_at REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS records (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    content TEXT NOT NULL,
    created_at REAL NOT NULL,
    node_id INTEGER,
    vector BLOB
);
CREATE INDEX IF NOT EXISTS idx_records_session ON records(session_id, created_at);
CREATE INDEX IF NOT EXISTS idx_records_node ON records(node_id);
"""


def _vector_to_blob(vector: Optional[Sequence[float]]) -> Optional[bytes]:
    if vector is None:
        return None
    return np.asarray(vector, dtype=np.float32).tobytes()


def _blob_to_vector(blob: Optional[bytes]) -> Optional[List[float]]:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float32).tolist()


class SqliteRecordStore:
    """
    File-backed SQLite record store.

    Thread-safe with WAL mode; a single connection is shared and
    serialized through a lock.
    """

    def __init__(self, db_path: Union[str, Path]):
        """
        Initialize the store at the given path.

        Args:
            db_path: Path to SQLite database file (":memory:" for tests)
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,  # Allow multi-threaded access
                timeout=10.0,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.executescript(_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to open record store at {self.db_path}: {e}") from e

        logger.info("Opened SQLite record store at %s", self.db_path)

    def _execute(self, sql: str, params: Sequence = ()) -> sqlite3.Cursor:
        try:
            with self._conn:
                return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite error: {e}") from e

    def _query(self, sql: str, params: Sequence = ()) -> List[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite error: {e}") from e

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> MemoryRecord:
        return MemoryRecord(
            id=row["id"],
            session_id=row["session_id"],
            content=row["content"],
            created_at=row["created_at"],
            node_id=row["node_id"],
            vector=_blob_to_vector(row["vector"]),
        )

    # Sessions -----------------------------------------------------------

    def create_session(self, session: Session) -> str:
        with self._lock:
            self._execute(
                "INSERT INTO sessions (id, user_id, created_at, last_accessed_at) VALUES (?, ?, ?, ?)",
                (session.id, session.user_id, session.created_at, session.last_accessed_at),
            )
        return session.id

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            rows = self._query("SELECT * FROM sessions WHERE id = ?", (session_id,))
            if not rows:
                raise NotFound("session", session_id)
            record_rows = self._query(
                "SELECT id FROM records WHERE session_id = ? ORDER BY created_at, rowid",
                (session_id,),
            )
        row = rows[0]
        return Session(
            id=row["id"],
            user_id=row["user_id"],
            created_at=row["created_at"],
            last_accessed_at=row["last_accessed_at"],
            record_ids=[r["id"] for r in record_rows],
        )

    def touch_session(self, session_id: str) -> None:
        with self._lock:
            cursor = self._execute(
                "UPDATE sessions SET last_accessed_at = ? WHERE id = ?",
                (time.time(), session_id),
            )
            if cursor.rowcount == 0:
                raise NotFound("session", session_id)

    def delete_session(self, session_id: str) -> List[MemoryRecord]:
        with self._lock:
            records = self.list_records(session_id)
            self._execute("DELETE FROM records WHERE session_id = ?", (session_id,))
            self._execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        return records

    # Records ------------------------------------------------------------

    def put(self, record: MemoryRecord) -> str:
        with self._lock:
            if not self._query("SELECT 1 FROM sessions WHERE id = ?", (record.session_id,)):
                raise NotFound("session", record.session_id)
            try:
                with self._conn:
                    self._conn.execute(
                        """INSERT OR REPLACE INTO records
                           (id, session_id, content, created_at, node_id, vector)
                           VALUES (?, ?, ?, ?, ?, ?)""",
                        (
                            record.id,
                            record.session_id,
                            record.content,
                            record.created_at,
                            record.node_id,
                            _vector_to_blob(record.vector),
                        ),
                    )
                    self._conn.execute(
                        "UPDATE sessions SET last_accessed_at = ? WHERE id = ?",
                        (time.time(), record.session_id),
                    )
            except sqlite3.Error as e:
                raise PersistenceError(f"Failed to store record {record.id}: {e}") from e
        return record.id

    def get(self, record_id: str) -> MemoryRecord:
        with self._lock:
            rows = self._query("SELECT * FROM records WHERE id = ?", (record_id,))
        if not rows:
            raise NotFound("record", record_id)
        return self._row_to_record(rows[0])

    def delete(self, record_id: str) -> MemoryRecord:
        with self._lock:
            record = self.get(record_id)
            self._execute("DELETE FROM records WHERE id = ?", (record_id,))
        return record

    def link_vector(self, record_id: str, node_id: Optional[int],
                    vector: Optional[Sequence[float]] = None) -> None:
        with self._lock:
            if vector is None:
                cursor = self._execute(
                    "UPDATE records SET node_id = ? WHERE id = ?",
                    (node_id, record_id),
                )
            else:
                cursor = self._execute(
                    "UPDATE records SET node_id = ?, vector = ? WHERE id = ?",
                    (node_id, _vector_to_blob(vector), record_id),
                )
            if cursor.rowcount == 0:
                raise NotFound("record", record_id)

    def resolve_many(self, node_ids: Sequence[int]) -> List[MemoryRecord]:
        if not node_ids:
            return []
        placeholders = ", ".join("?" * len(node_ids))
        with self._lock:
            rows = self._query(
                f"SELECT * FROM records WHERE node_id IN ({placeholders})",
                [int(n) for n in node_ids],
            )
        by_node = {row["node_id"]: self._row_to_record(row) for row in rows}
        return [by_node[n] for n in node_ids if n in by_node]

    def list_records(self, session_id: str) -> List[MemoryRecord]:
        with self._lock:
            if not self._query("SELECT 1 FROM sessions WHERE id = ?", (session_id,)):
                raise NotFound("session", session_id)
            rows = self._query(
                "SELECT * FROM records WHERE session_id = ? ORDER BY created_at, rowid",
                (session_id,),
            )
        return [self._row_to_record(row) for row in rows]

    def list_sessions(self, user_id: str) -> List[Session]:
        with self._lock:
            rows = self._query(
                "SELECT id FROM sessions WHERE user_id = ? ORDER BY created_at, rowid",
                (user_id,),
            )
            return [self.get_session(row["id"]) for row in rows]

    def list_user_records(self, user_id: str, session_id: Optional[str] = None) -> List[MemoryRecord]:
        sql = """SELECT r.* FROM records r JOIN sessions s ON r.session_id = s.id
                 WHERE s.user_id = ?"""
        params: List = [user_id]
        if session_id is not None:
            sql += " AND r.session_id = ?"
            params.append(session_id)
        with self._lock:
            rows = self._query(sql + " ORDER BY r.created_at, r.rowid", params)
        return [self._row_to_record(row) for row in rows]

    def update_content(self, record_id: str, content: str) -> MemoryRecord:
        with self._lock:
            cursor = self._execute("UPDATE records SET content = ? WHERE id = ?", (content, record_id))
            if cursor.rowcount == 0:
                raise NotFound("record", record_id)
            return self.get(record_id)

    def iter_vectors(self) -> Iterator[Tuple[str, List[float]]]:
        with self._lock:
            rows = self._query(
                "SELECT id, vector FROM records WHERE vector IS NOT NULL ORDER BY created_at, rowid"
            )
        for row in rows:
            yield row["id"], _blob_to_vector(row["vector"])

    def __len__(self) -> int:
        with self._lock:
            return self._query("SELECT COUNT(*) FROM records")[0][0]

    def vacuum(self) -> None:
        """
        Reclaim space and optimize database.

        Should be called periodically after large deletions.
        """
        with self._lock:
            try:
                self._conn.execute("VACUUM")
            except sqlite3.Error as e:
                raise PersistenceError(f"VACUUM failed: {e}") from e

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
