"""
Record store boundary for memory records and sessions.

The memory service only talks to the RecordStore protocol; backends are
the in-process InMemoryRecordStore below and the SQLite store in
agent_memory.persist.sqlite_store.
"""

import threading
import time
from typing import Dict, Iterator, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from agent_memory.errors import NotFound
from .schemas import MemoryRecord, Session


@runtime_checkable
class RecordStore(Protocol):
    """Persistence operations the memory service relies on."""

    def create_session(self, session: Session) -> str:
        """Persist a new session; returns its id."""

    def get_session(self, session_id: str) -> Session:
        """Session with its chronological record ids; raises NotFound."""

    def touch_session(self, session_id: str) -> None:
        """Update last_accessed_at."""

    def delete_session(self, session_id: str) -> List[MemoryRecord]:
        """Delete a session and its records; returns the deleted records."""

    def put(self, record: MemoryRecord) -> str:
        """Persist a record under an existing session; returns its id."""

    def get(self, record_id: str) -> MemoryRecord:
        """Fetch a record; raises NotFound."""

    def delete(self, record_id: str) -> MemoryRecord:
        """Delete a record; returns it. Raises NotFound."""

    def link_vector(self, record_id: str, node_id: Optional[int],
                    vector: Optional[Sequence[float]] = None) -> None:
        """Attach (or clear) the index node of a record, optionally storing its vector."""

    def resolve_many(self, node_ids: Sequence[int]) -> List[MemoryRecord]:
        """Records for node ids in input order, skipping unknown nodes."""

    def list_records(self, session_id: str) -> List[MemoryRecord]:
        """Records of a session in insertion order."""

    def list_sessions(self, user_id: str) -> List[Session]:
        """Sessions of a user, oldest first."""

    def list_user_records(self, user_id: str, session_id: Optional[str] = None) -> List[MemoryRecord]:
        """Records across a user's sessions (optionally one of them), oldest first."""

    def update_content(self, record_id: str, content: str) -> MemoryRecord:
        """Replace a record's content; returns the updated record. Raises NotFound."""

    def iter_vectors(self) -> Iterator[Tuple[str, List[float]]]:
        """(record_id, vector) for every record with a stored vector."""


class InMemoryRecordStore:
    """
    Dict-backed record store.

    Useful for tests and single-process agents; all operations are
    guarded by one re-entrant lock.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._records: Dict[str, MemoryRecord] = {}
        self._by_node: Dict[int, str] = {}
        self._lock = threading.RLock()

    # Sessions -----------------------------------------------------------

    def create_session(self, session: Session) -> str:
        with self._lock:
            self._sessions[session.id] = session.model_copy(deep=True)
            return session.id

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFound("session", session_id)
            return session.model_copy(deep=True)

    def touch_session(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFound("session", session_id)
            session.touch()

    def delete_session(self, session_id: str) -> List[MemoryRecord]:
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                raise NotFound("session", session_id)
            return [self.delete(record_id) for record_id in list(session.record_ids)]

    # Records ------------------------------------------------------------

    def put(self, record: MemoryRecord) -> str:
        with self._lock:
            session = self._sessions.get(record.session_id)
            if session is None:
                raise NotFound("session", record.session_id)
            self._records[record.id] = record.model_copy(deep=True)
            if record.id not in session.record_ids:
                session.record_ids.append(record.id)
            if record.node_id is not None:
                self._by_node[record.node_id] = record.id
            session.last_accessed_at = time.time()
            return record.id

    def get(self, record_id: str) -> MemoryRecord:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise NotFound("record", record_id)
            return record.model_copy(deep=True)

    def delete(self, record_id: str) -> MemoryRecord:
        with self._lock:
            record = self._records.pop(record_id, None)
            if record is None:
                raise NotFound("record", record_id)
            if self._by_node.get(record.node_id) == record_id:
                del self._by_node[record.node_id]
            session = self._sessions.get(record.session_id)
            if session is not None and record_id in session.record_ids:
                session.record_ids.remove(record_id)
            return record

    def link_vector(self, record_id: str, node_id: Optional[int],
                    vector: Optional[Sequence[float]] = None) -> None:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise NotFound("record", record_id)
            # Node ids are reassigned on rebuild; only drop our own mapping
            if self._by_node.get(record.node_id) == record_id:
                del self._by_node[record.node_id]
            record.node_id = node_id
            if node_id is not None:
                self._by_node[node_id] = record_id
            if vector is not None:
                record.vector = [float(x) for x in vector]

    def resolve_many(self, node_ids: Sequence[int]) -> List[MemoryRecord]:
        with self._lock:
            resolved = []
            for node_id in node_ids:
                record_id = self._by_node.get(node_id)
                if record_id is None:
                    continue
                resolved.append(self._records[record_id].model_copy(deep=True))
            return resolved

    def list_records(self, session_id: str) -> List[MemoryRecord]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFound("session", session_id)
            return [self._records[rid].model_copy(deep=True) for rid in session.record_ids]

    def list_sessions(self, user_id: str) -> List[Session]:
        with self._lock:
            sessions = [s for s in self._sessions.values() if s.user_id == user_id]
            return [s.model_copy(deep=True) for s in sorted(sessions, key=lambda s: s.created_at)]

    def list_user_records(self, user_id: str, session_id: Optional[str] = None) -> List[MemoryRecord]:
        with self._lock:
            records = [
                self._records[rid].model_copy(deep=True)
                for session in self.list_sessions(user_id)
                if session_id is None or session.id == session_id
                for rid in session.record_ids
            ]
        return sorted(records, key=lambda r: r.created_at)

    def update_content(self, record_id: str, content: str) -> MemoryRecord:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise NotFound("record", record_id)
            record.content = content
            return record.model_copy(deep=True)

    def iter_vectors(self) -> Iterator[Tuple[str, List[float]]]:
        with self._lock:
            snapshot = [
                (record.id, list(record.vector))
                for record in self._records.values()
                if record.vector is not None
            ]
        return iter(snapshot)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
