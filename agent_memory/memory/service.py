"""
Memory service - orchestrates the record store and the small-world index.

remember: store record -> insert vector -> link
recall:   search index -> resolve records -> filter by session or user -> top-k
forget:   delete record -> tombstone node
"""

import logging
import threading
import time
from typing import Callable, List, Optional, Sequence

import numpy as np

from agent_memory.config.settings import RecallConfig, Settings
from agent_memory.errors import AgentMemoryError, ConfigurationError, DimensionMismatch, PartialFailure
from agent_memory.index.hnsw import SmallWorldIndex
from agent_memory.telemetry import log_step
from .schemas import MemoryRecord, RecallHit, Session
from .store import InMemoryRecordStore, RecordStore

logger = logging.getLogger(__name__)


class MemoryService:
    """
    Long-term memory for conversational agents.

    The index only tracks vectors; record semantics live in the store.
    Store failures propagate unchanged, retries belong to the caller
    (see agent_memory.memory.resilience).
    """

    def __init__(
        self,
        store: RecordStore,
        index: SmallWorldIndex,
        recall_config: Optional[RecallConfig] = None,
        embedder: Optional[Callable[[str], Sequence[float]]] = None,
    ):
        """
        Initialize memory service.

        Args:
            store: Record store backend
            index: Small-world index owned by this service
            recall_config: Over-fetch and default k
            embedder: Optional external text -> vector function
        """
        self.store = store
        self.index = index
        self.recall_config = recall_config or RecallConfig()
        self.embedder = embedder
        self._rebuild_lock = threading.Lock()
        self._counter_lock = threading.Lock()
        self._counters = {"inserts": 0, "searches": 0, "updates": 0, "forgets": 0}

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_session(self, user_id: str, session_id: Optional[str] = None) -> Session:
        """Create and persist a new conversation session."""
        session = Session(user_id=user_id) if session_id is None else Session(id=session_id, user_id=user_id)
        self.store.create_session(session)
        logger.info("Started session %s for user %s", session.id, user_id)
        return session

    def get_session(self, session_id: str) -> Session:
        return self.store.get_session(session_id)

    def list_records(self, session_id: str) -> List[MemoryRecord]:
        return self.store.list_records(session_id)

    def list_user_records(self, user_id: str, session_id: Optional[str] = None) -> List[MemoryRecord]:
        """A user's records across all of their sessions, oldest first."""
        return self.store.list_user_records(user_id, session_id=session_id)

    def forget_session(self, session_id: str) -> int:
        """
        Delete a session with all of its records.

        Returns:
            Number of records deleted
        """
        records = self.store.delete_session(session_id)
        for record in records:
            self._tombstone(record)
        logger.info("Forgot session %s (%d records)", session_id, len(records))
        return len(records)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def remember(self, session_id: str, content: str, vector: Sequence[float]) -> str:
        """
        Persist content and make it semantically recallable.

        Args:
            session_id: Owning session
            content: Raw content
            vector: Embedding of the content

        Returns:
            Record ID

        Raises:
            PartialFailure: Record stored but the vector was rejected
            NotFound: Unknown session
            PersistenceError: Store failure (unchanged)
        """
        start = time.perf_counter()
        arr = np.asarray(vector, dtype=np.float32)
        valid = arr.ndim == 1 and arr.shape[0] == self.index.dimensionality

        record = MemoryRecord(
            session_id=session_id,
            content=content,
            vector=arr.tolist() if valid else None,
        )
        record_id = self.store.put(record)

        try:
            node_id = self.index.insert(arr)
        except DimensionMismatch as e:
            logger.warning("Record %s stored as pending: %s", record_id, e)
            log_step("remember", (time.perf_counter() - start) * 1000,
                     {"record_id": record_id, "pending": True})
            raise PartialFailure(record_id, str(e), cause=e) from e

        try:
            self.store.link_vector(record_id, node_id)
        except Exception:
            # No orphan node, and no stored vector for a rebuild to index twice
            self.index.remove(node_id)
            self._discard(record_id)
            raise
        self._count("inserts")

        log_step("remember", (time.perf_counter() - start) * 1000,
                 {"record_id": record_id, "node_id": node_id, "session_id": session_id})
        return record_id

    def recall(
        self,
        query_vector: Sequence[float],
        k: Optional[int] = None,
        session_id: Optional[str] = None,
        ef: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> List[RecallHit]:
        """
        Retrieve records closest to a query vector.

        Args:
            query_vector: Query embedding
            k: Maximum results (defaults to the configured default_k)
            session_id: Restrict results to one session
            ef: Query-time candidate list size
            user_id: Restrict results to the sessions of one user

        Returns:
            Up to k hits in ascending distance order

        Raises:
            DimensionMismatch: If the query length differs from the index
            NotFound: Unknown session
        """
        start = time.perf_counter()
        k = self.recall_config.default_k if k is None else k
        if k <= 0:
            return []

        if session_id is not None:
            self.store.get_session(session_id)
        allowed = None
        if user_id is not None:
            allowed = {session.id for session in self.store.list_sessions(user_id)}

        fetch = max(k * self.recall_config.over_fetch_factor, k)
        hits = self.index.search(query_vector, fetch, ef=ef)
        self._count("searches")

        distances = {hit.node_id: hit.distance for hit in hits}
        records = self.store.resolve_many([hit.node_id for hit in hits]) if hits else []

        results = []
        for record in records:
            if session_id is not None and record.session_id != session_id:
                continue
            if allowed is not None and record.session_id not in allowed:
                continue
            results.append(RecallHit(record=record, distance=distances[record.node_id]))
            if len(results) >= k:
                break

        if session_id is not None:
            self.store.touch_session(session_id)

        log_step("recall", (time.perf_counter() - start) * 1000,
                 {"k": k, "candidates": len(hits), "returned": len(results),
                  "session_id": session_id, "user_id": user_id})
        return results

    def forget(self, record_id: str) -> MemoryRecord:
        """
        Delete a record and tombstone its node.

        Raises:
            NotFound: Unknown record
        """
        start = time.perf_counter()
        record = self.store.delete(record_id)
        self._tombstone(record)
        self._count("forgets")
        log_step("forget", (time.perf_counter() - start) * 1000,
                 {"record_id": record_id, "node_id": record.node_id})
        return record

    def get_record(self, record_id: str) -> MemoryRecord:
        return self.store.get(record_id)

    def update_record(self, record_id: str, content: str,
                      vector: Optional[Sequence[float]] = None) -> MemoryRecord:
        """
        Replace a record's content, and its vector when one is given.

        A new vector is indexed as a fresh node and the old node is
        tombstoned; the record id never changes.

        Raises:
            NotFound: Unknown record
            DimensionMismatch: New vector has the wrong length (record untouched)
        """
        record = self.store.get(record_id)
        node_id = self.index.insert(vector) if vector is not None else None

        try:
            self.store.update_content(record_id, content)
            if node_id is not None:
                self.store.link_vector(record_id, node_id, vector=np.asarray(vector, dtype=np.float32).tolist())
        except Exception:
            if node_id is not None:
                self.index.remove(node_id)
            raise

        if node_id is not None:
            self._tombstone(record)
            self._count("inserts")
        self._count("updates")
        logger.info("Updated record %s", record_id)
        return self.store.get(record_id)

    def index_pending(self, record_id: str, vector: Sequence[float]) -> int:
        """
        Link a pending record once a valid vector is available.

        Returns:
            Node ID of the inserted vector

        Raises:
            NotFound: Unknown record
            DimensionMismatch: Vector still has the wrong length
        """
        record = self.store.get(record_id)
        if not record.pending:
            return record.node_id

        node_id = self.index.insert(vector)
        try:
            self.store.link_vector(record_id, node_id, vector=np.asarray(vector, dtype=np.float32).tolist())
        except Exception:
            self.index.remove(node_id)
            raise
        self._count("inserts")
        logger.info("Indexed pending record %s as node %d", record_id, node_id)
        return node_id

    # ------------------------------------------------------------------
    # Text helpers (require an embedder)
    # ------------------------------------------------------------------

    def remember_text(self, session_id: str, content: str) -> str:
        return self.remember(session_id, content, self._embed(content))

    def recall_text(self, query: str, k: Optional[int] = None, session_id: Optional[str] = None,
                    user_id: Optional[str] = None) -> List[RecallHit]:
        return self.recall(self._embed(query), k=k, session_id=session_id, user_id=user_id)

    def _embed(self, text: str) -> Sequence[float]:
        if self.embedder is None:
            raise ConfigurationError("embedder", None, "No embedder configured for text operations")
        return self.embedder(text)

    # ------------------------------------------------------------------
    # Index lifecycle
    # ------------------------------------------------------------------

    def rebuild_index(self) -> int:
        """
        Replace the index with a fresh one built from stored vectors.

        Returns:
            Number of records indexed
        """
        with self._rebuild_lock:
            old = self.index
            fresh = SmallWorldIndex.from_config(old.config, metric=old.metric)
            indexed = 0
            for record_id, vector in self.store.iter_vectors():
                try:
                    node_id = fresh.insert(vector)
                except DimensionMismatch:
                    logger.warning("Skipping record %s: stored vector has wrong dimension", record_id)
                    self.store.link_vector(record_id, None)
                    continue
                self.store.link_vector(record_id, node_id)
                indexed += 1
            self.index = fresh
        logger.info("Rebuilt index with %d records", indexed)
        return indexed

    def stats(self) -> dict:
        with self._counter_lock:
            operations = dict(self._counters)
        return {
            "index": self.index.stats(),
            "operations": operations,
            "over_fetch_factor": self.recall_config.over_fetch_factor,
        }

    def _count(self, operation: str) -> None:
        with self._counter_lock:
            self._counters[operation] += 1

    def _discard(self, record_id: str) -> None:
        try:
            self.store.delete(record_id)
        except AgentMemoryError:
            logger.exception("Could not discard record %s after a failed link", record_id)

    def _tombstone(self, record: MemoryRecord) -> None:
        if record.node_id is not None and self.index.contains(record.node_id):
            self.index.remove(record.node_id)


def create_memory_service(
    settings: Optional[Settings] = None,
    store: Optional[RecordStore] = None,
    embedder: Optional[Callable[[str], Sequence[float]]] = None,
    rebuild: bool = True,
) -> MemoryService:
    """
    Build a MemoryService from settings.

    Args:
        settings: Settings (defaults when None)
        store: Explicit store; otherwise chosen by settings.storage.backend
        embedder: Optional external embed function
        rebuild: Rebuild the index from stored vectors on startup

    Returns:
        Ready MemoryService
    """
    settings = settings or Settings()

    if store is None:
        if settings.storage.backend == "sqlite":
            from agent_memory.persist.sqlite_store import SqliteRecordStore
            store = SqliteRecordStore(settings.storage.db_path)
        else:
            store = InMemoryRecordStore()

    index = SmallWorldIndex.from_config(settings.index)
    service = MemoryService(store=store, index=index, recall_config=settings.recall, embedder=embedder)

    if rebuild:
        service.rebuild_index()

    return service
