"""
Memory subsystem for long-term conversation recall.

Provides:
- Memory record and session models
- Record store boundary (in-memory backend here, SQLite in persist)
- Memory service orchestrating store + small-world index
- Retry wrapper for persistence failures
"""

from .schemas import MemoryRecord, RecallHit, Session
from .store import InMemoryRecordStore, RecordStore
from .service import MemoryService, create_memory_service
from .resilience import call_with_retry, retry_policy

__all__ = [
    "MemoryRecord",
    "RecallHit",
    "Session",
    "RecordStore",
    "InMemoryRecordStore",
    "MemoryService",
    "create_memory_service",
    "call_with_retry",
    "retry_policy",
]
