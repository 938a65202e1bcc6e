"""
agent_memory - long-term memory for conversational agents.

Durable session/record storage plus semantic recall through an
incrementally updatable HNSW index.
"""

from .errors import (
    AgentMemoryError,
    ConfigurationError,
    DimensionMismatch,
    NotFound,
    PartialFailure,
    PersistenceError,
)
from .config import IndexConfig, RecallConfig, Settings, load_settings
from .index import SearchHit, SmallWorldIndex, get_metric
from .memory import (
    InMemoryRecordStore,
    MemoryRecord,
    MemoryService,
    RecallHit,
    Session,
    call_with_retry,
    create_memory_service,
)
from .persist import CachingEmbedder, SqliteRecordStore

__version__ = "0.1.0"

__all__ = [
    "AgentMemoryError",
    "ConfigurationError",
    "DimensionMismatch",
    "NotFound",
    "PartialFailure",
    "PersistenceError",
    "IndexConfig",
    "RecallConfig",
    "Settings",
    "load_settings",
    "SearchHit",
    "SmallWorldIndex",
    "get_metric",
    "InMemoryRecordStore",
    "MemoryRecord",
    "MemoryService",
    "RecallHit",
    "Session",
    "call_with_retry",
    "create_memory_service",
    "CachingEmbedder",
    "SqliteRecordStore",
]
