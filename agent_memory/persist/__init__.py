"""
Persistence layer.

Provides:
- Stable hashing for content-addressable caching
- SQLite-backed session/record store
- Embedding cache wrapping an external embed function
"""

from .hashing import stable_hash
from .sqlite_store import SqliteRecordStore
from .embedding_cache import CachingEmbedder, EmbeddingCache

__all__ = [
    "stable_hash",
    "SqliteRecordStore",
    "CachingEmbedder",
    "EmbeddingCache",
]
