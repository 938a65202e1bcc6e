"""
Embedding boundary - wrap an external embed function with a cache.

The engine never computes embeddings itself; it validates that whatever
the external function returns has the index dimensionality.
"""

import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np

from agent_memory.errors import DimensionMismatch, PersistenceError
from .hashing import stable_hash

EmbedFn = Callable[[str], Sequence[float]]


class EmbeddingCache:
    """
    SQLite table of content hash -> float32 vector bytes.

    Pass ":memory:" (the default) for a process-local cache.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10.0)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS embeddings (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL,
                    ts INTEGER NOT NULL
                )
            """)
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to open embedding cache at {self.db_path}: {e}") from e

    def get(self, key: str) -> Optional[np.ndarray]:
        with self._lock:
            row = self._conn.execute("SELECT value FROM embeddings WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return np.frombuffer(row[0], dtype=np.float32)

    def set(self, key: str, vector: np.ndarray) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO embeddings (key, value, ts) VALUES (?, ?, ?)",
                (key, np.asarray(vector, dtype=np.float32).tobytes(), int(time.time())),
            )
            self._conn.commit()

    def __len__(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM embeddings").fetchone()[0]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class CachingEmbedder:
    """
    Wrapper for an external embed function that caches and validates vectors.

    Key = blake2b(text + model_name)
    Value = float32 vector bytes

    Usage:
        >>> embedder = CachingEmbedder(model.encode, dimensionality=384, model_name="all-MiniLM-L6-v2")
        >>> vector = embedder.embed("hello")
        >>> # Second call hits cache
        >>> vector2 = embedder.embed("hello")
    """

    def __init__(
        self,
        embed_fn: EmbedFn,
        dimensionality: int,
        model_name: str = "external",
        cache: Optional[EmbeddingCache] = None,
    ):
        """
        Initialize caching embedder.

        Args:
            embed_fn: External function text -> vector
            dimensionality: Expected vector length
            model_name: Model identifier for cache key
            cache: Backing cache (in-memory SQLite when None)
        """
        self.embed_fn = embed_fn
        self.dimensionality = dimensionality
        self.model_name = model_name
        self.cache = cache if cache is not None else EmbeddingCache()

        # Track cache hits/misses
        self.hits = 0
        self.misses = 0

    def _cache_key(self, text: str) -> str:
        return stable_hash({"text": text, "model": self.model_name})

    def embed(self, text: str) -> np.ndarray:
        """
        Embed a single text, using the cache when possible.

        Raises:
            DimensionMismatch: If the external function returns a wrong-length vector
        """
        key = self._cache_key(text)
        cached = self.cache.get(key)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        vector = np.asarray(self.embed_fn(text), dtype=np.float32).reshape(-1)
        if vector.shape[0] != self.dimensionality:
            raise DimensionMismatch(self.dimensionality, vector.shape[0])
        self.cache.set(key, vector)
        return vector

    __call__ = embed

    def embed_many(self, texts: List[str]) -> np.ndarray:
        """Embed several texts; returns an array of shape (len(texts), D)."""
        if not texts:
            return np.zeros((0, self.dimensionality), dtype=np.float32)
        return np.stack([self.embed(text) for text in texts])

    def get_stats(self) -> Dict[str, float]:
        """Get cache statistics."""
        total = self.hits + self.misses
        hit_rate = self.hits / total if total > 0 else 0.0

        return {
            "hits": self.hits,
            "misses": self.misses,
            "total": total,
            "hit_rate": hit_rate,
        }

    def reset_stats(self) -> None:
        """Reset cache statistics."""
        self.hits = 0
        self.misses = 0
