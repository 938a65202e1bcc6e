"""Test configuration and fixtures."""

from pathlib import Path
from typing import Generator

import numpy as np
import pytest

from agent_memory.config.settings import RecallConfig
from agent_memory.index.hnsw import SmallWorldIndex
from agent_memory.memory.service import MemoryService
from agent_memory.memory.store import InMemoryRecordStore
from agent_memory.persist.sqlite_store import SqliteRecordStore


# Four 3-d vectors used by the recall scenarios
RECALL_VECTORS = [
    [0.1, 0.2, 0.3],
    [0.4, 0.5, 0.6],
    [0.7, 0.8, 0.9],
    [0.2, 0.3, 0.4],
]
RECALL_QUERY = [0.15, 0.25, 0.35]


@pytest.fixture
def recall_vectors():
    return [list(v) for v in RECALL_VECTORS]


@pytest.fixture
def recall_query():
    return list(RECALL_QUERY)


@pytest.fixture
def random_vectors():
    """200 seeded 16-d vectors."""
    rng = np.random.default_rng(42)
    return rng.random((200, 16)).astype("float32")


@pytest.fixture
def small_index() -> SmallWorldIndex:
    """3-d cosine index with exhaustive build/search parameters."""
    return SmallWorldIndex(dimensionality=3, metric="cosine", m=4, ef_construction=50, ef_search=50, seed=7)


@pytest.fixture
def sqlite_store(tmp_path: Path) -> Generator[SqliteRecordStore, None, None]:
    """Create a temporary SqliteRecordStore instance."""
    store = SqliteRecordStore(tmp_path / "memory.db")
    yield store
    store.close()


@pytest.fixture(params=["memory", "sqlite"])
def record_store(request, tmp_path: Path):
    """Each record store backend in turn."""
    if request.param == "memory":
        yield InMemoryRecordStore()
    else:
        store = SqliteRecordStore(tmp_path / "records.db")
        yield store
        store.close()


@pytest.fixture
def service(record_store) -> MemoryService:
    """3-d cosine memory service over each backend."""
    index = SmallWorldIndex(dimensionality=3, metric="cosine", m=4, ef_construction=50, ef_search=50, seed=7)
    return MemoryService(store=record_store, index=index, recall_config=RecallConfig(over_fetch_factor=3))
