"""
Unit tests for agent_memory/memory/service.py

Tests remember/recall/forget orchestration over both record store backends.
"""
import pytest

from agent_memory.config.settings import IndexConfig, RecallConfig, RetryCfg, Settings
from agent_memory.errors import (
    ConfigurationError,
    DimensionMismatch,
    NotFound,
    PartialFailure,
    PersistenceError,
)
from agent_memory.index.hnsw import SmallWorldIndex
from agent_memory.memory.resilience import call_with_retry
from agent_memory.memory.service import MemoryService, create_memory_service
from agent_memory.memory.store import InMemoryRecordStore

NO_WAIT = RetryCfg(max_attempts=3, multiplier=0, wait_min=0, wait_max=0)


@pytest.fixture
def session(service):
    return service.start_session("user-1")


@pytest.fixture
def remembered(service, session, recall_vectors):
    """Record ids for contents a, b, c, d with the four recall vectors."""
    return [
        service.remember(session.id, content, vector)
        for content, vector in zip("abcd", recall_vectors)
    ]


# ============================================================================
# Sessions
# ============================================================================

def test_start_session(service):
    session = service.start_session("user-42")
    loaded = service.get_session(session.id)
    assert loaded.user_id == "user-42"
    assert loaded.record_ids == []


def test_start_session_with_explicit_id(service):
    session = service.start_session("user-42", session_id="sess_fixed")
    assert session.id == "sess_fixed"
    assert service.get_session("sess_fixed").user_id == "user-42"


def test_session_tracks_records(service, session, remembered):
    assert service.get_session(session.id).record_ids == remembered
    assert [r.content for r in service.list_records(session.id)] == ["a", "b", "c", "d"]


# ============================================================================
# remember / recall
# ============================================================================

def test_recall_scenario(service, session, remembered, recall_query):
    hits = service.recall(recall_query, k=2)

    assert len(hits) == 2
    assert {hit.record.content for hit in hits} == {"a", "d"}
    # Cosine ranks [0.2, 0.3, 0.4] first
    assert [hit.record.content for hit in hits] == ["d", "a"]
    assert hits[0].distance <= hits[1].distance


def test_recall_empty_index(service, recall_query):
    assert service.recall(recall_query, k=3) == []


def test_recall_non_positive_k(service, remembered, recall_query):
    assert service.recall(recall_query, k=0) == []


def test_recall_uses_default_k(record_store, recall_query):
    index = SmallWorldIndex(dimensionality=3, m=4, ef_construction=50, seed=7)
    service = MemoryService(record_store, index, recall_config=RecallConfig(default_k=2))
    session = service.start_session("u")
    for i in range(5):
        service.remember(session.id, f"m{i}", [0.1 * (i + 1), 0.2, 0.3])
    assert len(service.recall(recall_query)) == 2


def test_recall_dimension_mismatch(service, remembered):
    with pytest.raises(DimensionMismatch):
        service.recall([0.1, 0.2], k=1)


def test_recall_returns_all_when_k_exceeds_count(service, remembered, recall_query):
    hits = service.recall(recall_query, k=10)
    assert sorted(hit.record.id for hit in hits) == sorted(remembered)


def test_remember_unknown_session_leaves_index_untouched(service):
    with pytest.raises(NotFound):
        service.remember("sess_missing", "orphan", [0.1, 0.2, 0.3])
    assert service.index.count() == 0


def test_remember_wrong_dimension_is_partial_failure(service, session, recall_query):
    """Record is persisted but stays pending and unsearchable."""
    with pytest.raises(PartialFailure) as exc:
        service.remember(session.id, "half stored", [0.1, 0.2])

    record_id = exc.value.record_id
    record = service.get_record(record_id)
    assert record.content == "half stored"
    assert record.pending
    assert service.index.count() == 0
    assert service.recall(recall_query, k=5) == []
    assert isinstance(exc.value.cause, DimensionMismatch)


def test_index_pending_makes_record_recallable(service, session, recall_query):
    with pytest.raises(PartialFailure) as exc:
        service.remember(session.id, "late vector", [0.1, 0.2])
    record_id = exc.value.record_id

    node_id = service.index_pending(record_id, [0.15, 0.25, 0.35])
    assert service.get_record(record_id).node_id == node_id
    assert service.index_pending(record_id, [0.15, 0.25, 0.35]) == node_id
    assert service.index.count() == 1

    hits = service.recall(recall_query, k=1)
    assert hits[0].record.id == record_id


def test_index_pending_still_wrong_dimension(service, session):
    with pytest.raises(PartialFailure) as exc:
        service.remember(session.id, "x", [0.1])
    with pytest.raises(DimensionMismatch):
        service.index_pending(exc.value.record_id, [0.1, 0.2])
    assert service.get_record(exc.value.record_id).pending


def test_link_failure_tombstones_node(recall_query):
    """A node is never left searchable without its record."""

    class FailingLinkStore(InMemoryRecordStore):
        def link_vector(self, record_id, node_id, vector=None):
            raise PersistenceError("disk full")

    index = SmallWorldIndex(dimensionality=3, m=4, seed=7)
    service = MemoryService(FailingLinkStore(), index)
    session = service.start_session("u")

    with pytest.raises(PersistenceError):
        service.remember(session.id, "lost", [0.1, 0.2, 0.3])
    assert index.count() == 0
    assert service.recall(recall_query, k=5) == []
    assert service.list_records(session.id) == []


def test_retried_remember_after_link_failure_is_stored_once(recall_query):
    """A retry after a failed link leaves exactly one record, before and after a rebuild."""

    class FlakyLinkStore(InMemoryRecordStore):
        failures = 1

        def link_vector(self, record_id, node_id, vector=None):
            if self.failures:
                self.failures -= 1
                raise PersistenceError("database is locked")
            super().link_vector(record_id, node_id, vector=vector)

    store = FlakyLinkStore()
    service = MemoryService(store, SmallWorldIndex(dimensionality=3, m=4, seed=7))
    session = service.start_session("u")

    record_id = call_with_retry(service.remember, session.id, "likes tea", [0.1, 0.2, 0.3], policy=NO_WAIT)

    assert [r.id for r in service.list_records(session.id)] == [record_id]
    assert len(store) == 1
    service.rebuild_index()
    hits = service.recall(recall_query, k=5)
    assert [hit.record.id for hit in hits] == [record_id]


@pytest.mark.parametrize("vector", [[[0.1, 0.2, 0.3]], [[0.1], [0.2], [0.3]], 0.5])
def test_remember_rejects_non_flat_vectors(service, session, vector):
    with pytest.raises(PartialFailure) as exc:
        service.remember(session.id, "odd shape", vector)
    assert service.get_record(exc.value.record_id).pending
    assert service.index.count() == 0


# ============================================================================
# Session filtering
# ============================================================================

def test_recall_filters_by_session(service, recall_vectors, recall_query):
    first = service.start_session("u1")
    second = service.start_session("u2")
    for i, vector in enumerate(recall_vectors):
        service.remember(first.id, f"first-{i}", vector)
        service.remember(second.id, f"second-{i}", vector)

    hits = service.recall(recall_query, k=3, session_id=second.id)
    assert len(hits) == 3
    assert all(hit.record.session_id == second.id for hit in hits)


def test_session_filter_with_no_matches(service, remembered, recall_query):
    other = service.start_session("someone-else")
    assert service.recall(recall_query, k=3, session_id=other.id) == []


def test_recall_touches_session(service, session, remembered, recall_query):
    before = service.get_session(session.id).last_accessed_at
    service.recall(recall_query, k=1, session_id=session.id)
    assert service.get_session(session.id).last_accessed_at >= before


def test_recall_unknown_session_raises_whether_or_not_index_is_empty(service, recall_query, recall_vectors):
    with pytest.raises(NotFound):
        service.recall(recall_query, k=3, session_id="sess_missing")

    session = service.start_session("u")
    service.remember(session.id, "a", recall_vectors[0])
    with pytest.raises(NotFound):
        service.recall(recall_query, k=3, session_id="sess_missing")


def test_recall_filters_by_user(service, recall_vectors, recall_query):
    alice_1 = service.start_session("alice")
    alice_2 = service.start_session("alice")
    bob = service.start_session("bob")
    for i, vector in enumerate(recall_vectors):
        service.remember(bob.id, f"bob-{i}", vector)
    service.remember(alice_1.id, "alice-first", recall_vectors[0])
    service.remember(alice_2.id, "alice-second", recall_vectors[3])

    hits = service.recall(recall_query, k=4, user_id="alice")
    assert {hit.record.content for hit in hits} == {"alice-first", "alice-second"}
    assert service.recall(recall_query, k=4, user_id="nobody") == []
    assert service.recall(recall_query, k=4, user_id="alice", session_id=bob.id) == []


# ============================================================================
# forget
# ============================================================================

def test_forgotten_record_never_recalled(service, session, remembered, recall_query):
    """Even with k equal to the total count the forgotten record is absent."""
    forgotten = service.forget(remembered[3])
    assert forgotten.content == "d"

    hits = service.recall(recall_query, k=4)
    assert len(hits) == 3
    assert remembered[3] not in {hit.record.id for hit in hits}
    assert [hit.record.content for hit in service.recall(recall_query, k=2)] == ["a", "b"]
    assert service.index.count() == 3


def test_forget_twice_raises(service, remembered):
    service.forget(remembered[0])
    with pytest.raises(NotFound):
        service.forget(remembered[0])
    assert service.index.count() == 3


def test_forget_pending_record(service, session):
    with pytest.raises(PartialFailure) as exc:
        service.remember(session.id, "pending", [0.5])
    service.forget(exc.value.record_id)
    with pytest.raises(NotFound):
        service.get_record(exc.value.record_id)


def test_forget_session(service, session, remembered, recall_query):
    other = service.start_session("u2")
    kept = service.remember(other.id, "kept", [0.1, 0.2, 0.3])

    assert service.forget_session(session.id) == 4
    with pytest.raises(NotFound):
        service.get_session(session.id)

    hits = service.recall(recall_query, k=5)
    assert [hit.record.id for hit in hits] == [kept]


# ============================================================================
# Text helpers
# ============================================================================

def test_text_helpers_use_embedder(record_store):
    table = {
        "tea": [1.0, 0.0, 0.0],
        "coffee": [0.9, 0.1, 0.0],
        "rain": [0.0, 0.0, 1.0],
        "hot drink": [0.95, 0.05, 0.0],
    }
    index = SmallWorldIndex(dimensionality=3, m=4, seed=1)
    service = MemoryService(record_store, index, embedder=table.__getitem__)
    session = service.start_session("u")
    for text in ("tea", "coffee", "rain"):
        service.remember_text(session.id, text)

    hits = service.recall_text("hot drink", k=2)
    assert {hit.record.content for hit in hits} == {"tea", "coffee"}


def test_text_helpers_require_embedder(service, session):
    with pytest.raises(ConfigurationError):
        service.remember_text(session.id, "no embedder")
    with pytest.raises(ConfigurationError):
        service.recall_text("no embedder")


# ============================================================================
# Index lifecycle
# ============================================================================

def test_rebuild_index_preserves_recall(service, session, remembered, recall_query):
    before = [hit.record.id for hit in service.recall(recall_query, k=4)]
    service.forget(remembered[1])

    assert service.rebuild_index() == 3
    assert service.index.count() == 3
    assert service.index.stats()["tombstoned"] == 0

    after = [hit.record.id for hit in service.recall(recall_query, k=4)]
    assert after == [rid for rid in before if rid != remembered[1]]


def test_rebuild_skips_pending_records(service, session, remembered):
    with pytest.raises(PartialFailure):
        service.remember(session.id, "pending", [0.1])
    assert service.rebuild_index() == 4


def test_stats(service, remembered):
    stats = service.stats()
    assert stats["index"]["live"] == 4
    assert stats["over_fetch_factor"] == 3


def test_create_memory_service_defaults():
    settings = Settings(index=IndexConfig(dimensionality=3, m=4, seed=0))
    service = create_memory_service(settings)
    assert isinstance(service.store, InMemoryRecordStore)
    assert service.index.dimensionality == 3
    session = service.start_session("u")
    service.remember(session.id, "hello", [0.1, 0.2, 0.3])
    assert len(service.recall([0.1, 0.2, 0.3], k=1)) == 1


def test_stats_counts_operations(service, session, remembered, recall_query):
    service.recall(recall_query, k=1)
    service.recall(recall_query, k=2)
    service.forget(remembered[0])

    operations = service.stats()["operations"]
    assert operations["inserts"] == 4
    assert operations["searches"] == 2
    assert operations["forgets"] == 1


# ============================================================================
# User listing and updates
# ============================================================================

def test_list_user_records_across_sessions(service, recall_vectors):
    first = service.start_session("carol")
    second = service.start_session("carol")
    other = service.start_session("dave")
    ids = [
        service.remember(first.id, "one", recall_vectors[0]),
        service.remember(other.id, "not carol", recall_vectors[1]),
        service.remember(second.id, "two", recall_vectors[2]),
    ]

    records = service.list_user_records("carol")
    assert [r.id for r in records] == [ids[0], ids[2]]
    assert [r.content for r in service.list_user_records("carol", session_id=second.id)] == ["two"]
    assert service.list_user_records("nobody") == []


def test_update_record_content_keeps_node(service, session, remembered):
    before = service.get_record(remembered[1])
    updated = service.update_record(remembered[1], "b, revised")

    assert updated.id == remembered[1]
    assert updated.content == "b, revised"
    assert updated.node_id == before.node_id
    assert service.stats()["operations"]["updates"] == 1


def test_update_record_with_vector_reindexes(service, session, remembered, recall_vectors):
    old_node = service.get_record(remembered[2]).node_id
    updated = service.update_record(remembered[2], "c moved", vector=recall_vectors[0])

    assert updated.node_id != old_node
    assert not service.index.contains(old_node)
    assert service.index.count() == 4
    hits = service.recall(recall_vectors[0], k=4)
    assert "c moved" in {hit.record.content for hit in hits}

    service.rebuild_index()
    assert service.index.count() == 4


def test_update_record_wrong_dimension_leaves_record_untouched(service, session, remembered):
    with pytest.raises(DimensionMismatch):
        service.update_record(remembered[0], "nope", vector=[0.1, 0.2])
    record = service.get_record(remembered[0])
    assert record.content == "a"
    assert service.index.contains(record.node_id)


def test_update_unknown_record(service):
    with pytest.raises(NotFound):
        service.update_record("mem_missing", "x")


def test_update_pending_record_with_vector_indexes_it(service, session, recall_query):
    with pytest.raises(PartialFailure) as exc:
        service.remember(session.id, "draft", [0.1])
    updated = service.update_record(exc.value.record_id, "final", vector=recall_query)
    assert not updated.pending
    assert service.recall(recall_query, k=1)[0].record.content == "final"
