"""
Concurrency tests for agent_memory/index/hnsw.py

Inserts and searches run from several threads against one index.
"""
import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from agent_memory.index.hnsw import SmallWorldIndex


def test_parallel_inserts_assign_unique_ids(random_vectors):
    index = SmallWorldIndex(dimensionality=16, m=8, ef_construction=64, seed=0)

    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(index.insert, random_vectors))

    assert len(set(ids)) == len(random_vectors)
    assert index.count() == len(random_vectors)
    assert sorted(ids) == list(range(len(random_vectors)))


def test_parallel_inserts_respect_degree_caps(random_vectors):
    index = SmallWorldIndex(dimensionality=16, m=4, ef_construction=32, seed=0)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(index.insert, random_vectors))

    for node in index._store.nodes():
        for layer, neighbors in enumerate(node.neighbors):
            assert len(neighbors) <= index.max_degree(layer)
            assert len(set(neighbors)) == len(neighbors)


def test_parallel_inserted_vectors_are_searchable(random_vectors):
    index = SmallWorldIndex(dimensionality=16, metric="euclidean", m=8, ef_construction=64, seed=0)

    with ThreadPoolExecutor(max_workers=4) as pool:
        ids = list(pool.map(index.insert, random_vectors[:100]))

    found = 0
    for node_id, vector in zip(ids, random_vectors[:100]):
        hits = index.search(vector, 1, ef=64)
        if hits and hits[0].node_id == node_id:
            found += 1
    assert found >= 95


def test_searches_during_inserts(random_vectors):
    index = SmallWorldIndex(dimensionality=16, m=8, ef_construction=64, seed=0)
    for vector in random_vectors[:20]:
        index.insert(vector)

    errors = []
    done = threading.Event()

    def writer():
        try:
            for vector in random_vectors[20:]:
                index.insert(vector)
        except Exception as exc:
            errors.append(exc)
        finally:
            done.set()

    def reader():
        rng = np.random.default_rng(1)
        try:
            while not done.is_set():
                hits = index.search(rng.random(16), 5)
                assert 1 <= len(hits) <= 5
                assert [h.distance for h in hits] == sorted(h.distance for h in hits)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert index.count() == len(random_vectors)


def test_parallel_removes_count_once(random_vectors):
    index = SmallWorldIndex(dimensionality=16, m=8, seed=0)
    for vector in random_vectors[:50]:
        index.insert(vector)

    outcomes = []

    def remove(node_id):
        try:
            index.remove(node_id)
            outcomes.append(True)
        except KeyError:
            outcomes.append(False)

    threads = [threading.Thread(target=remove, args=(7,)) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count(True) == 1
    assert index.count() == 49
