"""
Hierarchical navigable small-world (HNSW) index.

Supports online insertion, approximate k-NN search and logical deletion
(tombstoning). Search is approximate: recall improves with larger
`ef`, `ef_construction` and `m`.

Concurrency:
- node publication happens only after the node's adjacency is built
- back-edges are rewired under the target node's own lock
- the entry point is a single cell guarded by its own lock
- level sampling draws from an injected generator under a lock
"""

import heapq
import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from agent_memory.config.settings import IndexConfig
from agent_memory.errors import DimensionMismatch, NotFound
from .distance import DistanceMetric, get_metric
from .node_store import Node, NodeStore

logger = logging.getLogger(__name__)

# (distance, node_id) pairs order by distance, then id ascending
Candidate = Tuple[float, int]


@dataclass(frozen=True)
class SearchHit:
    """A single k-NN result."""
    node_id: int
    distance: float


class SmallWorldIndex:
    """
    Incrementally updatable HNSW graph over fixed-length vectors.

    Each instance owns its metric, parameters, random source and entry
    point, so several independent indices can coexist in one process.
    """

    def __init__(
        self,
        dimensionality: int,
        metric: Union[str, DistanceMetric, Any] = "cosine",
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 50,
        ml: Optional[float] = None,
        rng: Optional[np.random.Generator] = None,
        keep_pruned_connections: bool = True,
        seed: Optional[int] = None,
    ):
        """
        Initialize an empty index.

        Args:
            dimensionality: Fixed vector length D
            metric: "cosine", "euclidean", "l2", a DistanceMetric or a callable
            m: Max neighbors per layer (layer 0 allows 2*m)
            ef_construction: Candidate list size used while inserting
            ef_search: Default candidate list size used while searching
            ml: Level multiplier, defaults to 1/ln(m)
            rng: Random generator used for level sampling
            keep_pruned_connections: Back-fill pruned candidates up to the cap
            seed: Seed for the default generator when `rng` is not given
        """
        self.config = IndexConfig(
            dimensionality=dimensionality,
            metric=metric if isinstance(metric, str) else "custom",
            m=m,
            ef_construction=ef_construction,
            ef_search=ef_search,
            ml=ml,
            keep_pruned_connections=keep_pruned_connections,
            seed=seed,
        )
        self.metric = get_metric(metric)
        self.dimensionality = dimensionality
        self.m = m
        self.m0 = 2 * m
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        self.ml = self.config.level_multiplier
        self.keep_pruned_connections = keep_pruned_connections

        self._rng = rng if rng is not None else np.random.default_rng(seed)
        self._rng_lock = threading.Lock()
        self._store = NodeStore()
        self._entry_lock = threading.Lock()
        self._entry_point: Optional[int] = None
        self._top_layer = -1

    @classmethod
    def from_config(cls, config: IndexConfig, rng: Optional[np.random.Generator] = None,
                    metric: Optional[Union[DistanceMetric, Any]] = None) -> "SmallWorldIndex":
        """Build an index from settings; `metric` overrides the configured name."""
        config.performance_warnings()
        return cls(
            dimensionality=config.dimensionality,
            metric=metric if metric is not None else config.metric,
            m=config.m,
            ef_construction=config.ef_construction,
            ef_search=config.ef_search,
            ml=config.ml,
            rng=rng,
            keep_pruned_connections=config.keep_pruned_connections,
            seed=config.seed,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def insert(self, vector: Sequence[float], seed: Optional[int] = None) -> int:
        """
        Insert a vector and return its node id.

        Args:
            vector: Vector of length D
            seed: Optional seed for this insertion's level sample

        Returns:
            Newly assigned node id

        Raises:
            DimensionMismatch: If the vector length differs from D
        """
        query = self._as_vector(vector)
        level = self._sample_level(seed)

        with self._entry_lock:
            if self._entry_point is None:
                node_id = self._store.allocate_id()
                self._store.create(node_id, query, level, [])
                self._entry_point = node_id
                self._top_layer = level
                logger.debug("Inserted first node %d at level %d", node_id, level)
                return node_id
            entry_point, top_layer = self._entry_point, self._top_layer

        node_id = self._store.allocate_id()

        # Greedy descent through layers above the new node's level
        nearest = (self._distance(query, entry_point), entry_point)
        for layer in range(top_layer, level, -1):
            nearest = self._greedy_closest(query, nearest, layer)

        # Build the new node's adjacency before it becomes visible
        entry_points: List[Candidate] = [nearest]
        selected: List[List[int]] = [[] for _ in range(level + 1)]
        for layer in range(min(level, top_layer), -1, -1):
            candidates = self._search_layer(query, entry_points, self.ef_construction, layer)
            selected[layer] = self._select_neighbors(query, candidates, self.m)
            entry_points = candidates

        # entry_points now holds the layer-0 candidates
        parent = self._attach_parent(node_id, query, entry_points)
        if parent is not None and parent not in selected[0]:
            selected[0].append(parent)

        self._store.create(node_id, query, level, selected,
                           anchors=[parent] if parent is not None else [])

        for layer, neighbors in enumerate(selected):
            for neighbor_id in neighbors:
                self._link(neighbor_id, node_id, layer)

        if level > top_layer:
            with self._entry_lock:
                if level > self._top_layer:
                    self._entry_point = node_id
                    self._top_layer = level
                    logger.debug("Node %d is the new entry point at level %d", node_id, level)

        return node_id

    def search(self, query: Sequence[float], k: int, ef: Optional[int] = None) -> List[SearchHit]:
        """
        Approximate k nearest live neighbors of `query`.

        Args:
            query: Query vector of length D
            k: Number of results
            ef: Candidate list size (raised to at least k)

        Returns:
            Up to k hits sorted by ascending distance, ties by node id

        Raises:
            DimensionMismatch: If the query length differs from D
        """
        query = self._as_vector(query)
        if k <= 0:
            return []

        with self._entry_lock:
            entry_point, top_layer = self._entry_point, self._top_layer
        if entry_point is None:
            return []

        nearest = (self._distance(query, entry_point), entry_point)
        for layer in range(top_layer, 0, -1):
            nearest = self._greedy_closest(query, nearest, layer)

        ef = max(ef or self.ef_search, k)
        found = self._search_layer(query, [nearest], ef, 0, live_only=True)
        return [SearchHit(node_id=node_id, distance=dist) for dist, node_id in found[:k]]

    def remove(self, node_id: int) -> None:
        """
        Tombstone a node. Its edges stay in place for traversal.

        Raises:
            NotFound: If the id is unknown or already removed
        """
        self._store.tombstone(node_id)

        with self._entry_lock:
            if self._entry_point == node_id:
                replacement = self._pick_entry_point()
                if replacement is not None:
                    self._entry_point = replacement.id
                    self._top_layer = replacement.level
                    logger.debug("Entry point moved to %d after removing %d", replacement.id, node_id)

    def count(self) -> int:
        """Number of live (non-tombstoned) nodes."""
        return self._store.live_count()

    def __len__(self) -> int:
        return self.count()

    def contains(self, node_id: int) -> bool:
        node = self._store.find(node_id)
        return node is not None and not node.deleted

    __contains__ = contains

    def get_vector(self, node_id: int) -> np.ndarray:
        """Stored (read-only) vector for a node, tombstoned or not."""
        return self._store.get(node_id).vector

    @property
    def entry_point(self) -> Optional[int]:
        with self._entry_lock:
            return self._entry_point

    @property
    def top_layer(self) -> int:
        with self._entry_lock:
            return self._top_layer

    def max_degree(self, layer: int) -> int:
        return self.m0 if layer == 0 else self.m

    def neighbors(self, node_id: int, layer: int = 0) -> Tuple[int, ...]:
        """Adjacency snapshot of a node at a layer."""
        self._store.get(node_id)
        return self._store.neighbors(node_id, layer)

    def stats(self) -> Dict[str, Any]:
        """Summary of graph shape."""
        nodes = self._store.nodes()
        degrees = [len(node.neighbors[0]) for node in nodes]
        return {
            "nodes": len(nodes),
            "live": self.count(),
            "tombstoned": len(nodes) - self.count(),
            "entry_point": self.entry_point,
            "top_layer": self.top_layer,
            "mean_degree_l0": float(np.mean(degrees)) if degrees else 0.0,
            "metric": self.metric.name,
            "dimensionality": self.dimensionality,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _as_vector(self, vector: Sequence[float]) -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float32)
        if arr.ndim != 1:
            raise DimensionMismatch(self.dimensionality, int(arr.size))
        if arr.shape[0] != self.dimensionality:
            raise DimensionMismatch(self.dimensionality, arr.shape[0])
        return arr

    def _sample_level(self, seed: Optional[int]) -> int:
        if seed is not None:
            u = np.random.default_rng(seed).random()
        else:
            with self._rng_lock:
                u = self._rng.random()
        # u in [0, 1) so 1 - u is never zero
        return int(-math.log(1.0 - u) * self.ml)

    def _distance(self, query: np.ndarray, node_id: int) -> float:
        return self.metric.distance(query, self._store.get(node_id).vector)

    def _greedy_closest(self, query: np.ndarray, start: Candidate, layer: int) -> Candidate:
        """Single-best-neighbor walk on one layer."""
        best = start
        improved = True
        while improved:
            improved = False
            for neighbor_id in self._store.neighbors(best[1], layer):
                candidate = (self._distance(query, neighbor_id), neighbor_id)
                if candidate < best:
                    best = candidate
                    improved = True
        return best

    def _search_layer(
        self,
        query: np.ndarray,
        entry_points: Sequence[Candidate],
        ef: int,
        layer: int,
        live_only: bool = False,
    ) -> List[Candidate]:
        """
        Best-first search on one layer.

        Tombstoned nodes are traversed but, with `live_only`, never
        returned.

        Returns:
            Up to ef candidates sorted by (distance, id)
        """
        visited = {node_id for _, node_id in entry_points}
        candidates = list(entry_points)
        heapq.heapify(candidates)

        # Max-heap of the best results so far, keyed by (-distance, -id)
        results: List[Tuple[float, int]] = []
        for dist, node_id in entry_points:
            if live_only and self._store.get(node_id).deleted:
                continue
            heapq.heappush(results, (-dist, -node_id))
            if len(results) > ef:
                heapq.heappop(results)

        while candidates:
            current = heapq.heappop(candidates)
            if len(results) >= ef and current > (-results[0][0], -results[0][1]):
                break

            for neighbor_id in self._store.neighbors(current[1], layer):
                if neighbor_id in visited:
                    continue
                visited.add(neighbor_id)

                node = self._store.get(neighbor_id)
                candidate = (self.metric.distance(query, node.vector), neighbor_id)
                if len(results) < ef or candidate < (-results[0][0], -results[0][1]):
                    heapq.heappush(candidates, candidate)
                    if live_only and node.deleted:
                        continue
                    heapq.heappush(results, (-candidate[0], -candidate[1]))
                    if len(results) > ef:
                        heapq.heappop(results)

        return sorted((-dist, -node_id) for dist, node_id in results)

    def _select_neighbors(self, base: np.ndarray, candidates: Sequence[Candidate], limit: int) -> List[int]:
        """
        Diversity heuristic: keep a candidate only if it is closer to the
        base than to every neighbor already kept.

        Args:
            base: Vector the neighbors are chosen for
            candidates: (distance to base, id) sorted ascending
            limit: Maximum neighbors to keep

        Returns:
            Selected node ids, closest first
        """
        selected: List[int] = []
        selected_vectors: List[np.ndarray] = []
        pruned: List[int] = []

        for dist, node_id in candidates:
            if len(selected) >= limit:
                break
            vector = self._store.get(node_id).vector
            if all(dist < self.metric.distance(vector, kept) for kept in selected_vectors):
                selected.append(node_id)
                selected_vectors.append(vector)
            else:
                pruned.append(node_id)

        if self.keep_pruned_connections:
            for node_id in pruned:
                if len(selected) >= limit:
                    break
                selected.append(node_id)

        return selected

    def _link(self, node_id: int, new_id: int, layer: int) -> None:
        """Add a back-edge node_id -> new_id, pruning node_id if over capacity."""
        cap = self.max_degree(layer)

        def rewire(node: Node, current: Tuple[int, ...]) -> Sequence[int]:
            if new_id in current:
                return current
            merged = current + (new_id,)
            if len(merged) <= cap:
                return merged
            scored = sorted(
                (self.metric.distance(node.vector, self._store.get(other).vector), other)
                for other in merged
            )
            pinned = set(node.anchors) if layer == 0 else set()
            free = [c for c in scored if c[1] not in pinned]
            room = cap - len(pinned.intersection(merged))
            kept = pinned.union(self._select_neighbors(node.vector, free, room))
            return [other for _, other in scored if other in kept]

        self._store.update_neighbors(node_id, layer, rewire)

    def _attach_parent(self, node_id: int, query: np.ndarray,
                       candidates: Sequence[Candidate]) -> Optional[int]:
        """
        Pin a layer-0 edge pair between the new node and an existing one.

        Every node keeps a pinned edge to its parent and its parent keeps
        one back, so following parents reaches the first node and following
        children reaches every node: layer 0 stays connected whatever the
        pruning drops. A node holds at most `m` pinned edges, which leaves
        room for `m - 1` children each and so always enough slots overall.

        Returns:
            The parent id, or None if no node had room
        """
        for _, other in candidates:
            if self._store.attach_child(other, node_id, self.m):
                return other

        # Candidates are full: take the closest node with room anywhere
        for limit in (self.m, self.m0):
            others = sorted(
                (self.metric.distance(query, node.vector), node.id)
                for node in self._store.nodes()
                if node.id != node_id and len(node.anchors) < limit
            )
            for _, other in others:
                if self._store.attach_child(other, node_id, limit):
                    return other

        logger.warning("No node had room for a pinned edge to %d", node_id)
        return None

    def _pick_entry_point(self) -> Optional[Node]:
        """Live node on the highest layer, lowest id on ties."""
        best: Optional[Node] = None
        for node in self._store.nodes():
            if node.deleted:
                continue
            if best is None or (node.level, -node.id) > (best.level, -best.id):
                best = node
        return best
