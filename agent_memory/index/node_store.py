"""
Graph node storage for the small-world index.

Nodes live in an arena keyed by integer id. Neighbor lists are immutable
tuples swapped under the owning node's lock, so a search can read a
consistent snapshot without locking while an insert rewires other nodes.
"""

import itertools
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from agent_memory.errors import NotFound


@dataclass(eq=False)
class Node:
    """A single graph vertex: vector, level and per-layer adjacency."""

    id: int
    vector: np.ndarray
    level: int
    neighbors: Optional[List[Tuple[int, ...]]] = None
    deleted: bool = False
    # Layer-0 edges that pruning never drops: the parent plus attached children
    anchors: List[int] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        # One adjacency tuple per layer 0..level
        layers = [tuple(layer) for layer in (self.neighbors or [])]
        layers += [()] * (self.level + 1 - len(layers))
        self.neighbors = layers


class NodeStore:
    """
    Owns the id -> Node mapping.

    Responsibilities are limited to id allocation, publication, adjacency
    mutation primitives and tombstoning; no search logic lives here.
    """

    def __init__(self):
        self._nodes: Dict[int, Node] = {}
        self._ids = itertools.count()
        self._alloc_lock = threading.Lock()
        self._tombstone_lock = threading.Lock()
        self._live = 0

    def allocate_id(self) -> int:
        """Reserve the next node id. Ids are never reused."""
        with self._alloc_lock:
            return next(self._ids)

    def create(self, node_id: int, vector: np.ndarray, level: int,
               neighbors: Sequence[Sequence[int]], anchors: Sequence[int] = ()) -> Node:
        """
        Build a fully initialised node and publish it.

        The node becomes visible to readers only after its vector and
        adjacency are in place.
        """
        vector = np.array(vector, dtype=np.float32, copy=True)
        vector.flags.writeable = False
        node = Node(id=node_id, vector=vector, level=level, neighbors=list(neighbors), anchors=list(anchors))
        with self._tombstone_lock:
            self._nodes[node_id] = node
            self._live += 1
        return node

    def get(self, node_id: int) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFound("node", node_id)
        return node

    def find(self, node_id: int) -> Optional[Node]:
        return self._nodes.get(node_id)

    def __contains__(self, node_id: int) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def ids(self) -> Iterator[int]:
        # Snapshot so concurrent inserts don't break iteration
        return iter(list(self._nodes.keys()))

    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    def neighbors(self, node_id: int, layer: int) -> Tuple[int, ...]:
        """Snapshot of a node's adjacency at a layer (empty above its level)."""
        node = self._nodes[node_id]
        if layer > node.level:
            return ()
        return node.neighbors[layer]

    def set_neighbors(self, node_id: int, layer: int, neighbors: Sequence[int]) -> None:
        node = self._nodes[node_id]
        with node.lock:
            node.neighbors[layer] = tuple(neighbors)

    def update_neighbors(self, node_id: int, layer: int,
                         rewire: Callable[[Node, Tuple[int, ...]], Sequence[int]]) -> Tuple[int, ...]:
        """
        Read-modify-write a node's adjacency under that node's lock only.

        Args:
            node_id: Node to rewire
            layer: Layer to rewire
            rewire: Receives (node, current neighbors), returns new neighbors

        Returns:
            The adjacency now stored
        """
        node = self._nodes[node_id]
        with node.lock:
            updated = tuple(rewire(node, node.neighbors[layer]))
            node.neighbors[layer] = updated
            return updated

    def attach_child(self, node_id: int, child_id: int, limit: int) -> bool:
        """
        Pin a layer-0 edge node_id -> child_id if the node has room.

        Returns:
            False when the node already holds `limit` pinned edges
        """
        node = self._nodes[node_id]
        with node.lock:
            if len(node.anchors) >= limit:
                return False
            node.anchors.append(child_id)
            return True

    def tombstone(self, node_id: int) -> Node:
        """
        Flag a node as deleted.

        Raises:
            NotFound: If the id is unknown or already tombstoned
        """
        with self._tombstone_lock:
            node = self._nodes.get(node_id)
            if node is None or node.deleted:
                raise NotFound("node", node_id)
            node.deleted = True
            self._live -= 1
            return node

    def live_count(self) -> int:
        return self._live
