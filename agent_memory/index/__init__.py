"""Approximate nearest-neighbor index (HNSW)."""

from .distance import (
    CallableDistance,
    CosineDistance,
    DistanceMetric,
    EuclideanDistance,
    SquaredEuclideanDistance,
    get_metric,
    register_metric,
)
from .node_store import Node, NodeStore
from .hnsw import SearchHit, SmallWorldIndex

__all__ = [
    "CallableDistance",
    "CosineDistance",
    "DistanceMetric",
    "EuclideanDistance",
    "SquaredEuclideanDistance",
    "get_metric",
    "register_metric",
    "Node",
    "NodeStore",
    "SearchHit",
    "SmallWorldIndex",
]
