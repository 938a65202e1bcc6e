"""
Distance metrics for the small-world index.

Every metric is a pure, stateless callable object: non-negative, symmetric
and zero for identical inputs (cosine: zero for identical direction).
"""

import math
from typing import Callable, Dict, Protocol, Union, runtime_checkable

import numpy as np

from agent_memory.errors import ConfigurationError, DimensionMismatch


@runtime_checkable
class DistanceMetric(Protocol):
    """Capability interface the index depends on."""

    name: str

    def distance(self, a: np.ndarray, b: np.ndarray) -> float:
        ...


def _check_dims(a: np.ndarray, b: np.ndarray) -> None:
    if a.shape[0] != b.shape[0]:
        raise DimensionMismatch(a.shape[0], b.shape[0])


class CosineDistance:
    """1 - cosine similarity, clamped to [0, 2]."""

    name = "cosine"

    def distance(self, a: np.ndarray, b: np.ndarray) -> float:
        _check_dims(a, b)
        norm_a = float(np.linalg.norm(a))
        norm_b = float(np.linalg.norm(b))
        if norm_a == 0.0 or norm_b == 0.0:
            # Zero vectors have no direction
            return 0.0 if norm_a == norm_b else 1.0
        similarity = float(np.dot(a, b)) / (norm_a * norm_b)
        return min(2.0, max(0.0, 1.0 - similarity))

    __call__ = distance


class SquaredEuclideanDistance:
    """Sum of squared differences (same ordering as L2, no sqrt)."""

    name = "euclidean"

    def distance(self, a: np.ndarray, b: np.ndarray) -> float:
        _check_dims(a, b)
        diff = a - b
        return float(np.dot(diff, diff))

    __call__ = distance


class EuclideanDistance(SquaredEuclideanDistance):
    """L2 norm of the difference."""

    name = "l2"

    def distance(self, a: np.ndarray, b: np.ndarray) -> float:
        return math.sqrt(super().distance(a, b))

    __call__ = distance


class CallableDistance:
    """Adapts a plain `(a, b) -> float` function to the metric interface."""

    def __init__(self, fn: Callable[[np.ndarray, np.ndarray], float], name: str = "custom"):
        self.fn = fn
        self.name = name

    def distance(self, a: np.ndarray, b: np.ndarray) -> float:
        _check_dims(a, b)
        return float(self.fn(a, b))

    __call__ = distance


_METRICS: Dict[str, Callable[[], DistanceMetric]] = {
    "cosine": CosineDistance,
    "euclidean": SquaredEuclideanDistance,
    "l2": EuclideanDistance,
}


def register_metric(name: str, factory: Callable[[], DistanceMetric]) -> None:
    """Register a custom metric so configuration can refer to it by name."""
    _METRICS[name] = factory


def get_metric(metric: Union[str, DistanceMetric, Callable[[np.ndarray, np.ndarray], float]]) -> DistanceMetric:
    """
    Resolve a metric specification.

    Args:
        metric: Registered name, metric instance, or plain callable

    Returns:
        DistanceMetric instance

    Raises:
        ConfigurationError: If the name is unknown
    """
    if isinstance(metric, str):
        factory = _METRICS.get(metric.lower())
        if factory is None:
            raise ConfigurationError("metric", metric, f"Unsupported distance metric, expected one of {sorted(_METRICS)}")
        return factory()
    if isinstance(metric, DistanceMetric):
        return metric
    if callable(metric):
        return CallableDistance(metric, name=getattr(metric, "__name__", "custom"))
    raise ConfigurationError("metric", metric, "Metric must be a name, a DistanceMetric or a callable")
