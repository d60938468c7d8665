import abc

from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from joblib import Parallel, delayed, effective_n_jobs
from numba import jit
from scipy.spatial.distance import cdist

from streamcore.helpers.errors import InvalidMetricError


@jit(nopython=True)
def euclidean_to_many(point, others):
    n_others, n_dim = others.shape
    distances = np.empty(n_others)
    for i in range(n_others):
        total = 0.0
        for d in range(n_dim):
            total += (others[i, d] - point[d])**2
        distances[i] = np.sqrt(total)
    return distances


@jit(nopython=True)
def manhattan_to_many(point, others):
    n_others, n_dim = others.shape
    distances = np.empty(n_others)
    for i in range(n_others):
        total = 0.0
        for d in range(n_dim):
            total += np.abs(others[i, d] - point[d])
        distances[i] = total
    return distances


@jit(nopython=True)
def chebyshev_to_many(point, others):
    n_others, n_dim = others.shape
    distances = np.empty(n_others)
    for i in range(n_others):
        largest = 0.0
        for d in range(n_dim):
            diff = np.abs(others[i, d] - point[d])
            if diff > largest:
                largest = diff
        distances[i] = largest
    return distances


def validate_distances(distances: np.ndarray) -> np.ndarray:
    """Raises InvalidMetricError if any distance is NaN or negative."""
    if distances.size == 0:
        return distances
    if np.isnan(distances).any():
        raise InvalidMetricError("Metric returned a NaN distance.")
    if (distances < 0).any():
        raise InvalidMetricError(f"Metric returned a negative distance: {distances.min()}")
    return distances


class MetricSpace(abc.ABC):
    """A distance function together with the helpers the algorithms need.

    Subclasses must implement `distance`. The remaining methods have generic
    implementations which only rely on `distance` so that any metric can be
    plugged into the streaming algorithms. Vector metrics override them with
    vectorised versions.
    """

    name = "abstract"

    # Whether weighted means of points exist, i.e. facilities can be merged
    # onto a centroid instead of keeping one of the representatives.
    has_centroids = False

    @abc.abstractmethod
    def distance(self, a, b) -> float:
        raise NotImplementedError

    def prepare(self, point):
        """Converts an incoming point to the representation stored in facilities."""
        return point

    def stack(self, points: Sequence) -> Any:
        """Packs a list of prepared points for repeated `distances` calls."""
        return list(points)

    def distances(self, point, others) -> np.ndarray:
        """Computes the distance from `point` to each of the stacked `others`."""
        return np.array([self.distance(point, other) for other in others], dtype=np.float64)

    def pairwise(self, X, Y=None, n_jobs: int = 1) -> np.ndarray:
        """Computes the matrix D where D_{i,j} = distance(X_i, Y_j)."""
        if Y is None:
            Y = X
        if len(X) == 0 or len(Y) == 0:
            return np.zeros(shape=(len(X), len(Y)))
        rows = Parallel(n_jobs=n_jobs)(
            delayed(self.distances)(x, Y) for x in X
        )
        return np.vstack(rows)

    def centroid(self, a, weight_a: float, b, weight_b: float):
        raise NotImplementedError(f"{self.__class__.__name__} has no centroids.")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class VectorMetric(MetricSpace):
    """Base class for metrics over fixed-length float vectors."""

    scipy_name = None
    has_centroids = True

    def _to_many(self, point: np.ndarray, others: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def prepare(self, point) -> np.ndarray:
        point = np.array(point, dtype=np.float64).reshape(-1)
        point.flags.writeable = False
        return point

    def stack(self, points: Sequence) -> np.ndarray:
        if len(points) == 0:
            return np.empty(shape=(0, 0))
        return np.vstack(points).astype(np.float64, copy=False)

    def centroid(self, a, weight_a: float, b, weight_b: float) -> np.ndarray:
        """Weighted mean of two points. It lies on the segment between them, so
        for any norm d(a, centroid) == weight_b / (weight_a + weight_b) * d(a, b).
        """
        total = weight_a + weight_b
        return self.prepare((weight_a * np.asarray(a, dtype=np.float64) + weight_b * np.asarray(b, dtype=np.float64)) / total)

    def distance(self, a, b) -> float:
        a = np.asarray(a, dtype=np.float64).reshape(-1)
        b = np.asarray(b, dtype=np.float64).reshape(1, -1)
        return float(self.distances(a, b)[0])

    def distances(self, point, others) -> np.ndarray:
        point = np.asarray(point, dtype=np.float64)
        others = np.asarray(others, dtype=np.float64)
        if others.shape[0] == 0:
            return np.empty(shape=0)
        if others.ndim != 2 or others.shape[1] != point.shape[0]:
            raise ValueError(f"Dimension mismatch: point has shape {point.shape}, others have shape {others.shape}.")
        return self._to_many(point, others)

    def pairwise(self, X, Y=None, n_jobs: int = 1) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        Y = X if Y is None else np.asarray(Y, dtype=np.float64)
        if X.shape[0] == 0 or Y.shape[0] == 0:
            return np.zeros(shape=(X.shape[0], Y.shape[0]))
        if n_jobs == 1:
            return cdist(X, Y, metric=self.scipy_name)
        # Split rows into one chunk per worker; cdist is exact per row so the
        # result does not depend on the number of workers.
        chunks = np.array_split(np.arange(X.shape[0]), effective_n_jobs(n_jobs))
        blocks = Parallel(n_jobs=n_jobs)(
            delayed(cdist)(X[rows], Y, metric=self.scipy_name)
            for rows in chunks if rows.size > 0
        )
        return np.vstack(blocks)


class EuclideanMetric(VectorMetric):
    name = "euclidean"
    scipy_name = "euclidean"

    def _to_many(self, point, others):
        return euclidean_to_many(point, others)


class ManhattanMetric(VectorMetric):
    name = "manhattan"
    scipy_name = "cityblock"

    def _to_many(self, point, others):
        return manhattan_to_many(point, others)


class ChebyshevMetric(VectorMetric):
    name = "chebyshev"
    scipy_name = "chebyshev"

    def _to_many(self, point, others):
        return chebyshev_to_many(point, others)


class CallableMetric(MetricSpace):
    """Wraps an arbitrary distance function `fn(a, b) -> float`.

    The caller is responsible for `fn` being a metric. Points are stored as
    given, so they can be any Python object `fn` understands.
    """

    def __init__(self, fn: Callable[[Any, Any], float], name: Optional[str] = None) -> None:
        self._fn = fn
        self.name = name if name is not None else getattr(fn, "__name__", "callable")

    def distance(self, a, b) -> float:
        return float(self._fn(a, b))

    def __repr__(self) -> str:
        return f"CallableMetric(name={self.name!r})"


_METRICS: Dict[str, type] = {
    "euclidean": EuclideanMetric,
    "l2": EuclideanMetric,
    "manhattan": ManhattanMetric,
    "cityblock": ManhattanMetric,
    "l1": ManhattanMetric,
    "chebyshev": ChebyshevMetric,
    "linf": ChebyshevMetric,
}


def available_metrics() -> List[str]:
    return sorted(_METRICS.keys())


def get_metric(name: str) -> MetricSpace:
    key = name.lower()
    if key not in _METRICS:
        raise ValueError(f"Unknown metric: {name}. Choose one of {available_metrics()}.")
    return _METRICS[key]()
