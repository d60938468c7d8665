from typing import Dict, Sequence

import numpy as np

from sklearn.utils.validation import check_random_state

from streamcore.clustering.metrics import MetricSpace, validate_distances
from streamcore.helpers.logger import get_logger


logger = get_logger(name="scale")

DEFAULT_QUANTILES = (0.001, 0.01, 0.5, 0.99, 0.999)


def estimate_distance_quantiles(
    points: Sequence,
    metric: MetricSpace,
    n_samples: int = 10000,
    quantiles: Sequence[float] = DEFAULT_QUANTILES,
    random_state=None,
    ) -> Dict[float, float]:
    """Quantiles of the distance between random pairs of distinct points."""
    random_state = check_random_state(random_state)
    n_points = len(points)
    if n_points < 2:
        return {q: 0.0 for q in quantiles}

    n_samples = min(n_samples, n_points * n_points)
    first = random_state.randint(n_points, size=n_samples)
    second = random_state.randint(n_points, size=n_samples)
    distinct = first != second

    distances = np.array([
        metric.distance(points[i], points[j])
        for i, j in zip(first[distinct], second[distinct])
    ], dtype=np.float64)
    validate_distances(distances)
    if distances.size == 0:
        return {q: 0.0 for q in quantiles}

    values = np.quantile(distances, quantiles)
    result = {q: float(v) for q, v in zip(quantiles, values)}
    logger.debug(f"Pair distance quantiles: {result}")
    return result


def estimate_neighborhood_radius(
    points: Sequence,
    metric: MetricSpace,
    quantile: float = 0.5,
    random_state=None,
    ) -> float:
    """Estimates the typical distance from a point to its nearest neighbour.

    sqrt(n) points are drawn, and for each of them the nearest neighbour is
    searched among sqrt(n) other random points. The `quantile` of these
    nearest-neighbour distances is returned.
    """
    random_state = check_random_state(random_state)
    n_points = len(points)
    if n_points < 2:
        return 0.0

    prepared = [metric.prepare(points[i]) for i in range(n_points)]
    n_sample = max(2, int(np.sqrt(n_points)))
    centers = random_state.choice(n_points, size=min(n_sample, n_points), replace=False)

    nearest = []
    for i in centers:
        candidates = random_state.randint(n_points, size=n_sample)
        candidates = candidates[candidates != i]
        if candidates.size == 0:
            continue
        distances = validate_distances(metric.distances(prepared[i], metric.stack([prepared[j] for j in candidates])))
        nearest.append(distances.min())

    if len(nearest) == 0:
        return 0.0
    radius = float(np.quantile(nearest, quantile))
    logger.debug(f"Estimated neighbourhood radius at quantile {quantile}: {radius:.3e}")
    return radius
