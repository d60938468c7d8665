from typing import Optional

import numpy as np

from sklearn.utils.validation import check_random_state

from streamcore.clustering.metrics import EuclideanMetric, MetricSpace


def kmeans_plusplus(
    points,
    n_clusters: int,
    weights: Optional[np.ndarray] = None,
    metric: Optional[MetricSpace] = None,
    power: float = 2,
    random_state=None,
    n_local_trials: Optional[int] = None,
    ) -> np.ndarray:
    """D^z seeding of n_clusters centers among (weighted) points.

    Parameters
    ----------
    points : ndarray of shape (n_samples, n_features) or list
        The points to pick seeds from. Any sequence works with a generic metric.

    n_clusters : int
        The number of seeds to choose.

    weights : ndarray of shape (n_samples,), default=None
        Multiplicity of each point. Unit weights when None.

    metric : MetricSpace, default=None
        Euclidean distance when None.

    power : float, default=2
        Exponent z of the distance. 2 gives k-means++ and 1 gives the k-median
        variant.

    random_state : int, RandomState instance or None
        The generator used to pick the centers.

    n_local_trials : int, default=None
        The number of seeding trials for each center (except the first),
        of which the one reducing the potential the most is greedily chosen.
        Defaults to 2 + log(k).

    Returns
    -------
    center_indices : ndarray of shape (n_clusters,)
        The index location of the chosen centers in `points`.
    """
    metric = EuclideanMetric() if metric is None else metric
    random_state = check_random_state(random_state)

    n_samples = len(points)
    if n_samples == 0:
        raise ValueError("Cannot pick seeds from an empty set of points.")
    if n_clusters < 1:
        raise ValueError(f"n_clusters must be positive, got {n_clusters}.")
    n_clusters = min(n_clusters, n_samples)

    weights = np.ones(n_samples) if weights is None else np.asarray(weights, dtype=np.float64)
    stacked = metric.stack([points[i] for i in range(n_samples)])

    if n_local_trials is None:
        n_local_trials = 2 + int(np.log(max(n_clusters, 1)))

    # Pick the first center with probability proportional to its weight
    center_indices = np.full(n_clusters, -1, dtype=int)
    center_indices[0] = random_state.choice(n_samples, p=weights / weights.sum())

    closest_dist = np.power(metric.distances(stacked[center_indices[0]], stacked), power)
    current_pot = np.sum(weights * closest_dist)

    for c in range(1, n_clusters):
        if current_pot <= 0:
            # Every point coincides with a center. Fill up with unused points.
            unused = np.setdiff1d(np.arange(n_samples), center_indices[:c])
            center_indices[c:] = unused[:n_clusters - c]
            break

        # Sample candidates proportionally to w(p) * dist(p, C)^z
        rand_vals = random_state.random_sample(n_local_trials) * current_pot
        candidate_ids = np.searchsorted(np.cumsum(weights * closest_dist), rand_vals)
        np.clip(candidate_ids, None, n_samples - 1, out=candidate_ids)

        best_candidate = -1
        best_pot = np.inf
        best_dist = None
        for candidate in candidate_ids:
            candidate_dist = np.minimum(
                closest_dist,
                np.power(metric.distances(stacked[candidate], stacked), power),
            )
            candidate_pot = np.sum(weights * candidate_dist)
            if candidate_pot < best_pot:
                best_candidate = candidate
                best_pot = candidate_pot
                best_dist = candidate_dist

        center_indices[c] = best_candidate
        current_pot = best_pot
        closest_dist = best_dist

    return center_indices
