from typing import Optional, Tuple

import numpy as np

from sklearn.utils.validation import check_random_state


def _cluster_centers(n_clusters: int, n_dim: int, separation: float) -> np.ndarray:
    """Centers on the scaled simplex: pairwise distance separation * sqrt(2)."""
    if n_dim < n_clusters:
        raise ValueError(f"Need at least {n_clusters} dimensions to separate {n_clusters} clusters, got {n_dim}.")
    return np.eye(n_clusters, n_dim) * separation


def generate_separated_balls(
    n_clusters: int,
    n_points_per_cluster: int,
    radius: float,
    separation: float,
    n_dim: Optional[int] = None,
    random_state=None,
    ) -> Tuple[np.ndarray, np.ndarray]:
    """Generates points drawn uniformly from balls of the given radius.

    Every pair of points within a cluster is at most 2 * radius apart while
    the cluster centers are separation * sqrt(2) apart. The points are
    shuffled. Returns the data matrix and the cluster label of each point.
    """
    random_state = check_random_state(random_state)
    n_dim = n_clusters if n_dim is None else n_dim
    centers = _cluster_centers(n_clusters, n_dim, separation)

    # Uniform sampling in a ball: a random direction scaled by radius * U^(1/d)
    n_points = n_clusters * n_points_per_cluster
    directions = random_state.normal(size=(n_points, n_dim))
    directions /= np.linalg.norm(directions, axis=1)[:, None]
    radii = radius * np.power(random_state.uniform(size=n_points), 1 / n_dim)

    labels = np.repeat(np.arange(n_clusters), n_points_per_cluster)
    data = centers[labels] + directions * radii[:, None]

    order = random_state.permutation(n_points)
    return data[order], labels[order]


def generate_gaussian_blobs(
    n_clusters: int,
    n_points_per_cluster: int,
    variance: float,
    separation: float,
    n_dim: Optional[int] = None,
    random_state=None,
    ) -> Tuple[np.ndarray, np.ndarray]:
    """Generates isotropic Gaussian clusters centered on a scaled simplex."""
    random_state = check_random_state(random_state)
    n_dim = n_clusters if n_dim is None else n_dim
    centers = _cluster_centers(n_clusters, n_dim, separation)
    cov = np.eye(n_dim) * (variance / np.sqrt(n_dim))
    raw_data = [
        random_state.multivariate_normal(
            mean=centers[m],
            size=n_points_per_cluster,
            cov=cov,
        )
        for m in range(n_clusters)
    ]
    data = np.vstack(raw_data)
    labels = np.repeat(np.arange(n_clusters), n_points_per_cluster)

    order = random_state.permutation(data.shape[0])
    return data[order], labels[order]
