import abc

from typing import Optional

import numpy as np

from sklearn.cluster import KMeans
from sklearn.utils.validation import check_random_state

from streamcore.clustering.kmeans import kmeans_plusplus
from streamcore.clustering.metrics import VectorMetric, validate_distances
from streamcore.coresets.facility import Facility, FacilityRegistry, moved_weight
from streamcore.helpers.errors import InfeasibleContractionError, WeightInvariantViolation
from streamcore.helpers.logger import get_logger


logger = get_logger(name="contraction")


def check_weight_conservation(expected: float, actual: float, stage: str) -> None:
    if not np.isclose(expected, actual, rtol=1e-9, atol=1e-9):
        raise WeightInvariantViolation(
            f"Weights sum to {actual} after {stage}, expected {expected}."
        )


class Contraction(abc.ABC):
    """Reduces a facility set to at most `target_size` facilities.

    Contractions never add facilities: when the registry is already small
    enough it is returned untouched.
    """

    def __init__(self, target_size: int) -> None:
        if target_size <= 0:
            raise InfeasibleContractionError(f"target_size must be positive, got {target_size}.")
        self._target_size = target_size

    @property
    def target_size(self) -> int:
        return self._target_size

    def run(self, registry: FacilityRegistry) -> FacilityRegistry:
        if len(registry) <= self._target_size:
            logger.debug(f"Nothing to contract: {len(registry)} facilities, target is {self._target_size}.")
            return registry

        weight_before = registry.total_weight
        n_before = len(registry)
        cost_before = registry.total_cost
        contracted = self._contract(registry)
        check_weight_conservation(weight_before, contracted.total_weight, stage=self.__class__.__name__)

        logger.info(
            f"Contracted {n_before} facilities to {len(contracted)} (target {self._target_size}). "
            f"Cost bound: {cost_before:.3e} -> {contracted.total_cost:.3e}"
        )
        return contracted

    @abc.abstractmethod
    def _contract(self, registry: FacilityRegistry) -> FacilityRegistry:
        raise NotImplementedError


class GreedyMergeContraction(Contraction):
    """Repeatedly merges the pair of facilities whose merge is cheapest.

    Under vector metrics a and b merge onto their weighted centroid, which
    increases the cost bound by 2 * w_a * w_b / (w_a + w_b) * d(a, b). Other
    metrics move the lighter facility onto the heavier one, at a cost of
    min(w_a, w_b) * d(a, b). Ties are broken by the
    lowest pair of slots (a, b) in row-major order. The registry is modified
    in place.
    """

    def __init__(self, target_size: int, max_cost_increase: Optional[float] = None, n_jobs: int = 1) -> None:
        super().__init__(target_size)
        self._max_cost_increase = max_cost_increase
        self._n_jobs = n_jobs

    def _merge_costs(self, distances: np.ndarray, weights: np.ndarray, centroid: bool) -> np.ndarray:
        costs = moved_weight(weights[:, None], weights[None, :], centroid) * distances
        # Only the strict upper triangle holds candidate pairs
        costs[np.tril_indices(costs.shape[0])] = np.inf
        return costs

    def _contract(self, registry: FacilityRegistry) -> FacilityRegistry:
        metric = registry.metric
        distances = validate_distances(metric.pairwise(registry.positions(), n_jobs=self._n_jobs))
        weights = np.array([f.weight for f in registry], dtype=np.float64)
        costs = self._merge_costs(distances, weights, metric.has_centroids)

        n_merges = 0
        while len(registry) > self._target_size:
            flat_index = int(np.argmin(costs))
            a, b = np.unravel_index(flat_index, costs.shape)
            increase = costs[a, b]

            if self._max_cost_increase is not None and increase > self._max_cost_increase:
                logger.info(
                    f"Stopping contraction at {len(registry)} facilities: cheapest merge "
                    f"costs {increase:.3e} > {self._max_cost_increase:.3e}"
                )
                break

            survivor = registry.merge(int(a), int(b), distance=float(distances[a, b]))
            n_merges += 1

            # Drop the slot of the absorbed facility
            distances = np.delete(np.delete(distances, b, axis=0), b, axis=1)
            costs = np.delete(np.delete(costs, b, axis=0), b, axis=1)
            weights = np.delete(weights, b)

            # The survivor may carry a new representative and always a new weight
            weights[survivor] = registry[survivor].weight
            row = registry.distances(registry[survivor].position)
            distances[survivor, :] = row
            distances[:, survivor] = row
            distances[survivor, survivor] = 0.0
            merge_costs = moved_weight(weights[survivor], weights, metric.has_centroids) * row
            costs[survivor, survivor + 1:] = merge_costs[survivor + 1:]
            costs[:survivor, survivor] = merge_costs[:survivor]

        logger.debug(f"Greedy contraction performed {n_merges} merges.")
        return registry


class WeightedKMeansContraction(Contraction):
    """Clusters the facilities with weighted k-means and keeps the centroids.

    Each facility is a point weighted by its weight. The new facilities are
    the k-means centroids, so they are not data points (their point_id is -1).
    Only available for vector metrics. A new registry is returned.
    """

    def __init__(self, target_size: int, random_state=None, max_iter: int = 300) -> None:
        super().__init__(target_size)
        self._random_state = random_state
        self._max_iter = max_iter

    def _contract(self, registry: FacilityRegistry) -> FacilityRegistry:
        metric = registry.metric
        if not isinstance(metric, VectorMetric):
            raise TypeError(f"Weighted k-means contraction needs a vector metric, got {metric!r}.")

        random_state = check_random_state(self._random_state)
        X = registry.positions()
        weights = np.array([f.weight for f in registry], dtype=np.float64)
        n_clusters = self._target_size

        seed_indices = kmeans_plusplus(
            points=X,
            n_clusters=n_clusters,
            weights=weights,
            power=2,
            random_state=random_state,
        )
        kmeans = KMeans(
            n_clusters=n_clusters,
            init=X[seed_indices],
            n_init=1,
            max_iter=self._max_iter,
            random_state=random_state,
        )
        kmeans.fit(X, sample_weight=weights)

        contracted = FacilityRegistry(metric)
        for cluster_index in range(n_clusters):
            member_indices = np.where(kmeans.labels_ == cluster_index)[0]
            if member_indices.shape[0] == 0:
                continue
            center = metric.prepare(kmeans.cluster_centers_[cluster_index])
            member_distances = validate_distances(metric.distances(center, X[member_indices]))
            members = [registry[i] for i in member_indices]
            contracted.adopt(Facility(
                position=center,
                point_id=-1,
                order=cluster_index,
                weight=float(sum(m.weight for m in members)),
                cost=float(sum(m.cost for m in members) + np.sum(weights[member_indices] * member_distances)),
                threshold=max(m.threshold for m in members),
            ))
        return contracted
