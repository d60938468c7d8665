import dataclasses

from typing import Any, Iterator, List, Optional, Tuple

import numpy as np

from streamcore.clustering.metrics import MetricSpace, validate_distances
from streamcore.helpers.logger import get_logger


logger = get_logger(name="facility")


def moved_weight(weight_a, weight_b, centroid: bool):
    """Weight that travels the full distance when two facilities are merged.

    On a centroid merge each side moves by the other side's share of the
    distance, so the cost grows by 2 * w_a * w_b / (w_a + w_b) * d. Otherwise
    the lighter side moves onto the heavier one and the cost grows by
    min(w_a, w_b) * d. Works elementwise on arrays.
    """
    if centroid:
        return 2 * weight_a * weight_b / (weight_a + weight_b)
    return np.minimum(weight_a, weight_b)


@dataclasses.dataclass
class Facility:
    """A center to which stream points are dispatched."""

    # The representative: a data point, or the weighted centroid of the
    # represented points under vector metrics. Replaced, never mutated.
    position: Any

    # External identifier of the point that opened the facility (the heavier
    # side on merges), -1 for synthetic centers.
    point_id: int

    # Insertion sequence number within the registry. Used to break ties.
    order: int

    # Sum of the weights of the points represented by this facility.
    weight: float = 0.0

    # Upper bound on sum_{p in f} w(p) * dist(p, position).
    cost: float = 0.0

    # The opening threshold in force when the facility was created.
    threshold: float = 0.0

    def insert(self, weight: float, distance: float) -> None:
        self.weight += weight
        self.cost += weight * distance

    def keeps_representative_over(self, other: "Facility") -> bool:
        """The heavier facility keeps its identity; ties go to the older one."""
        if self.weight != other.weight:
            return self.weight > other.weight
        return self.order <= other.order

    def absorb(self, other: "Facility", distance: float, centroid=None) -> float:
        """Merges `other` into this facility and returns the cost increase.

        With a `centroid` both representatives move onto it. Without one, the
        heavier representative is kept and the points of the other side move
        by `distance`.
        """
        increase = float(moved_weight(self.weight, other.weight, centroid is not None)) * distance
        if not self.keeps_representative_over(other):
            self.position = other.position
            self.point_id = other.point_id
            self.order = other.order
            self.threshold = other.threshold
        if centroid is not None:
            self.position = centroid
        self.weight += other.weight
        self.cost += other.cost + increase
        return increase

    @property
    def mean_cost(self) -> float:
        return self.cost / self.weight if self.weight > 0 else 0.0


class FacilityRegistry:
    """Ordered set of open facilities with linear-scan nearest search.

    The representatives are kept stacked (one matrix for vector metrics). The
    stack is rebuilt lazily after a facility is opened or removed, and updated
    in place when a representative moves.
    """

    def __init__(self, metric: MetricSpace) -> None:
        self._metric = metric
        self._facilities: List[Facility] = []
        self._stacked = None
        self._next_order = 0

    @property
    def metric(self) -> MetricSpace:
        return self._metric

    @property
    def facilities(self) -> List[Facility]:
        return list(self._facilities)

    def size(self) -> int:
        return len(self._facilities)

    def __len__(self) -> int:
        return len(self._facilities)

    def __iter__(self) -> Iterator[Facility]:
        return iter(self._facilities)

    def __getitem__(self, index: int) -> Facility:
        return self._facilities[index]

    @property
    def total_weight(self) -> float:
        return float(sum(f.weight for f in self._facilities))

    @property
    def total_cost(self) -> float:
        return float(sum(f.cost for f in self._facilities))

    def positions(self):
        if self._stacked is None:
            self._stacked = self._metric.stack([f.position for f in self._facilities])
        return self._stacked

    def distances(self, point) -> np.ndarray:
        if not self._facilities:
            return np.empty(shape=0)
        return validate_distances(self._metric.distances(point, self.positions()))

    def nearest(self, point) -> Tuple[int, float]:
        """Returns the index of the nearest facility and the distance to it.

        Ties are broken in favour of the facility at the lowest index.
        Returns (-1, inf) when no facility is open.
        """
        if not self._facilities:
            return -1, np.inf
        distances = self.distances(point)
        index = int(np.argmin(distances))
        return index, float(distances[index])

    def open(self, point, weight: float = 1.0, point_id: int = -1, threshold: float = 0.0) -> int:
        facility = Facility(
            position=point,
            point_id=point_id,
            order=self._next_order,
            threshold=threshold,
        )
        facility.insert(weight=weight, distance=0.0)
        return self.adopt(facility)

    def adopt(self, facility: Facility) -> int:
        """Appends an existing facility, e.g. one recycled from an earlier phase."""
        self._facilities.append(facility)
        self._next_order = max(self._next_order, facility.order + 1)
        self._stacked = None
        logger.debug(f"Facility {facility.order} added. Number of facilities: {len(self._facilities)}")
        return len(self._facilities) - 1

    def assign(self, index: int, point, weight: float, distance: float) -> float:
        """Dispatches a point to the facility at `index` and returns the cost increase.

        Under vector metrics the representative moves to the weighted centroid
        of the facility and the point. The points already represented move by
        the shift, so the cost bound grows by 2 * W * w / (W + w) * distance.
        """
        facility = self._facilities[index]
        if not self._metric.has_centroids or distance == 0 or facility.weight <= 0:
            facility.insert(weight=weight, distance=distance)
            return weight * distance

        increase = float(moved_weight(facility.weight, weight, centroid=True)) * distance
        position = self._metric.centroid(facility.position, facility.weight, point, weight)
        facility.weight += weight
        facility.cost += increase
        self._replace_position(index, position)
        return increase

    def absorb(self, index: int, facility: Facility, distance: float) -> float:
        """Merges a facility that is not in the registry into the one at `index`."""
        target = self._facilities[index]
        previous_position = target.position
        increase = target.absorb(facility, distance, centroid=self._merged_position(target, facility))
        self._next_order = max(self._next_order, target.order + 1)
        if target.position is not previous_position:
            self._replace_position(index, target.position)
        return increase

    def merge(self, a: int, b: int, distance: Optional[float] = None) -> int:
        """Merges facilities `a` and `b` and returns the index of the survivor.

        The survivor occupies the lower of the two slots; the other facility
        is removed, shifting the facilities after it one slot down.
        """
        if a == b:
            raise ValueError("Cannot merge a facility with itself.")
        keep, drop = min(a, b), max(a, b)
        if distance is None:
            distance = self._metric.distance(self._facilities[keep].position, self._facilities[drop].position)
            validate_distances(np.array([distance]))
        dropped = self._facilities.pop(drop)
        self._stacked = None
        survivor = self._facilities[keep]
        survivor.absorb(dropped, distance, centroid=self._merged_position(survivor, dropped))
        self._next_order = max(self._next_order, survivor.order + 1)
        return keep

    def _merged_position(self, a: Facility, b: Facility):
        if not self._metric.has_centroids or a.weight + b.weight <= 0:
            return None
        return self._metric.centroid(a.position, a.weight, b.position, b.weight)

    def _replace_position(self, index: int, position) -> None:
        self._facilities[index].position = position
        if isinstance(self._stacked, np.ndarray):
            self._stacked[index] = position
        else:
            self._stacked = None

    def min_separation(self) -> float:
        """Smallest positive distance between two representatives (inf if none)."""
        if len(self._facilities) < 2:
            return np.inf
        positions = self.positions()
        distances = validate_distances(self._metric.pairwise(positions))
        positive = distances[distances > 0]
        return float(positive.min()) if positive.size > 0 else np.inf

    def log(self, level: int = 0) -> None:
        if level >= 1:
            for f in self._facilities:
                logger.info(
                    f"facility {f.order}: point_id={f.point_id} weight={f.weight:.4e} "
                    f"cost={f.cost:.3e} cost/weight={f.mean_cost:.3e}"
                )
        logger.info(
            f"Number of facilities: {len(self._facilities)}, sum of weights: {self.total_weight:.3e}, "
            f"total cost: {self.total_cost:.3e}"
        )
