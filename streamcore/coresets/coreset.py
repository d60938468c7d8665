import dataclasses

from pathlib import Path
from typing import Any, Iterator, Optional, Tuple, Union

import numpy as np

from streamcore.coresets.facility import FacilityRegistry
from streamcore.helpers.errors import WeightInvariantViolation
from streamcore.helpers.logger import get_logger


logger = get_logger(name="coreset")


@dataclasses.dataclass(frozen=True, eq=False)
class Coreset:
    """Weighted representatives of the input stream.

    `points` is a (n, d) matrix for vector metrics and a list otherwise.
    `ids` holds the stream identifier of the point that opened each facility
    (-1 for synthetic centers such as k-means centroids).
    """

    points: Any
    weights: np.ndarray
    ids: np.ndarray

    def __len__(self) -> int:
        return int(self.weights.shape[0])

    def __iter__(self) -> Iterator[Tuple[Any, float]]:
        for i in range(len(self)):
            yield self.points[i], float(self.weights[i])

    @property
    def total_weight(self) -> float:
        return float(np.sum(self.weights))

    def save(self, file_path: Union[str, Path]) -> None:
        """Stores the coreset as a compressed `.npz` file. Vector points only."""
        points = np.asarray(self.points)
        if not np.issubdtype(points.dtype, np.number):
            raise TypeError("Only coresets of numeric vectors can be saved.")
        np.savez_compressed(file_path, points=points, weights=self.weights, ids=self.ids)

    @classmethod
    def load(cls, file_path: Union[str, Path]) -> "Coreset":
        with np.load(file_path, allow_pickle=False) as data:
            return cls(points=data["points"], weights=data["weights"], ids=data["ids"])


class CoresetBuilder:
    """Projects a facility set onto a Coreset, in facility order."""

    def __init__(self, expected_weight: Optional[float] = None) -> None:
        self._expected_weight = expected_weight

    def build(self, registry: FacilityRegistry) -> Coreset:
        facilities = registry.facilities
        weights = np.array([f.weight for f in facilities], dtype=np.float64)
        ids = np.array([f.point_id for f in facilities], dtype=np.int64)
        points = registry.metric.stack([f.position for f in facilities])
        if isinstance(points, np.ndarray):
            points = points.copy()

        if (weights <= 0).any():
            raise WeightInvariantViolation("Coreset contains a facility without weight.")
        if self._expected_weight is not None:
            total = float(np.sum(weights))
            if not np.isclose(total, self._expected_weight, rtol=1e-9, atol=1e-9):
                raise WeightInvariantViolation(
                    f"Coreset weights sum to {total}, expected {self._expected_weight}."
                )

        logger.debug(f"Built coreset with {len(facilities)} points and total weight {np.sum(weights):.3e}")
        return Coreset(points=points, weights=weights, ids=ids)
