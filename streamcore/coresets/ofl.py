"""Single-pass online facility location with threshold growth.

This is a deterministic variant of the streaming k-means algorithm of
Braverman, Meyerson, Ostrovsky, Roytman, Shindler and Tagiku (SODA 2011).
A point opens a new facility when it is farther than the current threshold L
from every open facility; otherwise it is dispatched to the nearest one.
Whenever the number of facilities exceeds the bound B, or the accumulated
cost charged in the current phase exceeds its budget, the threshold is multiplied by
the growth factor and the facilities are streamed again as weighted points,
which merges the ones that are now within L of each other.

Under vector metrics a facility is represented by the weighted centroid of
the points dispatched to it. Other metrics keep the representative of the
heavier facility on merges.
"""
import dataclasses

from itertools import repeat
from typing import Iterable, Optional

import numpy as np

from streamcore.clustering.metrics import MetricSpace
from streamcore.coresets.config import CoresetParams, derive_facility_bound
from streamcore.coresets.facility import FacilityRegistry
from streamcore.helpers.logger import get_logger


logger = get_logger(name="ofl")


@dataclasses.dataclass
class OFLState:
    """The state of one streaming pass. Valid after every processed point."""

    registry: FacilityRegistry

    # Current opening threshold L.
    threshold: float

    # Upper bound on the weighted assignment cost of all processed points.
    cost: float = 0.0

    # Cost charged since the last threshold growth, starting with the cost of
    # recycling the facilities. Compared against `cost_bound`.
    phase_cost: float = 0.0

    n_points: int = 0

    total_weight: float = 0.0

    # Number of threshold growth events so far.
    phase: int = 0

    # Cost budget of the current phase, if any.
    cost_bound: Optional[float] = None

    @property
    def n_facilities(self) -> int:
        return len(self.registry)

    def log(self) -> None:
        logger.info(
            f"OFL state: facilities={len(self.registry)} threshold={self.threshold:.3e} "
            f"weight={self.total_weight:.3e} cost={self.cost:.3e} "
            f"points={self.n_points} phases={self.phase + 1}"
        )


class OnlineFacilityLocation:
    def __init__(self,
        metric: MetricSpace,
        initial_threshold: float,
        facility_bound: Optional[int] = None,
        k: int = 1,
        n_expected: Optional[int] = None,
        gamma: float = 2.0,
        growth_factor: float = 2.0,
        phase_cost_bound: Optional[float] = None,
        ) -> None:
        if not initial_threshold >= 0:
            raise ValueError(f"initial_threshold cannot be negative, got {initial_threshold}.")
        if not growth_factor > 1:
            raise ValueError(f"growth_factor must be larger than 1, got {growth_factor}.")
        if facility_bound is not None and facility_bound < 1:
            raise ValueError(f"facility_bound must be at least 1, got {facility_bound}.")
        self._metric = metric
        self._initial_threshold = float(initial_threshold)
        self._facility_bound = facility_bound
        self._k = k
        self._n_expected = n_expected
        self._gamma = gamma
        self._growth_factor = growth_factor
        self._phase_cost_bound = phase_cost_bound

    @classmethod
    def from_params(cls, params: CoresetParams, metric: MetricSpace, initial_threshold: float) -> "OnlineFacilityLocation":
        return cls(
            metric=metric,
            initial_threshold=initial_threshold,
            facility_bound=params.facility_bound,
            k=params.k,
            n_expected=params.n_expected,
            gamma=params.gamma,
            growth_factor=params.growth_factor,
            phase_cost_bound=params.phase_cost_bound,
        )

    @property
    def metric(self) -> MetricSpace:
        return self._metric

    def facility_bound(self, n_points: int) -> int:
        if self._facility_bound is not None:
            return self._facility_bound
        n = self._n_expected if self._n_expected is not None else n_points
        return derive_facility_bound(k=self._k, n_points=n, gamma=self._gamma)

    def new_state(self) -> OFLState:
        return OFLState(
            registry=FacilityRegistry(self._metric),
            threshold=self._initial_threshold,
            cost_bound=self._phase_cost_bound,
        )

    def process(self,
        points: Iterable,
        state: Optional[OFLState] = None,
        weights: Optional[Iterable[float]] = None,
        ids: Optional[Iterable[int]] = None,
        ) -> OFLState:
        """Streams `points` through the state and returns it.

        Weights default to 1. Ids default to the rank of the point in the
        overall stream, so that a state fed in several calls keeps counting.
        """
        if state is None:
            state = self.new_state()
        weights = repeat(1.0) if weights is None else weights
        if ids is None:
            for point, weight in zip(points, weights):
                self.add(state, point, weight=weight)
        else:
            for point, weight, point_id in zip(points, weights, ids):
                self.add(state, point, weight=weight, point_id=point_id)
        return state

    def add(self, state: OFLState, point, weight: float = 1.0, point_id: Optional[int] = None) -> OFLState:
        if not weight > 0:
            raise ValueError(f"Point weights must be positive, got {weight}.")
        point = self._metric.prepare(point)
        if point_id is None:
            point_id = state.n_points

        index, distance = state.registry.nearest(point)
        if index < 0 or distance > state.threshold:
            state.registry.open(point, weight=weight, point_id=point_id, threshold=state.threshold)
        else:
            increase = state.registry.assign(index, point, weight=weight, distance=distance)
            state.cost += increase
            state.phase_cost += increase

        state.n_points += 1
        state.total_weight += weight

        self._enforce_bounds(state)
        return state

    def _over_budget(self, state: OFLState) -> bool:
        bound = self.facility_bound(state.n_points)
        if len(state.registry) > bound:
            return True
        return state.cost_bound is not None and state.phase_cost > state.cost_bound

    def _enforce_bounds(self, state: OFLState) -> None:
        while self._over_budget(state):
            self._grow_threshold(state)

    def _grow_threshold(self, state: OFLState) -> None:
        previous = state.threshold
        if previous > 0:
            state.threshold = previous * self._growth_factor
        else:
            # A zero threshold never grows by multiplication, so jump to the
            # smallest distance that merges at least one pair.
            state.threshold = state.registry.min_separation()
            if not np.isfinite(state.threshold):
                state.threshold = 1.0
        if state.cost_bound is not None:
            state.cost_bound *= self._growth_factor
        state.phase += 1
        state.phase_cost = 0.0

        n_before = len(state.registry)
        recycled = FacilityRegistry(self._metric)
        for facility in state.registry:
            index, distance = recycled.nearest(facility.position)
            if index >= 0 and distance <= state.threshold:
                increase = recycled.absorb(index, facility, distance)
                state.cost += increase
                state.phase_cost += increase
            else:
                recycled.adopt(facility)
        state.registry = recycled

        logger.debug(
            f"Phase {state.phase}: threshold {previous:.3e} -> {state.threshold:.3e}, "
            f"facilities {n_before} -> {len(recycled)}, cost bound {state.cost:.3e}, "
            f"phase cost {state.phase_cost:.3e}"
        )
