import dataclasses

from typing import Dict, Optional

import numpy as np

from streamcore.clustering.metrics import available_metrics
from streamcore.helpers.errors import InfeasibleContractionError
from streamcore.helpers.params import Params


CONTRACTION_POLICIES = ["none", "greedy", "kmeans"]


def derive_facility_bound(k: int, n_points: int, gamma: float) -> int:
    """Facility bound gamma * (1 + log2(n)) * k used by the streaming phase."""
    log_n = int(np.floor(np.log2(n_points))) if n_points >= 1 else 0
    return max(1, int(gamma * (1 + log_n) * k))


@dataclasses.dataclass
class CoresetParams(Params):
    # Number of clusters the coreset is built for.
    k: int = 10

    # Expected stream length. When unknown, the facility bound follows
    # the number of points processed so far.
    n_expected: Optional[int] = None

    # Slack factor on the number of facilities: B = gamma * (1 + log2 n) * k.
    gamma: float = 2.0

    # Explicit facility bound B. Overrides the derivation from k and gamma.
    facility_bound: Optional[int] = None

    # Initial opening threshold L0. Estimated from the head of the stream when None.
    initial_threshold: Optional[float] = None

    # Multiplicative factor applied to the threshold on each growth event.
    growth_factor: float = 2.0

    # Optional cost budget of the first phase. It grows with the threshold.
    phase_cost_bound: Optional[float] = None

    # Number of facilities after contraction. None skips the contraction.
    target_size: Optional[int] = None

    # Either "greedy", "kmeans" or "none".
    contraction: str = "greedy"

    # Largest cost increase accepted for a single greedy merge.
    max_cost_increase: Optional[float] = None

    metric: str = "euclidean"

    # Number of leading stream points used to estimate L0.
    scale_sample_size: int = 1000

    # Quantile of the nearest-neighbour distances used as L0.
    scale_quantile: float = 0.5

    random_seed: int = 0

    n_jobs: int = 1

    def validate(self) -> "CoresetParams":
        if self.k < 1:
            raise ValueError(f"k must be positive, got {self.k}.")
        if self.gamma <= 0:
            raise ValueError(f"gamma must be positive, got {self.gamma}.")
        if self.n_expected is not None and self.n_expected < 0:
            raise ValueError(f"n_expected cannot be negative, got {self.n_expected}.")
        if self.facility_bound is not None and self.facility_bound < 1:
            raise ValueError(f"facility_bound must be at least 1, got {self.facility_bound}.")
        if self.initial_threshold is not None and not self.initial_threshold >= 0:
            raise ValueError(f"initial_threshold cannot be negative, got {self.initial_threshold}.")
        if not self.growth_factor > 1:
            raise ValueError(f"growth_factor must be larger than 1, got {self.growth_factor}.")
        if self.phase_cost_bound is not None and not self.phase_cost_bound > 0:
            raise ValueError(f"phase_cost_bound must be positive, got {self.phase_cost_bound}.")
        if self.target_size is not None and self.target_size <= 0:
            raise InfeasibleContractionError(f"target_size must be positive, got {self.target_size}.")
        if self.contraction not in CONTRACTION_POLICIES:
            raise ValueError(f"Unknown contraction policy: {self.contraction}. Choose one of {CONTRACTION_POLICIES}.")
        if self.metric.lower() not in available_metrics():
            raise ValueError(f"Unknown metric: {self.metric}. Choose one of {available_metrics()}.")
        if self.scale_sample_size < 2:
            raise ValueError(f"scale_sample_size must be at least 2, got {self.scale_sample_size}.")
        if not 0 <= self.scale_quantile <= 1:
            raise ValueError(f"scale_quantile must be within [0, 1], got {self.scale_quantile}.")
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "CoresetParams":
        return super().from_dict(data).validate()
