import itertools

from typing import Iterable, Optional, Tuple

from streamcore.clustering.metrics import MetricSpace, get_metric
from streamcore.coresets.config import CoresetParams
from streamcore.coresets.contraction import Contraction, GreedyMergeContraction, WeightedKMeansContraction
from streamcore.coresets.coreset import Coreset, CoresetBuilder
from streamcore.coresets.facility import FacilityRegistry
from streamcore.coresets.ofl import OFLState, OnlineFacilityLocation
from streamcore.coresets.scale import estimate_neighborhood_radius
from streamcore.helpers.logger import get_logger


logger = get_logger(name="streaming")


class StreamingCoreset:
    """Builds a coreset from a point stream in a single pass.

    The stream goes through online facility location, the resulting
    facilities are optionally contracted, and the final facility set is
    projected onto a coreset whose weights sum to the ingested weight.
    """

    def __init__(self, params: CoresetParams, metric: Optional[MetricSpace] = None) -> None:
        self._params = params.validate()
        self._metric = get_metric(params.metric) if metric is None else metric

    @property
    def params(self) -> CoresetParams:
        return self._params

    @property
    def metric(self) -> MetricSpace:
        return self._metric

    def run(self, points: Iterable) -> Coreset:
        state = self.stream(points)
        registry = self.contract(state.registry)
        return self.build(registry, expected_weight=state.total_weight)

    def stream(self, points: Iterable, state: Optional[OFLState] = None) -> OFLState:
        points = iter(points)
        if state is None:
            initial_threshold, points = self._initial_threshold(points)
            ofl = OnlineFacilityLocation.from_params(self._params, self._metric, initial_threshold)
            state = ofl.new_state()
        else:
            ofl = OnlineFacilityLocation.from_params(self._params, self._metric, state.threshold)

        state = ofl.process(points, state=state)
        state.log()
        return state

    def make_contraction(self) -> Optional[Contraction]:
        if self._params.target_size is None or self._params.contraction == "none":
            return None
        if self._params.contraction == "kmeans":
            return WeightedKMeansContraction(
                target_size=self._params.target_size,
                random_state=self._params.random_seed,
            )
        return GreedyMergeContraction(
            target_size=self._params.target_size,
            max_cost_increase=self._params.max_cost_increase,
            n_jobs=self._params.n_jobs,
        )

    def contract(self, registry: FacilityRegistry) -> FacilityRegistry:
        contraction = self.make_contraction()
        if contraction is None:
            return registry
        return contraction.run(registry)

    def build(self, registry: FacilityRegistry, expected_weight: Optional[float] = None) -> Coreset:
        return CoresetBuilder(expected_weight=expected_weight).build(registry)

    def _initial_threshold(self, points) -> Tuple[float, Iterable]:
        if self._params.initial_threshold is not None:
            return self._params.initial_threshold, points

        # Peek at the head of the stream and put it back in front.
        head = list(itertools.islice(points, self._params.scale_sample_size))
        threshold = estimate_neighborhood_radius(
            points=head,
            metric=self._metric,
            quantile=self._params.scale_quantile,
            random_state=self._params.random_seed,
        )
        logger.info(f"Estimated initial threshold {threshold:.3e} from the first {len(head)} points.")
        return threshold, itertools.chain(head, points)
