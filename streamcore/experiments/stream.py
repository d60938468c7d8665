import dataclasses, json, os

from pathlib import Path
from typing import Dict, Generator, Optional, Tuple

import numpy as np

from tqdm import tqdm

from streamcore.coresets.config import CoresetParams
from streamcore.coresets.scale import estimate_distance_quantiles
from streamcore.coresets.streaming import StreamingCoreset
from streamcore.data.synthetic import generate_gaussian_blobs, generate_separated_balls
from streamcore.experiments import Experiment, ExperimentParams, make_experiment_generation_registry
from streamcore.helpers.evaluation import DistortionCalculator, evaluate, facility_distance_quantiles
from streamcore.helpers.logger import get_logger


logger = get_logger(name="stream")
experiment_generation = make_experiment_generation_registry()


@dataclasses.dataclass
class StreamCoresetExperimentParams(ExperimentParams):
    # "balls", "blobs" or the path of an .npz file holding `data` and optionally `labels`.
    data_set: str
    n_clusters: int
    n_points_per_cluster: int
    n_dim: int
    spread: float
    separation: float
    coreset: CoresetParams
    random_seed: int


def create_experiment_param(
    data_set=None,
    n_clusters=None,
    n_points_per_cluster=None,
    n_dim=None,
    spread=None,
    separation=None,
    coreset=None,
    random_seed=None,
    ) -> StreamCoresetExperimentParams:

    data_set = "balls" if data_set is None else data_set
    n_clusters = 10 if n_clusters is None else n_clusters
    n_points_per_cluster = 1000 if n_points_per_cluster is None else n_points_per_cluster
    n_dim = n_clusters if n_dim is None else n_dim
    spread = 1.0 if spread is None else spread
    separation = 20.0 if separation is None else separation
    random_seed = int.from_bytes(os.urandom(3), "big") if random_seed is None else random_seed
    coreset = CoresetParams(k=n_clusters, random_seed=random_seed) if coreset is None else coreset

    return StreamCoresetExperimentParams(
        data_set=data_set,
        n_clusters=n_clusters,
        n_points_per_cluster=n_points_per_cluster,
        n_dim=n_dim,
        spread=spread,
        separation=separation,
        coreset=coreset,
        random_seed=random_seed,
    )


class StreamCoresetExperiment(Experiment):
    def __init__(self, experiment_params: Dict[str, object], working_dir: str) -> None:
        super().__init__()
        self._params: StreamCoresetExperimentParams = StreamCoresetExperimentParams.from_dict(experiment_params)
        self._working_dir = Path(working_dir)

    def run(self) -> None:
        logger.debug(f"Running StreamCoresetExperiment with params: \n{self._params}")
        os.makedirs(self._working_dir, exist_ok=True)

        X, labels = self.get_data_set()

        algorithm = StreamingCoreset(params=self._params.coreset)
        stream = tqdm(X, desc="streaming", unit="pt", disable=None)
        state = algorithm.stream(stream)
        registry = algorithm.contract(state.registry)
        coreset = algorithm.build(registry, expected_weight=state.total_weight)
        coreset.save(self._working_dir / "coreset.npz")

        with open(self._working_dir / "coreset-done.out", "w") as f:
            f.write("done")

        logger.debug("Coreset constructed. Evaluating...")
        evaluation = evaluate(points=X, coreset=coreset, metric=algorithm.metric, labels=labels)
        evaluation.facilities.to_feather(self._working_dir / "facilities.feather")

        summary = evaluation.summary()
        summary.update(
            n_facilities_streamed=state.n_facilities,
            n_phases=state.phase + 1,
            final_threshold=state.threshold,
            cost_bound=state.cost,
            data_distance_quantiles=self._stringify(estimate_distance_quantiles(
                X, algorithm.metric, n_samples=2000, random_state=self._params.random_seed,
            )),
            facility_distance_quantiles=self._stringify(facility_distance_quantiles(coreset, algorithm.metric)),
        )
        with open(self._working_dir / "summary.json", "w") as f:
            json.dump(summary, f, indent=4)

        logger.debug("Computing distortions...")
        calc = DistortionCalculator(
            working_dir=self._working_dir,
            k=self._params.coreset.k,
            input_points=X,
            coreset_points=coreset.points,
            coreset_weights=coreset.weights,
            metric=algorithm.metric,
            power=1,
            random_state=self._params.random_seed,
        )
        calc.on_random()
        calc.on_convex()
        calc.on_kmeans_plus_plus_coreset()

        with open(self._working_dir / "done.out", "w") as f:
            f.write("done")
        logger.debug("Done")

    def get_data_set(self) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        p = self._params
        if p.data_set == "balls":
            logger.debug("Generating data")
            X, labels = generate_separated_balls(
                n_clusters=p.n_clusters,
                n_points_per_cluster=p.n_points_per_cluster,
                radius=p.spread,
                separation=p.separation,
                n_dim=p.n_dim,
                random_state=p.random_seed,
            )
        elif p.data_set == "blobs":
            logger.debug("Generating data")
            X, labels = generate_gaussian_blobs(
                n_clusters=p.n_clusters,
                n_points_per_cluster=p.n_points_per_cluster,
                variance=p.spread,
                separation=p.separation,
                n_dim=p.n_dim,
                random_state=p.random_seed,
            )
        else:
            if not os.path.exists(p.data_set):
                raise ValueError(f"Data file not found: {p.data_set}")
            logger.debug(f"Loading data from {p.data_set}")
            with np.load(p.data_set) as data:
                X = data["data"]
                labels = data["labels"] if "labels" in data else None
        logger.debug(f"The shape of the data matrix is: {X.shape}")
        return X, labels

    @staticmethod
    def _stringify(quantiles: Dict[float, float]) -> Dict[str, float]:
        return {f"{q:g}": v for q, v in quantiles.items()}


initialize_experiment = StreamCoresetExperiment


@experiment_generation
def balls_01() -> Generator[object, None, None]:
    for k in [5, 10, 20]:
        for gamma in [1.0, 2.0, 4.0]:
            yield create_experiment_param(
                data_set="balls",
                n_clusters=k,
                coreset=CoresetParams(k=k, gamma=gamma),
            )


@experiment_generation
def contraction_01() -> Generator[object, None, None]:
    for policy in ["none", "greedy", "kmeans"]:
        for k in [10, 20]:
            yield create_experiment_param(
                data_set="blobs",
                n_clusters=k,
                coreset=CoresetParams(k=k, gamma=2.0, target_size=7 * k, contraction=policy),
            )
