import dataclasses

from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from scipy.stats import entropy
from sklearn.preprocessing import normalize
from sklearn.utils.validation import check_random_state

from streamcore.clustering.kmeans import kmeans_plusplus
from streamcore.clustering.metrics import EuclideanMetric, MetricSpace, validate_distances
from streamcore.coresets.coreset import Coreset
from streamcore.helpers.logger import get_logger


logger = get_logger(name="evaluation")


def dispatch_points(points: Iterable, representatives, metric: MetricSpace) -> Tuple[np.ndarray, np.ndarray]:
    """Assigns every point to its nearest representative.

    Returns the index of the nearest representative for each point and the
    distance to it. Ties go to the representative with the lowest index.
    """
    stacked = metric.stack([metric.prepare(r) for r in representatives])
    assignment = []
    distances = []
    for point in points:
        if len(stacked) == 0:
            raise ValueError("Cannot dispatch points without representatives.")
        point_distances = validate_distances(metric.distances(metric.prepare(point), stacked))
        index = int(np.argmin(point_distances))
        assignment.append(index)
        distances.append(point_distances[index])
    return np.array(assignment, dtype=np.int64), np.array(distances, dtype=np.float64)


def compute_cost(distances: np.ndarray, weights: Optional[np.ndarray] = None, power: float = 1) -> float:
    """Computes sum_p w(p) * dist(p, C)^z."""
    costs = np.power(distances, power)
    if weights is not None:
        costs = weights * costs
    return float(np.sum(costs))


def compute_coreset_cost(coreset_points, coreset_weights: np.ndarray, candidate_solution,
                         metric: Optional[MetricSpace] = None, power: float = 2) -> float:
    metric = EuclideanMetric() if metric is None else metric
    distances = validate_distances(metric.pairwise(coreset_points, candidate_solution))
    closest_dist = np.min(distances, axis=1)
    return compute_cost(closest_dist, weights=coreset_weights, power=power)


def compute_input_cost(input_points, candidate_solution, metric: Optional[MetricSpace] = None, power: float = 2) -> float:
    metric = EuclideanMetric() if metric is None else metric
    distances = validate_distances(metric.pairwise(input_points, candidate_solution))
    closest_dist = np.min(distances, axis=1)
    return compute_cost(closest_dist, power=power)


def label_entropies(assignment: np.ndarray, labels: Sequence, n_facilities: int) -> pd.DataFrame:
    """Entropy of the label distribution of the points dispatched to each facility.

    Uses the natural logarithm. Facilities without points get entropy 0.
    """
    assignment = np.asarray(assignment)
    labels = np.asarray(labels)
    if assignment.shape[0] != labels.shape[0]:
        raise ValueError(f"Got {assignment.shape[0]} assignments but {labels.shape[0]} labels.")

    counts = pd.crosstab(index=assignment, columns=labels) if assignment.shape[0] > 0 else pd.DataFrame()
    counts = counts.reindex(index=np.arange(n_facilities), fill_value=0)

    rows = []
    for facility_index, row in counts.iterrows():
        n_points = int(row.sum())
        rows.append(dict(
            facility=int(facility_index),
            n_points=n_points,
            n_labels=int((row > 0).sum()),
            entropy=float(entropy(row.to_numpy())) if n_points > 0 else 0.0,
            dominant_label=row.idxmax() if n_points > 0 else None,
        ))
    return pd.DataFrame(rows, columns=["facility", "n_points", "n_labels", "entropy", "dominant_label"])


def mean_entropy(report: pd.DataFrame, weighted: bool = True) -> float:
    """Averages the facility entropies, weighted by the number of points unless told otherwise."""
    populated = report[report["n_points"] > 0]
    if populated.shape[0] == 0:
        return 0.0
    if weighted:
        return float(np.average(populated["entropy"], weights=populated["n_points"]))
    return float(populated["entropy"].mean())


def facility_distance_quantiles(coreset: Coreset, metric: MetricSpace,
                                quantiles: Sequence[float] = (0.01, 0.05, 0.1, 0.5, 0.75)) -> Dict[float, float]:
    """Quantiles of the distances between distinct coreset points."""
    if len(coreset) < 2:
        logger.warning("Distance quantiles need at least two coreset points.")
        return {}
    distances = validate_distances(metric.pairwise(coreset.points))
    upper = distances[np.triu_indices(distances.shape[0], k=1)]
    values = np.quantile(upper, quantiles)
    return {q: float(v) for q, v in zip(quantiles, values)}


@dataclasses.dataclass
class Evaluation:
    n_points: int
    total_cost: float
    mean_cost: float
    facilities: pd.DataFrame
    mean_entropy: Optional[float] = None

    def summary(self) -> Dict[str, object]:
        return dict(
            n_points=self.n_points,
            total_cost=self.total_cost,
            mean_cost=self.mean_cost,
            mean_entropy=self.mean_entropy,
            n_facilities=int(self.facilities.shape[0]),
        )


def evaluate(points: Iterable, coreset: Coreset, metric: MetricSpace, labels: Optional[Sequence] = None) -> Evaluation:
    """Dispatches the input points to the coreset and reports cost and label entropy."""
    assignment, distances = dispatch_points(points, coreset.points, metric)
    n_points = assignment.shape[0]
    total_cost = compute_cost(distances)
    mean_cost = total_cost / n_points if n_points > 0 else 0.0

    per_facility = pd.DataFrame(dict(
        facility=np.arange(len(coreset)),
        weight=coreset.weights,
        point_id=coreset.ids,
        n_points=np.bincount(assignment, minlength=len(coreset)) if n_points > 0 else np.zeros(len(coreset), dtype=int),
        cost=np.bincount(assignment, weights=distances, minlength=len(coreset)) if n_points > 0 else np.zeros(len(coreset)),
    ))

    average_entropy = None
    if labels is not None:
        report = label_entropies(assignment, labels, n_facilities=len(coreset))
        per_facility = per_facility.merge(
            report[["facility", "n_labels", "entropy", "dominant_label"]], on="facility", how="left",
        )
        average_entropy = mean_entropy(report)

    logger.info(f"Dispatched {n_points} points: total cost {total_cost:.3e}, mean cost {mean_cost:.3e}")
    if average_entropy is not None:
        logger.info(f"Mean label entropy over facilities: {average_entropy:.3e}")

    return Evaluation(
        n_points=n_points,
        total_cost=total_cost,
        mean_cost=mean_cost,
        facilities=per_facility,
        mean_entropy=average_entropy,
    )


def generate_random_solution(n_dim: int, k: int, random_state=None) -> np.ndarray:
    """Generate a candidate solution that consists of a set of k d-dimensional random unit vectors.
    """
    random_state = check_random_state(random_state)
    solution = random_state.normal(loc=0, scale=1, size=(k, n_dim))
    solution = normalize(solution)
    return solution


def generate_random_points_within_convex_hull(data_matrix: np.ndarray, k: int, n_samples: int = 2,
                                              random_state=None) -> np.ndarray:
    """Generates k random points within the convex hull of the data.
    """
    random_state = check_random_state(random_state)
    n_points = data_matrix.shape[0]
    generated_points = []

    for _ in range(k):
        # Random convex combination weights, scaled to L1 unit norm
        random_vector = random_state.rand(n_samples, 1)
        proba_vector = random_vector / random_vector.sum()

        selected_indices = random_state.choice(n_points, n_samples)
        new_point = np.dot(proba_vector.T, data_matrix[selected_indices])
        generated_points.append(new_point)

    return np.vstack(generated_points)


def generate_candidate_solution_via_kmeans_plus_plus(data_matrix, k: int, weights: Optional[np.ndarray] = None,
                                                     metric: Optional[MetricSpace] = None, power: float = 2,
                                                     random_state=None) -> np.ndarray:
    center_indices = kmeans_plusplus(
        points=data_matrix, n_clusters=k, weights=weights, metric=metric, power=power, random_state=random_state,
    )
    return np.asarray(data_matrix)[center_indices]


class DistortionCalculator:
    """Compares the cost of candidate solutions on the coreset and on the input.

    The distortion of a solution is max(input/coreset, coreset/input).
    """

    def __init__(self,
        k: int,
        input_points: np.ndarray,
        coreset_points: np.ndarray,
        coreset_weights: np.ndarray,
        metric: Optional[MetricSpace] = None,
        power: float = 1,
        working_dir: Optional[Path] = None,
        random_state=None,
        ) -> None:
        self.working_dir = None if working_dir is None else Path(working_dir)
        self.input_points = input_points
        self.coreset_points = coreset_points
        self.coreset_weights = coreset_weights
        self.metric = EuclideanMetric() if metric is None else metric
        self.power = power
        self.k = k
        self.random_state = check_random_state(random_state)

    def calc_distortions(self, solution_generator: Callable[[], np.ndarray], solution_type: str, n_repetitions: int) -> pd.DataFrame:
        results = []
        for iteration in range(n_repetitions):
            solution = solution_generator()

            coreset_cost = compute_coreset_cost(
                coreset_points=self.coreset_points,
                coreset_weights=self.coreset_weights,
                candidate_solution=solution,
                metric=self.metric,
                power=self.power,
            )

            input_cost = compute_input_cost(
                input_points=self.input_points,
                candidate_solution=solution,
                metric=self.metric,
                power=self.power,
            )

            if coreset_cost == 0 and input_cost == 0:
                distortion = 1.0
            elif coreset_cost == 0 or input_cost == 0:
                distortion = np.inf
            else:
                distortion = max(float(input_cost/coreset_cost), float(coreset_cost/input_cost))

            results.append(dict(
                iteration=iteration,
                solution_type=solution_type,
                coreset_cost=coreset_cost,
                input_cost=input_cost,
                distortion=distortion,
            ))
        return pd.DataFrame(results)

    def _store(self, df_distortions: pd.DataFrame, solution_type: str) -> pd.DataFrame:
        if self.working_dir is not None:
            output_path = self.working_dir / f"distortions-{solution_type}-solutions.feather"
            df_distortions.to_feather(output_path)
        logger.debug(
            f"Distortions for {solution_type} solutions: "
            f"max={df_distortions['distortion'].max():.4f} mean={df_distortions['distortion'].mean():.4f}"
        )
        return df_distortions

    def on_random(self, n_repetitions: int = 50) -> pd.DataFrame:
        n_dim = self.input_points.shape[1]
        df_distortions = self.calc_distortions(
            solution_generator=lambda: generate_random_solution(n_dim=n_dim, k=self.k, random_state=self.random_state),
            solution_type="random",
            n_repetitions=n_repetitions,
        )
        return self._store(df_distortions, "random")

    def on_convex(self, n_repetitions: int = 50) -> pd.DataFrame:
        df_distortions = self.calc_distortions(
            solution_generator=lambda: generate_random_points_within_convex_hull(
                data_matrix=self.input_points, k=self.k, n_samples=2, random_state=self.random_state,
            ),
            solution_type="convex",
            n_repetitions=n_repetitions,
        )
        return self._store(df_distortions, "convex")

    def on_kmeans_plus_plus_input(self, n_repetitions: int = 5) -> pd.DataFrame:
        df_distortions = self.calc_distortions(
            solution_generator=lambda: generate_candidate_solution_via_kmeans_plus_plus(
                data_matrix=self.input_points, k=self.k, metric=self.metric,
                power=self.power, random_state=self.random_state,
            ),
            solution_type="kmeans++-on-input",
            n_repetitions=n_repetitions,
        )
        return self._store(df_distortions, "kmeans++-on-input")

    def on_kmeans_plus_plus_coreset(self, n_repetitions: int = 5) -> pd.DataFrame:
        def solution_generator():
            # Best solution is the solution with lowest cost over
            # 5 runs of k-means++ on weighted coreset points.
            best_solution = None
            best_cost = None
            for _ in range(5):
                solution = generate_candidate_solution_via_kmeans_plus_plus(
                    data_matrix=self.coreset_points, k=self.k, weights=self.coreset_weights,
                    metric=self.metric, power=self.power, random_state=self.random_state,
                )
                cost = compute_coreset_cost(
                    coreset_points=self.coreset_points,
                    coreset_weights=self.coreset_weights,
                    candidate_solution=solution,
                    metric=self.metric,
                    power=self.power,
                )
                if best_cost is None or cost < best_cost:
                    best_cost = cost
                    best_solution = solution
            return best_solution

        df_distortions = self.calc_distortions(
            solution_generator=solution_generator,
            solution_type="kmeans++-on-coreset",
            n_repetitions=n_repetitions,
        )
        return self._store(df_distortions, "kmeans++-on-coreset")
