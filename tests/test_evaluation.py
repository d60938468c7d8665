import numpy as np
import pandas as pd
import pytest

from streamcore.clustering.metrics import EuclideanMetric
from streamcore.coresets.coreset import Coreset
from streamcore.helpers.evaluation import (
    DistortionCalculator,
    compute_cost,
    dispatch_points,
    evaluate,
    facility_distance_quantiles,
    label_entropies,
    mean_entropy,
)


def test_dispatch_points(metric):
    assignment, distances = dispatch_points(
        points=[[0.0, 0.0], [9.0, 0.0], [5.0, 0.0]],
        representatives=[[0.0, 1.0], [10.0, 0.0], [5.0, 5.0], [5.0, -5.0]],
        metric=metric,
    )
    np.testing.assert_array_equal(assignment, [0, 1, 2])
    np.testing.assert_allclose(distances, [1.0, 1.0, 5.0])


def test_dispatch_points_needs_representatives(metric):
    with pytest.raises(ValueError):
        dispatch_points([[0.0]], [], metric)


def test_compute_cost():
    distances = np.array([1.0, 2.0])
    assert compute_cost(distances) == pytest.approx(3.0)
    assert compute_cost(distances, power=2) == pytest.approx(5.0)
    assert compute_cost(distances, weights=np.array([2.0, 0.5]), power=2) == pytest.approx(4.0)


def test_label_entropies():
    report = label_entropies(
        assignment=np.array([0, 0, 0, 0, 1]),
        labels=["a", "a", "b", "b", "c"],
        n_facilities=3,
    )
    assert list(report["n_points"]) == [4, 1, 0]
    assert list(report["n_labels"]) == [2, 1, 0]
    np.testing.assert_allclose(report["entropy"], [np.log(2), 0.0, 0.0])
    assert report["dominant_label"][1] == "c"

    assert mean_entropy(report) == pytest.approx(4 * np.log(2) / 5)
    assert mean_entropy(report, weighted=False) == pytest.approx(np.log(2) / 2)


def test_label_entropies_length_mismatch():
    with pytest.raises(ValueError):
        label_entropies(np.array([0, 1]), [0], n_facilities=2)


def test_evaluate(metric):
    coreset = Coreset(points=np.array([[0.0], [10.0]]), weights=np.array([2.0, 1.0]), ids=np.array([0, 2]))
    evaluation = evaluate([[0.0], [1.0], [10.0]], coreset, metric, labels=[1, 1, 2])

    assert evaluation.n_points == 3
    assert evaluation.total_cost == pytest.approx(1.0)
    assert evaluation.mean_cost == pytest.approx(1 / 3)
    assert evaluation.mean_entropy == pytest.approx(0.0)
    assert isinstance(evaluation.facilities, pd.DataFrame)
    assert list(evaluation.facilities["n_points"]) == [2, 1]
    assert evaluation.summary()["n_facilities"] == 2


def test_evaluate_without_labels(metric):
    coreset = Coreset(points=np.array([[0.0]]), weights=np.array([1.0]), ids=np.array([0]))
    evaluation = evaluate([[0.0]], coreset, metric)
    assert evaluation.mean_entropy is None
    assert evaluation.total_cost == 0.0


def test_facility_distance_quantiles(metric):
    coreset = Coreset(points=np.array([[0.0], [1.0], [3.0]]), weights=np.ones(3), ids=np.arange(3))
    quantiles = facility_distance_quantiles(coreset, metric, quantiles=(0.0, 1.0))
    assert quantiles == pytest.approx({0.0: 1.0, 1.0: 3.0})

    single = Coreset(points=np.array([[0.0]]), weights=np.ones(1), ids=np.arange(1))
    assert facility_distance_quantiles(single, metric) == {}


def test_distortion_of_the_input_itself_is_one(uniform_points, tmp_path):
    calc = DistortionCalculator(
        k=3,
        input_points=uniform_points,
        coreset_points=uniform_points,
        coreset_weights=np.ones(uniform_points.shape[0]),
        metric=EuclideanMetric(),
        working_dir=tmp_path,
        random_state=1,
    )
    for df in [calc.on_random(n_repetitions=5), calc.on_convex(n_repetitions=5), calc.on_kmeans_plus_plus_input(n_repetitions=2)]:
        np.testing.assert_allclose(df["distortion"], 1.0)
    assert (tmp_path / "distortions-random-solutions.feather").exists()
    assert (tmp_path / "distortions-convex-solutions.feather").exists()


def test_distortion_of_a_coreset_is_bounded(four_balls):
    X, labels = four_balls
    centers = np.vstack([X[labels == c].mean(axis=0) for c in range(4)])
    calc = DistortionCalculator(
        k=4,
        input_points=X,
        coreset_points=centers,
        coreset_weights=np.full(4, 100.0),
        random_state=3,
    )
    df = calc.on_kmeans_plus_plus_coreset(n_repetitions=2)
    assert df.shape[0] == 2
    assert (df["distortion"] >= 1.0).all()
    # Solutions on the centers cost nothing on the coreset
    assert (df["coreset_cost"] == 0).all()

    df = calc.on_random(n_repetitions=5)
    assert (df["distortion"] < 1.01).all()
